"""Algorithms operating generically on any LieGroup."""

from .decasteljau import decasteljau, fit, segment_control_points

__all__ = ["decasteljau", "fit", "segment_control_points"]
