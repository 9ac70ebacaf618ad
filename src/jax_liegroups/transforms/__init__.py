"""
JAX-based Lie groups for robotics and computer vision.

This module provides JIT-compilable implementations of:
- SO(3) rotations and their so(3) tangent space (so3 module)
- SE(3) rigid body transforms and their se(3) tangent space (se3 module)

Group elements are immutable PyTrees; every operation is pure and stateless.
"""

from . import rotation
from .base import LieGroup, Tangent
from .se3 import SE3, SE3Tangent
from .so3 import SO3, SO3Tangent

__all__ = [
    "rotation",
    "LieGroup",
    "Tangent",
    "SO3",
    "SO3Tangent",
    "SE3",
    "SE3Tangent",
]
