"""Curve fitting on Lie groups with the De Casteljau algorithm.

The recursive linear blending of the classic algorithm is carried out with
the group's own retraction operators, Q_i ⊕ t (Q_{i+1} ⊖ Q_i), so every
intermediate point stays on the manifold.

See https://en.wikipedia.org/wiki/De_Casteljau%27s_algorithm
"""

import functools
import logging
from typing import List, Sequence, TypeVar

import jax
import jax.numpy as jnp
from jax import Array

from ..transforms.base import LieGroup

logger = logging.getLogger(__name__)

GroupT = TypeVar("GroupT", bound=LieGroup)


def segment_control_points(num_points: int, degree: int, closed_curve: bool = False) -> List[List[int]]:
    """Indices of the control points of each curve segment.

    Segments hold `degree` consecutive points and advance by `degree - 1`,
    so consecutive segments share an endpoint. When `closed_curve` is set and
    points are left after the last full segment, one extra segment is formed
    from those points followed by points from the start of the trajectory.

    Args:
        num_points: Length of the trajectory.
        degree: Number of control points per segment.
        closed_curve: Whether to wrap around to close the loop.

    Returns:
        List of index lists, one per segment.
    """
    n_segments = (num_points - degree) // (degree - 1) + 1

    segments = [
        [s * (degree - 1) + n for n in range(degree)]
        for s in range(n_segments)
    ]

    last_pts_idx = n_segments * (degree - 1)
    if closed_curve and last_pts_idx <= num_points - 1:
        left_over = num_points - 1 - last_pts_idx
        closing = list(range(last_pts_idx, num_points))
        closing += list(range(degree - left_over - 1))
        segments.append(closing)
        logger.debug("Closing segment with control points %s", closing)

    return segments


def _blend(control_points: Sequence[GroupT], t: Array) -> GroupT:
    """Evaluate one segment at parameter t by repeated pairwise blending."""
    points = list(control_points)
    while len(points) > 1:
        points = [
            q.rplus(q_next.rminus(q) * t)
            for q, q_next in zip(points[:-1], points[1:])
        ]
    return points[0]


def decasteljau(
    trajectory: Sequence[GroupT],
    degree: int,
    k_interp: int,
    closed_curve: bool = False,
) -> List[GroupT]:
    """
    Fit a smooth curve through a discretized trajectory on a Lie group.

    Each segment is sampled at t = i / segment_k_interp for i in
    1..segment_k_interp, so t = 0 is skipped: the first point of a segment is
    the last sample of the previous one.

    Args:
        trajectory: Ordered group elements (more than 2), all of one type.
        degree: Number of control points per segment, in [2, len(trajectory)].
        k_interp: Number of points interpolated per segment (degree 2) or per
            control point of the segment (higher degrees).
        closed_curve: Close the loop with a wrap-around segment if points
            are left over after the last full segment.

    Returns:
        The interpolated curve, a list of unbatched group elements.

    Raises:
        ValueError: On any violated precondition.
    """
    if len(trajectory) <= 2:
        raise ValueError(f"trajectory must have more than 2 points, got {len(trajectory)}")
    if degree > len(trajectory):
        raise ValueError(
            f"degree must not exceed the trajectory length ({len(trajectory)}), got {degree}"
        )
    if degree < 2:
        raise ValueError(f"degree must be at least 2, got {degree}")
    if k_interp <= 0:
        raise ValueError(f"k_interp must be positive, got {k_interp}")

    group_type = type(trajectory[0])
    for point in trajectory:
        if not isinstance(point, group_type):
            raise TypeError(
                f"trajectory mixes {group_type.__name__} and {type(point).__name__}"
            )
        if point.batch_shape != ():
            raise ValueError(f"trajectory points must be unbatched, got {point.batch_shape}")

    segments = segment_control_points(len(trajectory), degree, closed_curve)

    segment_k_interp = k_interp if degree == 2 else k_interp * degree
    t = jnp.arange(1, segment_k_interp + 1, dtype=trajectory[0].coeffs.dtype) / segment_k_interp

    logger.debug(
        "Fitting %d segment(s) of degree %d with %d samples each",
        len(segments), degree, segment_k_interp,
    )

    curve: List[GroupT] = []
    for indices in segments:
        control_points = [trajectory[i] for i in indices]
        samples = jax.vmap(functools.partial(_blend, control_points))(t)
        curve.extend(samples[i] for i in range(segment_k_interp))

    return curve


fit = decasteljau
