"""Tests for De Casteljau curve fitting on Lie groups."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jax_liegroups import SE3, SO3, SE3Tangent, SO3Tangent
from jax_liegroups.algorithms import decasteljau, fit, segment_control_points


def perturbed_rotations(n, seed=0, scale=0.3):
    """Rotations walking away from the identity in small random steps."""
    keys = jax.random.split(jax.random.PRNGKey(seed), n)
    trajectory = []
    R = SO3.identity()
    for key in keys:
        R = R.rplus(SO3Tangent.sample(key, scale=scale))
        trajectory.append(R)
    return trajectory


def circle_poses(n, radius=2.0):
    """Poses on a circle in the xy-plane, facing along the tangent."""
    poses = []
    for i in range(n):
        angle = 2.0 * jnp.pi * i / n
        R = SO3Tangent(jnp.array([0.0, 0.0, angle])).exp()
        t = jnp.array([radius * jnp.cos(angle), radius * jnp.sin(angle), 0.0])
        poses.append(SE3.from_rotation_translation(R, t))
    return poses


# Preconditions
def test_rejects_short_trajectory():
    with pytest.raises(ValueError):
        decasteljau(perturbed_rotations(2), degree=2, k_interp=5)


def test_rejects_non_positive_k_interp():
    with pytest.raises(ValueError):
        decasteljau(perturbed_rotations(5), degree=3, k_interp=0)


def test_rejects_degree_above_length():
    with pytest.raises(ValueError):
        decasteljau(perturbed_rotations(4), degree=5, k_interp=5)


def test_rejects_degenerate_degree():
    with pytest.raises(ValueError):
        decasteljau(perturbed_rotations(4), degree=1, k_interp=5)


def test_rejects_mixed_groups():
    trajectory = perturbed_rotations(3) + [SE3.identity()]
    with pytest.raises(TypeError):
        decasteljau(trajectory, degree=2, k_interp=2)


# Segment layout
def test_segment_control_points_open():
    assert segment_control_points(5, 3) == [[0, 1, 2], [2, 3, 4]]
    assert segment_control_points(6, 3) == [[0, 1, 2], [2, 3, 4]]
    assert segment_control_points(4, 2) == [[0, 1], [1, 2], [2, 3]]
    assert segment_control_points(4, 4) == [[0, 1, 2, 3]]


def test_segment_control_points_closed():
    # Only the shared endpoint is left: wrap from the last point to the start
    assert segment_control_points(7, 3, closed_curve=True) == [
        [0, 1, 2], [2, 3, 4], [4, 5, 6], [6, 0, 1],
    ]
    # One extra point is left over
    assert segment_control_points(6, 3, closed_curve=True) == [
        [0, 1, 2], [2, 3, 4], [4, 5, 0],
    ]
    for n, degree in [(5, 3), (6, 4), (9, 4), (7, 2)]:
        segments = segment_control_points(n, degree, closed_curve=True)
        assert all(len(s) == degree for s in segments)


# Curve fitting
def test_end_to_end_rotations():
    trajectory = perturbed_rotations(5)
    curve = decasteljau(trajectory, degree=3, k_interp=5, closed_curve=False)

    # floor((5 - 3) / 2 + 1) = 2 segments of 5 * 3 samples
    assert len(curve) == 30
    for R in curve:
        assert isinstance(R, SO3)
        assert R.coeffs.shape == (4,)
        np.testing.assert_allclose(jnp.linalg.norm(R.coeffs), 1.0, atol=1e-12)


def test_degree_two_is_piecewise_geodesic():
    trajectory = perturbed_rotations(4, seed=3)
    k = 4
    curve = fit(trajectory, 2, k, False)

    assert len(curve) == 3 * k
    for s in range(3):
        start, end = trajectory[s], trajectory[s + 1]
        for i in range(1, k + 1):
            expected = start.rplus(end.rminus(start) * (i / k))
            assert bool(curve[s * k + i - 1].is_approx(expected, tol=1e-9))


def test_segments_end_on_their_last_control_point():
    trajectory = perturbed_rotations(7, seed=5)
    k = 3
    degree = 3
    curve = decasteljau(trajectory, degree=degree, k_interp=k)

    samples = k * degree
    for s, indices in enumerate(segment_control_points(len(trajectory), degree)):
        last = curve[(s + 1) * samples - 1]
        assert bool(last.is_approx(trajectory[indices[-1]], tol=1e-9))


def test_closed_curve_wraps_around():
    trajectory = circle_poses(7)
    curve = decasteljau(trajectory, degree=3, k_interp=4, closed_curve=True)

    # Three full segments plus the closing one, 4 * 3 samples each
    assert len(curve) == 4 * 12
    assert all(isinstance(T, SE3) for T in curve)

    # The closing segment runs from the last point back through the first
    closing = curve[3 * 12:]
    assert bool(closing[-1].is_approx(trajectory[1], tol=1e-9))
    np.testing.assert_allclose(
        closing[0].translation(), trajectory[6].translation(), atol=0.5
    )

    # Loop closure: the ends are closer than neighbouring control points
    chord = 2 * 2.0 * np.sin(np.pi / 7)
    gap = jnp.linalg.norm(curve[0].translation() - curve[-1].translation())
    assert float(gap) < chord

    # Stays near the circle throughout
    radii = jnp.stack([jnp.linalg.norm(T.translation()[:2]) for T in curve])
    assert bool(jnp.all(radii > 1.0)) and bool(jnp.all(radii < 2.5))


def test_open_curve_has_no_closing_segment():
    trajectory = circle_poses(7)
    curve = decasteljau(trajectory, degree=3, k_interp=4, closed_curve=False)
    assert len(curve) == 3 * 12


def test_fit_se3_stays_on_manifold():
    keys = jax.random.split(jax.random.PRNGKey(21), 6)
    trajectory = [SE3Tangent.sample(key, scale=0.5).exp() for key in keys]
    curve = decasteljau(trajectory, degree=4, k_interp=2)

    # floor((6 - 4) / 3 + 1) = 1 segment of 2 * 4 samples
    assert len(curve) == 8
    for T in curve:
        np.testing.assert_allclose(jnp.linalg.norm(T.quat()), 1.0, atol=1e-12)
        M = T.transform()
        np.testing.assert_allclose(M[:3, :3] @ M[:3, :3].T, jnp.eye(3), atol=1e-10)


def test_fit_preserves_dtype():
    trajectory = [SO3(R.coeffs.astype(jnp.float32)) for R in perturbed_rotations(3)]
    curve = decasteljau(trajectory, degree=3, k_interp=2)
    assert all(R.coeffs.dtype == jnp.float32 for R in curve)
