"""SO(3) and so(3) Lie group operations in JAX.

Rotations are stored as unit quaternions (x, y, z, w); tangent elements are
angular velocity (axis-angle) 3-vectors. All methods are pure, JIT-able and
accept leading batch dimensions.
"""

from __future__ import annotations

from typing import Tuple

import jax
import jax.numpy as jnp
from flax import struct

from .base import LieGroup, Tangent, _check_last_dim, _identity_jacobian, _pack
from .rotation import (
    matrix_to_quaternion,
    normalize_quaternions,
    quaternion_conjugate,
    quaternion_multiply,
    quaternion_to_matrix,
    rpy_to_quaternion,
    skew_symmetric,
    unskew,
)

Array = jax.Array

def _small_angle_sq(dtype, root: float = 4.0) -> float:
    """Squared angle below which closed forms switch to their Taylor series.

    The threshold is eps ** (1 / root) of the dtype. Closed forms whose
    denominators grow faster (θ⁴, θ⁵) need a larger root.
    """
    return float(jnp.finfo(dtype).eps) ** (1.0 / root)


def _safe_angle(theta_sq: Array, small: Array) -> Tuple[Array, Array]:
    """Return (theta_sq, theta) with the small-angle entries replaced by 1.

    Keeps both branches of a jnp.where finite so gradients stay clean.
    """
    theta_sq_safe = jnp.where(small, 1.0, theta_sq)
    return theta_sq_safe, jnp.sqrt(theta_sq_safe)


def _jacobian_coefficients(w: Array) -> Tuple[Array, Array, Array]:
    """
    Coefficients of the so(3) exponential Jacobians.

    Jl = I + A*W + B*W², Jr = I - A*W + B*W²,
    Jl⁻¹ = I - W/2 + C*W², Jr⁻¹ = I + W/2 + C*W², with W = skew(w).

    Args:
        w: (..., 3) angular velocity

    Returns:
        A, B, C, each shaped (..., 1, 1) for broadcasting against 3x3 blocks.
    """
    theta_sq = jnp.sum(w * w, axis=-1)[..., None, None]
    small = theta_sq < _small_angle_sq(theta_sq.dtype)
    theta_sq_safe, theta = _safe_angle(theta_sq, small)

    sin_t = jnp.sin(theta)
    cos_t = jnp.cos(theta)

    # A = (1 - cos θ) / θ²
    A = jnp.where(
        small,
        0.5 - theta_sq / 24.0 + theta_sq**2 / 720.0,
        (1.0 - cos_t) / theta_sq_safe,
    )
    # B = (θ - sin θ) / θ³
    B = jnp.where(
        small,
        1.0 / 6.0 - theta_sq / 120.0 + theta_sq**2 / 5040.0,
        (theta - sin_t) / (theta_sq_safe * theta),
    )
    # C = 1/θ² - (1 + cos θ) / (2θ sin θ)
    C = jnp.where(
        small,
        1.0 / 12.0 + theta_sq / 720.0 + theta_sq**2 / 30240.0,
        1.0 / theta_sq_safe - (1.0 + cos_t) / (2.0 * theta * sin_t),
    )
    return A, B, C


@struct.dataclass
class SO3Tangent(Tangent):
    """Element of so(3): an angular velocity / axis-angle vector (wx, wy, wz)."""

    coeffs: Array  # shape (..., 3)

    dof = 3
    dim = 3

    @classmethod
    def vee(cls, matrix: Array) -> "SO3Tangent":
        matrix = jnp.asarray(matrix)
        if matrix.shape[-2:] != (3, 3):
            raise ValueError(f"matrix must have shape (...,3,3), got {matrix.shape}")
        return cls(unskew(matrix))

    def x(self) -> Array:
        return self.coeffs[..., 0]

    def y(self) -> Array:
        return self.coeffs[..., 1]

    def z(self) -> Array:
        return self.coeffs[..., 2]

    def angle(self) -> Array:
        return jnp.linalg.norm(self.coeffs, axis=-1)

    def exp(self, jacobian: bool = False):
        """
        SO(3) exponential map: convert axis-angle vector to a unit quaternion.

        Args:
            jacobian: Also return the Jacobian of the map, i.e. ``rjac()``.

        Returns:
            SO3, or (SO3, (..., 3, 3) Jacobian) when requested.
        """
        w = self.coeffs
        theta_sq = jnp.sum(w * w, axis=-1, keepdims=True)

        eps = jnp.finfo(w.dtype).eps
        small = theta_sq < eps
        theta_sq_safe, theta = _safe_angle(theta_sq, small)

        # Taylor expansion of sin(θ/2)/θ and cos(θ/2) around zero
        scale = jnp.where(small, 0.5 - theta_sq / 48.0, jnp.sin(theta / 2.0) / theta)
        real = jnp.where(small, 1.0 - theta_sq / 8.0, jnp.cos(theta / 2.0))

        result = SO3(normalize_quaternions(jnp.concatenate([w * scale, real], axis=-1)))
        return (result, self.rjac()) if jacobian else result

    def hat(self) -> Array:
        return skew_symmetric(self.coeffs)

    def rjac(self) -> Array:
        A, B, _ = _jacobian_coefficients(self.coeffs)
        W = self.hat()
        I = _identity_jacobian(3, self.batch_shape, self.coeffs.dtype)
        return I - A * W + B * jnp.matmul(W, W)

    def ljac(self) -> Array:
        A, B, _ = _jacobian_coefficients(self.coeffs)
        W = self.hat()
        I = _identity_jacobian(3, self.batch_shape, self.coeffs.dtype)
        return I + A * W + B * jnp.matmul(W, W)

    def rjacinv(self) -> Array:
        _, _, C = _jacobian_coefficients(self.coeffs)
        W = self.hat()
        I = _identity_jacobian(3, self.batch_shape, self.coeffs.dtype)
        return I + 0.5 * W + C * jnp.matmul(W, W)

    def ljacinv(self) -> Array:
        _, _, C = _jacobian_coefficients(self.coeffs)
        W = self.hat()
        I = _identity_jacobian(3, self.batch_shape, self.coeffs.dtype)
        return I - 0.5 * W + C * jnp.matmul(W, W)

    def small_adj(self) -> Array:
        return self.hat()


@struct.dataclass
class SO3(LieGroup):
    """3D rotation stored as a unit quaternion (qx, qy, qz, qw)."""

    coeffs: Array  # shape (..., 4)

    dof = 3
    dim = 3
    rep_size = 4
    tangent_type = SO3Tangent

    # Constructors
    @classmethod
    def identity(cls, batch_shape: Tuple[int, ...] = (), *, dtype=None) -> "SO3":
        q = jnp.array([0.0, 0.0, 0.0, 1.0], dtype=dtype)
        return cls(jnp.broadcast_to(q, batch_shape + (4,)))

    @classmethod
    def from_coeffs(cls, coeffs: Array) -> "SO3":
        """Build from (..., 4) xyzw quaternion coefficients, normalizing them."""
        coeffs = jnp.asarray(coeffs)
        _check_last_dim(coeffs, 4, "SO3 coefficients")
        return cls(normalize_quaternions(coeffs))

    @classmethod
    def from_quaternion(cls, quaternion: Array) -> "SO3":
        return cls.from_coeffs(quaternion)

    @classmethod
    def from_matrix(cls, matrix: Array) -> "SO3":
        matrix = jnp.asarray(matrix)
        if matrix.shape[-2:] != (3, 3):
            raise ValueError(f"matrix must have shape (...,3,3), got {matrix.shape}")
        return cls(matrix_to_quaternion(matrix))

    @classmethod
    def from_rpy(cls, roll: Array, pitch: Array, yaw: Array) -> "SO3":
        return cls(rpy_to_quaternion(roll, pitch, yaw))

    @classmethod
    def sample_uniform(cls, key: Array, batch_shape: Tuple[int, ...] = ()) -> "SO3":
        # Normalized 4D gaussian samples are uniform on S³
        return cls(normalize_quaternions(jax.random.normal(key, batch_shape + (4,))))

    # Accessors
    def quat(self) -> Array:
        return self.coeffs

    def x(self) -> Array:
        return self.coeffs[..., 0]

    def y(self) -> Array:
        return self.coeffs[..., 1]

    def z(self) -> Array:
        return self.coeffs[..., 2]

    def w(self) -> Array:
        return self.coeffs[..., 3]

    def rotation(self) -> Array:
        """(..., 3, 3) rotation matrix."""
        return quaternion_to_matrix(self.coeffs)

    def matrix(self) -> Array:
        return self.rotation()

    def transform(self) -> Array:
        """(..., 4, 4) homogeneous matrix with zero translation."""
        T = jnp.zeros(self.batch_shape + (4, 4), dtype=self.coeffs.dtype)
        T = T.at[..., :3, :3].set(self.rotation())
        T = T.at[..., 3, 3].set(1.0)
        return T

    def normalize(self) -> "SO3":
        return SO3(normalize_quaternions(self.coeffs))

    # Group operations
    def inverse(self, jacobian: bool = False):
        """
        Inverse rotation.

        Args:
            jacobian: Also return the Jacobian of the inverse, -R.

        Returns:
            SO3, or (SO3, (..., 3, 3) Jacobian) when requested.
        """
        result = SO3(quaternion_conjugate(self.coeffs))
        return (result, -self.adj()) if jacobian else result

    def compose(self, other: "SO3", jac_self: bool = False, jac_other: bool = False):
        """
        Rotation product self * other (apply *other* first, then self).

        The quaternion product is renormalized against floating point drift.

        Returns:
            SO3, or (SO3, J_self, J_other) when a Jacobian is requested, with
            J_self = Rᵀ_other and J_other = I.
        """
        self._check_same_group(other)
        result = SO3(normalize_quaternions(quaternion_multiply(self.coeffs, other.coeffs)))

        J_self = jnp.swapaxes(other.rotation(), -1, -2) if jac_self else None
        J_other = result._eye() if jac_other else None
        return _pack(result, (jac_self, jac_other), J_self, J_other)

    def act(self, v: Array, jac_self: bool = False, jac_vector: bool = False):
        """
        Rotate 3-vector(s).

        Args:
            v: (..., 3) vector(s), broadcast against the batch shape.
            jac_self: Also return d(Rv)/dR = -R [v]x.
            jac_vector: Also return d(Rv)/dv = R.
        """
        v = jnp.asarray(v)
        _check_last_dim(v, 3, "v")
        R = self.rotation()
        result = jnp.einsum("...ij,...j->...i", R, v)

        J_self = -jnp.matmul(R, skew_symmetric(v)) if jac_self else None
        J_vector = R if jac_vector else None
        return _pack(result, (jac_self, jac_vector), J_self, J_vector)

    def lift(self, jacobian: bool = False):
        """
        SO(3) logarithm map: unit quaternion to axis-angle vector.

        Uses atan2 on the quaternion halves, which stays accurate near π, and
        a series expansion near the identity.

        Args:
            jacobian: Also return the Jacobian of the map, i.e. ``rjacinv()``
                of the resulting tangent.

        Returns:
            SO3Tangent, or (SO3Tangent, (..., 3, 3) Jacobian) when requested.
        """
        xyz = self.coeffs[..., :3]
        cos_angle = self.coeffs[..., 3:]
        sin_angle_sq = jnp.sum(xyz * xyz, axis=-1, keepdims=True)

        eps = jnp.finfo(self.coeffs.dtype).eps
        small = sin_angle_sq < eps
        sin_angle = jnp.sqrt(jnp.where(small, 1.0, sin_angle_sq))
        # Near π cos_angle reaches 0; only the small branch divides by it
        cos_safe = jnp.where(small, cos_angle, 1.0)

        # Pick the representative with angle in [-π, π]
        two_angle = 2.0 * jnp.where(
            cos_angle < 0.0,
            jnp.arctan2(-sin_angle, -cos_angle),
            jnp.arctan2(sin_angle, cos_angle),
        )
        k = jnp.where(
            small,
            2.0 / cos_safe * (1.0 - sin_angle_sq / (3.0 * cos_safe**2)),
            two_angle / sin_angle,
        )

        tangent = SO3Tangent(xyz * k)
        return (tangent, tangent.rjacinv()) if jacobian else tangent

    def adj(self) -> Array:
        """Adjoint of SO(3): the rotation matrix itself."""
        return self.rotation()
