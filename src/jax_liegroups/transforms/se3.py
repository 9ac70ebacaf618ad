"""SE(3) and se(3) Lie group operations in JAX.

Rigid transforms are stored as (tx, ty, tz, qx, qy, qz, qw): a translation
followed by the unit quaternion of an embedded SO(3) element. Twists are
ordered (vx, vy, vz, wx, wy, wz), linear part first.
This implementation focuses on numerical stability, especially for small angles.
"""

from __future__ import annotations

from typing import Tuple

import jax
import jax.numpy as jnp
from flax import struct

from .base import LieGroup, Tangent, _check_last_dim, _pack
from .rotation import normalize_quaternions, skew_symmetric, unskew
from .so3 import SO3, SO3Tangent, _safe_angle, _small_angle_sq

Array = jax.Array


def _block(top_left: Array, top_right: Array, bottom_left: Array, bottom_right: Array) -> Array:
    """Assemble a (..., 6, 6) matrix from four (..., 3, 3) blocks."""
    top_left, top_right, bottom_left, bottom_right = jnp.broadcast_arrays(
        top_left, top_right, bottom_left, bottom_right
    )
    top = jnp.concatenate([top_left, top_right], axis=-1)
    bottom = jnp.concatenate([bottom_left, bottom_right], axis=-1)
    return jnp.concatenate([top, bottom], axis=-2)


def _fill_q(v: Array, w: Array) -> Array:
    """
    Off-diagonal block Q(v, w) of the se(3) left Jacobian.

    Jl([v; w]) = [[Jl(w), Q(v, w)], [0, Jl(w)]] and Jr(τ) = Jl(-τ).

    Args:
        v: (..., 3) linear part
        w: (..., 3) angular part

    Returns:
        (..., 3, 3) matrix
    """
    V = skew_symmetric(v)
    W = skew_symmetric(w)

    theta_sq = jnp.sum(w * w, axis=-1)[..., None, None]
    # c and d cancel like eps / θ⁴ and eps / θ⁵
    small = theta_sq < _small_angle_sq(theta_sq.dtype, root=8.0)
    theta_sq_safe, theta = _safe_angle(theta_sq, small)

    sin_t = jnp.sin(theta)
    cos_t = jnp.cos(theta)
    theta_4 = theta_sq_safe * theta_sq_safe

    # (θ - sin θ) / θ³
    b = jnp.where(
        small,
        1.0 / 6.0 - theta_sq / 120.0 + theta_sq**2 / 5040.0,
        (theta - sin_t) / (theta_sq_safe * theta),
    )
    # (θ² + 2 cos θ - 2) / (2 θ⁴)
    c = jnp.where(
        small,
        1.0 / 24.0 - theta_sq / 720.0 + theta_sq**2 / 40320.0,
        (theta_sq_safe + 2.0 * cos_t - 2.0) / (2.0 * theta_4),
    )
    # (2θ - 3 sin θ + θ cos θ) / (2 θ⁵)
    d = jnp.where(
        small,
        1.0 / 120.0 - theta_sq / 2520.0 + theta_sq**2 / 120960.0,
        (2.0 * theta - 3.0 * sin_t + theta * cos_t) / (2.0 * theta_4 * theta),
    )

    WV = jnp.matmul(W, V)
    VW = jnp.matmul(V, W)
    WVW = jnp.matmul(WV, W)
    WW = jnp.matmul(W, W)

    return (
        0.5 * V
        + b * (WV + VW + WVW)
        + c * (jnp.matmul(WW, V) + jnp.matmul(VW, W) - 3.0 * WVW)
        + d * (jnp.matmul(WVW, W) + jnp.matmul(W, WVW))
    )


def _inverse_block_upper(diag_inv: Array, off_diag: Array) -> Array:
    """Inverse of [[A, B], [0, A]] given A⁻¹ and B."""
    zeros = jnp.zeros_like(diag_inv)
    return _block(diag_inv, -jnp.matmul(jnp.matmul(diag_inv, off_diag), diag_inv), zeros, diag_inv)


@struct.dataclass
class SE3Tangent(Tangent):
    """Element of se(3): a twist (vx, vy, vz, wx, wy, wz)."""

    coeffs: Array  # shape (..., 6)

    dof = 6
    dim = 3

    @classmethod
    def vee(cls, matrix: Array) -> "SE3Tangent":
        matrix = jnp.asarray(matrix)
        if matrix.shape[-2:] != (4, 4):
            raise ValueError(f"matrix must have shape (...,4,4), got {matrix.shape}")
        return cls(jnp.concatenate([matrix[..., :3, 3], unskew(matrix[..., :3, :3])], axis=-1))

    @classmethod
    def from_lin_ang(cls, lin: Array, ang: Array) -> "SE3Tangent":
        lin, ang = jnp.broadcast_arrays(jnp.asarray(lin), jnp.asarray(ang))
        return cls.from_coeffs(jnp.concatenate([lin, ang], axis=-1))

    def lin(self) -> Array:
        return self.coeffs[..., :3]

    def ang(self) -> Array:
        return self.coeffs[..., 3:]

    def as_so3_tangent(self) -> SO3Tangent:
        return SO3Tangent(self.ang())

    def exp(self, jacobian: bool = False):
        """
        SE(3) exponential map: convert twist to a rigid transform.

        The rotation is the SO(3) exponential of the angular part; the
        translation is Jl(w) @ v.

        Args:
            jacobian: Also return the Jacobian of the map, i.e. ``rjac()``.

        Returns:
            SE3, or (SE3, (..., 6, 6) Jacobian) when requested.
        """
        so3_tangent = self.as_so3_tangent()
        t = jnp.einsum("...ij,...j->...i", so3_tangent.ljac(), self.lin())
        result = SE3(jnp.concatenate([t, so3_tangent.exp().coeffs], axis=-1))
        return (result, self.rjac()) if jacobian else result

    def hat(self) -> Array:
        """(..., 4, 4) matrix [[skew(w), v], [0, 0]]."""
        M = jnp.zeros(self.batch_shape + (4, 4), dtype=self.coeffs.dtype)
        M = M.at[..., :3, :3].set(skew_symmetric(self.ang()))
        M = M.at[..., :3, 3].set(self.lin())
        return M

    def rjac(self) -> Array:
        Jr = self.as_so3_tangent().rjac()
        Q = _fill_q(-self.lin(), -self.ang())
        return _block(Jr, Q, jnp.zeros_like(Jr), Jr)

    def ljac(self) -> Array:
        Jl = self.as_so3_tangent().ljac()
        Q = _fill_q(self.lin(), self.ang())
        return _block(Jl, Q, jnp.zeros_like(Jl), Jl)

    def rjacinv(self) -> Array:
        Jr_inv = self.as_so3_tangent().rjacinv()
        return _inverse_block_upper(Jr_inv, _fill_q(-self.lin(), -self.ang()))

    def ljacinv(self) -> Array:
        Jl_inv = self.as_so3_tangent().ljacinv()
        return _inverse_block_upper(Jl_inv, _fill_q(self.lin(), self.ang()))

    def small_adj(self) -> Array:
        """ad(τ) = [[skew(w), skew(v)], [0, skew(w)]]."""
        W = skew_symmetric(self.ang())
        V = skew_symmetric(self.lin())
        return _block(W, V, jnp.zeros_like(W), W)


@struct.dataclass
class SE3(LieGroup):
    """Rigid transform stored as (tx, ty, tz, qx, qy, qz, qw)."""

    coeffs: Array  # shape (..., 7)

    dof = 6
    dim = 3
    rep_size = 7
    tangent_type = SE3Tangent

    # Constructors
    @classmethod
    def identity(cls, batch_shape: Tuple[int, ...] = (), *, dtype=None) -> "SE3":
        c = jnp.array([0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0], dtype=dtype)
        return cls(jnp.broadcast_to(c, batch_shape + (7,)))

    @classmethod
    def from_coeffs(cls, coeffs: Array) -> "SE3":
        """Build from (..., 7) coefficients, normalizing the quaternion part."""
        coeffs = jnp.asarray(coeffs)
        _check_last_dim(coeffs, 7, "SE3 coefficients")
        return cls(jnp.concatenate(
            [coeffs[..., :3], normalize_quaternions(coeffs[..., 3:])], axis=-1
        ))

    @classmethod
    def from_rotation_translation(cls, rotation, translation: Array) -> "SE3":
        """
        Construct SE(3) transform from a rotation and a translation.

        Args:
            rotation: SO3 element or (..., 3, 3) rotation matrix
            translation: (..., 3) translation vector
        """
        if not isinstance(rotation, SO3):
            rotation = SO3.from_matrix(rotation)
        translation = jnp.asarray(translation)
        _check_last_dim(translation, 3, "translation")

        dtype = jnp.result_type(translation, rotation.coeffs)
        batch_shape = jnp.broadcast_shapes(translation.shape[:-1], rotation.batch_shape)
        translation = jnp.broadcast_to(translation, batch_shape + (3,)).astype(dtype)
        quat = jnp.broadcast_to(rotation.coeffs, batch_shape + (4,)).astype(dtype)
        return cls(jnp.concatenate([translation, quat], axis=-1))

    @classmethod
    def from_matrix(cls, matrix: Array) -> "SE3":
        """Construct from a (..., 4, 4) homogeneous matrix."""
        matrix = jnp.asarray(matrix)
        if matrix.shape[-2:] != (4, 4):
            raise ValueError(f"matrix must have shape (...,4,4), got {matrix.shape}")
        return cls.from_rotation_translation(SO3.from_matrix(matrix[..., :3, :3]), matrix[..., :3, 3])

    @classmethod
    def from_translation(cls, translation: Array) -> "SE3":
        return cls.from_rotation_translation(SO3.identity(), translation)

    @classmethod
    def sample_uniform(
        cls, key: Array, batch_shape: Tuple[int, ...] = (), *, translation_scale: float = 1.0
    ) -> "SE3":
        """Uniform rotation, translation uniform in [-scale, scale]³."""
        key_t, key_r = jax.random.split(key)
        t = jax.random.uniform(
            key_t, batch_shape + (3,), minval=-translation_scale, maxval=translation_scale
        )
        return cls.from_rotation_translation(SO3.sample_uniform(key_r, batch_shape), t)

    # Accessors
    def as_so3(self) -> SO3:
        """The embedded rotation, over the trailing quaternion coefficients."""
        return SO3(self.coeffs[..., 3:])

    def translation(self) -> Array:
        return self.coeffs[..., :3]

    def quat(self) -> Array:
        return self.coeffs[..., 3:]

    def rotation(self) -> Array:
        return self.as_so3().rotation()

    def x(self) -> Array:
        return self.coeffs[..., 0]

    def y(self) -> Array:
        return self.coeffs[..., 1]

    def z(self) -> Array:
        return self.coeffs[..., 2]

    def transform(self) -> Array:
        """(..., 4, 4) homogeneous transformation matrix."""
        T = jnp.zeros(self.batch_shape + (4, 4), dtype=self.coeffs.dtype)
        T = T.at[..., :3, :3].set(self.rotation())
        T = T.at[..., :3, 3].set(self.translation())
        T = T.at[..., 3, 3].set(1.0)
        return T

    def matrix(self) -> Array:
        return self.transform()

    def normalize(self) -> "SE3":
        return SE3.from_coeffs(self.coeffs)

    # Group operations
    def inverse(self, jacobian: bool = False):
        """
        Compute inverse of SE(3) transform, (-Rᵀt, R⁻¹).

        Args:
            jacobian: Also return the Jacobian of the inverse, -Adj.

        Returns:
            SE3, or (SE3, (..., 6, 6) Jacobian) when requested.
        """
        R_inv = self.as_so3().inverse()
        t_inv = -R_inv.act(self.translation())
        result = SE3(jnp.concatenate([t_inv, R_inv.coeffs], axis=-1))
        return (result, -self.adj()) if jacobian else result

    def compose(self, other: "SE3", jac_self: bool = False, jac_other: bool = False):
        """
        Self ∘ other (apply *other* first, then self).

        Returns:
            SE3, or (SE3, J_self, J_other) when a Jacobian is requested, with
            J_self the inverse adjoint of *other* and J_other = I.
        """
        self._check_same_group(other)
        t = self.as_so3().act(other.translation()) + self.translation()
        q = self.as_so3().compose(other.as_so3()).coeffs
        result = SE3(jnp.concatenate([t, q], axis=-1))

        J_self = other.inverse().adj() if jac_self else None
        J_other = result._eye() if jac_other else None
        return _pack(result, (jac_self, jac_other), J_self, J_other)

    def act(self, v: Array, jac_self: bool = False, jac_vector: bool = False):
        """
        Apply the SE(3) transform to 3D point(s): R v + t.

        Args:
            v: (..., 3) point(s), broadcast against the batch shape.
            jac_self: Jacobian w.r.t. the transform. Not available yet;
                requesting it raises NotImplementedError.
            jac_vector: Also return d(Rv + t)/dv = R.
        """
        if jac_self:
            raise NotImplementedError(
                "SE3.act Jacobian with respect to the transform is not implemented yet"
            )
        v = jnp.asarray(v)
        _check_last_dim(v, 3, "v")
        R = self.rotation()
        result = jnp.einsum("...ij,...j->...i", R, v) + self.translation()

        return _pack(result, (jac_self, jac_vector), None, R)

    def lift(self, jacobian: bool = False):
        """
        SE(3) logarithm map: convert transform to twist.

        The angular part is the SO(3) logarithm of the embedded rotation; the
        linear part is Jl(w)⁻¹ @ t.

        Args:
            jacobian: Also return the Jacobian of the map, i.e. ``rjacinv()``
                of the resulting twist.

        Returns:
            SE3Tangent, or (SE3Tangent, (..., 6, 6) Jacobian) when requested.
        """
        so3_tangent = self.as_so3().lift()
        v = jnp.einsum("...ij,...j->...i", so3_tangent.ljacinv(), self.translation())
        tangent = SE3Tangent(jnp.concatenate([v, so3_tangent.coeffs], axis=-1))
        return (tangent, tangent.rjacinv()) if jacobian else tangent

    def adj(self) -> Array:
        """
        Compute the 6x6 adjoint matrix of the transform.

        Both diagonal blocks are R, the bottom-left block is [t]x R and the
        top-right block is zero.
        """
        R = self.rotation()
        t_skew = skew_symmetric(self.translation())
        return _block(R, jnp.zeros_like(R), jnp.matmul(t_skew, R), R)
