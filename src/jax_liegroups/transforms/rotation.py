"""Quaternion and rotation-matrix utilities in JAX.

Quaternions are stored as (x, y, z, w), vector part first. Every helper is
pure, batch-friendly over leading dimensions and JIT-able.
"""

import jax
import jax.numpy as jnp

# Type aliases
Array = jax.Array


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric (cross-product) matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix such that skew(a) @ b == cross(a, b)
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def unskew(matrix: Array) -> Array:
    """Inverse of skew_symmetric: (..., 3, 3) -> (..., 3)."""
    return jnp.stack([
        matrix[..., 2, 1],
        matrix[..., 0, 2],
        matrix[..., 1, 0],
    ], axis=-1)


def normalize_quaternions(quaternions: Array) -> Array:
    """Normalize quaternions to unit length."""
    return quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)


def quaternion_conjugate(quaternions: Array) -> Array:
    """Conjugate (inverse for unit quaternions) of (..., 4) xyzw quaternions."""
    return jnp.concatenate([-quaternions[..., :3], quaternions[..., 3:]], axis=-1)


def quaternion_multiply(q1: Array, q2: Array) -> Array:
    """
    Hamilton product q1 * q2 of xyzw quaternions.

    Leading dimensions broadcast against each other.

    Args:
        q1: (..., 4) left quaternion
        q2: (..., 4) right quaternion

    Returns:
        (..., 4) product quaternion
    """
    x1, y1, z1, w1 = jnp.moveaxis(q1, -1, 0)
    x2, y2, z2, w2 = jnp.moveaxis(q2, -1, 0)

    return jnp.stack([
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    ], axis=-1)


def quaternion_to_matrix(quaternions: Array) -> Array:
    """
    Convert quaternions to rotation matrices.

    Args:
        quaternions: (..., 4) array of quaternions in (x, y, z, w) format

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    # Normalize quaternions for numerical stability
    quaternions = normalize_quaternions(quaternions)

    # Unpack quaternion components - preserving batch dimensions
    x, y, z, w = jnp.moveaxis(quaternions, -1, 0)

    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z

    matrix = jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)

    return matrix


def matrix_to_quaternion(matrix: Array) -> Array:
    """
    Convert rotation matrices to quaternions (x, y, z, w).
    Batch-safe and JIT-friendly implementation.

    The returned quaternion has a non-negative scalar part.

    Args:
        matrix: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of quaternions in (x, y, z, w) format
    """
    m00 = matrix[..., 0, 0]
    m01 = matrix[..., 0, 1]
    m02 = matrix[..., 0, 2]
    m10 = matrix[..., 1, 0]
    m11 = matrix[..., 1, 1]
    m12 = matrix[..., 1, 2]
    m20 = matrix[..., 2, 0]
    m21 = matrix[..., 2, 1]
    m22 = matrix[..., 2, 2]

    trace = m00 + m11 + m22

    # Use dtype-adaptive epsilon
    eps = jnp.finfo(matrix.dtype).eps

    # Four candidate quaternions, one per dominant component
    q0 = jnp.stack([
        m21 - m12,
        m02 - m20,
        m10 - m01,
        trace + 1.0,
    ], axis=-1) * 0.5

    q1 = jnp.stack([
        m00 - m11 - m22 + 1.0,
        m01 + m10,
        m02 + m20,
        m21 - m12,
    ], axis=-1) * 0.5

    q2 = jnp.stack([
        m01 + m10,
        m11 - m00 - m22 + 1.0,
        m12 + m21,
        m02 - m20,
    ], axis=-1) * 0.5

    q3 = jnp.stack([
        m02 + m20,
        m12 + m21,
        m22 - m00 - m11 + 1.0,
        m10 - m01,
    ], axis=-1) * 0.5

    s0 = 1.0 / jnp.sqrt(jnp.maximum(1.0 + trace, eps))
    s1 = 1.0 / jnp.sqrt(jnp.maximum(1.0 + m00 - m11 - m22, eps))
    s2 = 1.0 / jnp.sqrt(jnp.maximum(1.0 + m11 - m00 - m22, eps))
    s3 = 1.0 / jnp.sqrt(jnp.maximum(1.0 + m22 - m00 - m11, eps))

    q0 = q0 * s0[..., None]
    q1 = q1 * s1[..., None]
    q2 = q2 * s2[..., None]
    q3 = q3 * s3[..., None]

    mask0 = (trace > 0)
    mask1 = (~mask0) & (m00 > m11) & (m00 > m22)
    mask2 = (~mask0) & (~mask1) & (m11 > m22)
    mask3 = (~mask0) & (~mask1) & (~mask2)

    quaternion = (
        jnp.where(mask0[..., None], q0, 0) +
        jnp.where(mask1[..., None], q1, 0) +
        jnp.where(mask2[..., None], q2, 0) +
        jnp.where(mask3[..., None], q3, 0)
    )

    # Ensure non-negative scalar part and normalize
    quaternion = jnp.where(quaternion[..., 3:4] < 0, -quaternion, quaternion)
    quaternion = normalize_quaternions(quaternion)

    return quaternion


def rpy_to_quaternion(roll: Array, pitch: Array, yaw: Array) -> Array:
    """
    Convert intrinsic Z-Y-X Euler angles to xyzw quaternions.

    The resulting rotation is Rz(yaw) @ Ry(pitch) @ Rx(roll).
    """
    roll, pitch, yaw = jnp.broadcast_arrays(
        jnp.asarray(roll), jnp.asarray(pitch), jnp.asarray(yaw)
    )
    cr, sr = jnp.cos(roll / 2.0), jnp.sin(roll / 2.0)
    cp, sp = jnp.cos(pitch / 2.0), jnp.sin(pitch / 2.0)
    cy, sy = jnp.cos(yaw / 2.0), jnp.sin(yaw / 2.0)

    return jnp.stack([
        sr * cp * cy - cr * sp * sy,
        cr * sp * cy + sr * cp * sy,
        cr * cp * sy - sr * sp * cy,
        cr * cp * cy + sr * sp * sy,
    ], axis=-1)
