"""SO(3) array helpers in JAX.

Low-level, pure functions on raw arrays used to build rotation matrices from
axis-angle vectors, quaternions and roll-pitch-yaw angles. Validation lives in
:mod:`jax_multibody.transforms.rotation`; nothing here checks its inputs.
"""

import jax
import jax.numpy as jnp

Array = jax.Array


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector(s) to the skew-symmetric cross-product matrix.

    ``skew_symmetric(a) @ b == jnp.cross(a, b)``.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)
    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def from_axis_angle(axis: Array, angle: Array) -> Array:
    """
    Rodrigues' formula for a unit axis and an angle.

    Args:
        axis: (3,) unit vector
        angle: scalar angle in radians

    Returns:
        (3, 3) rotation matrix R = I + sin(θ) K + (1 - cos(θ)) K²
    """
    K = skew_symmetric(axis)
    s = jnp.sin(angle)
    c = jnp.cos(angle)
    return jnp.eye(3, dtype=K.dtype) + s * K + (1.0 - c) * (K @ K)


def from_quaternion(quaternion: Array) -> Array:
    """
    Convert quaternion(s) (w, x, y, z) to rotation matrices.

    The quaternion is normalized first, so any non-zero quaternion maps to a
    proper rotation. A zero quaternion produces NaNs.

    Args:
        quaternion: (..., 4) array in (w, x, y, z) order

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    quaternion = quaternion / jnp.linalg.norm(quaternion, axis=-1, keepdims=True)
    w, x, y, z = jnp.moveaxis(quaternion, -1, 0)

    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z

    return jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)


def to_quaternion(R: Array) -> Array:
    """
    Convert a rotation matrix to a unit quaternion (w, x, y, z) with w >= 0.

    Branch-free (Shepperd's method selected with masks) so that it traces
    under ``jit``.

    Args:
        R: (3, 3) rotation matrix

    Returns:
        (4,) quaternion
    """
    m00, m01, m02 = R[0, 0], R[0, 1], R[0, 2]
    m10, m11, m12 = R[1, 0], R[1, 1], R[1, 2]
    m20, m21, m22 = R[2, 0], R[2, 1], R[2, 2]
    trace = m00 + m11 + m22
    eps = jnp.finfo(R.dtype).eps

    candidates = jnp.stack([
        jnp.stack([1.0 + trace, m21 - m12, m02 - m20, m10 - m01]),
        jnp.stack([m21 - m12, 1.0 + m00 - m11 - m22, m01 + m10, m02 + m20]),
        jnp.stack([m02 - m20, m01 + m10, 1.0 + m11 - m00 - m22, m12 + m21]),
        jnp.stack([m10 - m01, m02 + m20, m12 + m21, 1.0 + m22 - m00 - m11]),
    ])
    # The diagonal entry of each candidate is 4·(component)², pick the largest.
    pivots = jnp.diagonal(candidates)
    best = jnp.argmax(pivots)
    q = candidates[best] * (0.5 / jnp.sqrt(jnp.maximum(pivots[best], eps)))
    q = jnp.where(q[0] < 0, -q, q)
    return q / jnp.linalg.norm(q)


def quaternion_multiply(a: Array, b: Array) -> Array:
    """Hamilton product a ⊗ b of two (w, x, y, z) quaternions."""
    aw, av = a[0], a[1:]
    bw, bv = b[0], b[1:]
    return jnp.concatenate([
        jnp.atleast_1d(aw * bw - jnp.dot(av, bv)),
        aw * bv + bw * av + jnp.cross(av, bv),
    ])


def from_roll_pitch_yaw(rpy: Array) -> Array:
    """
    Convert roll-pitch-yaw angles to a rotation matrix.

    Args:
        rpy: (3,) array of [roll, pitch, yaw] angles in radians.

    Returns:
        (3, 3) rotation matrix R = Rz(yaw) @ Ry(pitch) @ Rx(roll).
    """
    roll, pitch, yaw = rpy[0], rpy[1], rpy[2]
    cr, sr = jnp.cos(roll), jnp.sin(roll)
    cp, sp = jnp.cos(pitch), jnp.sin(pitch)
    cy, sy = jnp.cos(yaw), jnp.sin(yaw)

    return jnp.stack([
        jnp.stack([cy*cp, cy*sp*sr - sy*cr, cy*sp*cr + sy*sr]),
        jnp.stack([sy*cp, sy*sp*sr + cy*cr, sy*sp*cr - cy*sr]),
        jnp.stack([-sp, cp*sr, cp*cr]),
    ])
