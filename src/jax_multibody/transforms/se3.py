"""SE(3) matrix operators in JAX.

Spatial vectors in this package are ordered ``[rotational; translational]``.
The 6x6 operators below act on that ordering and are what the recursive
dynamics algorithms use internally; the value types in
:mod:`jax_multibody.transforms.spatial` are thin wrappers around them.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct a homogeneous transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=p.dtype)
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)
    return T


def shift_operator(p: Array) -> Array:
    """
    Rigid-body shift operator Φ(p) for spatial motion vectors.

    For a rigid body moving with spatial velocity V_Po = [ω; v_Po], the
    velocity of a point Q with p = p_PoQ is ``Φ(p) @ V_Po = [ω; v_Po + ω × p]``.
    The transpose shifts a spatial force the opposite way: a force F_Q applied
    at Q is equivalent to ``Φ(p).T @ F_Q = [τ_Q + p × f; f]`` applied at Po.

    Args:
        p: (3,) offset vector from the old to the new point.

    Returns:
        (6, 6) matrix [[I, 0], [-[p]x, I]]
    """
    I = jnp.eye(3, dtype=p.dtype)
    Z = jnp.zeros((3, 3), dtype=p.dtype)
    return jnp.block([[I, Z], [-so3.skew_symmetric(p), I]])


def rotation_operator(R: Array) -> Array:
    """Block-diagonal (6, 6) re-expression operator diag(R, R)."""
    Z = jnp.zeros((3, 3), dtype=R.dtype)
    return jnp.block([[R, Z], [Z, R]])


def motion_cross(V: Array) -> Array:
    """
    Spatial cross product matrix for motion vectors, ``V ×``.

    Args:
        V: (6,) spatial velocity [ω; v]

    Returns:
        (6, 6) matrix [[[ω]x, 0], [[v]x, [ω]x]]
    """
    w = so3.skew_symmetric(V[:3])
    v = so3.skew_symmetric(V[3:])
    Z = jnp.zeros((3, 3), dtype=V.dtype)
    return jnp.block([[w, Z], [v, w]])


def force_cross(V: Array) -> Array:
    """Spatial cross product for force vectors, ``V ×* = -(V ×)ᵀ``."""
    return -motion_cross(V).T

