"""Rigid transforms (poses) implemented with JAX."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from . import se3
from .rotation import RotationMatrix

Array = jax.Array


@register_pytree_node_class  # let RigidTransform work with jit / grad / vmap …
@dataclass(frozen=True)
class RigidTransform:
    """Immutable pose X_AB = (R_AB, p_AoBo_A).

    Composition and inversion are exact algebraic operations; the rotation is
    never renormalized behind the caller's back.
    """
    rotation: RotationMatrix
    translation: Array  # shape (3,)

    # Constructors
    @classmethod
    def identity(cls, *, dtype=jnp.float64) -> "RigidTransform":
        return cls(RotationMatrix.identity(dtype=dtype), jnp.zeros(3, dtype=dtype))

    @classmethod
    def from_translation(cls, p: Array) -> "RigidTransform":
        return cls(RotationMatrix.identity(), jnp.asarray(p, dtype=jnp.float64))

    @classmethod
    def from_rotation(cls, R: RotationMatrix, p: Optional[Array] = None) -> "RigidTransform":
        if p is None:
            p = jnp.zeros(3, dtype=R.matrix.dtype)
        return cls(R, jnp.asarray(p, dtype=jnp.float64))

    @classmethod
    def from_matrix4(cls, matrix: Array) -> "RigidTransform":
        """Pose from a homogeneous matrix; the rotation block is validated."""
        matrix = jnp.asarray(matrix, dtype=jnp.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"matrix must have shape (4,4), got {matrix.shape}")
        return cls(RotationMatrix.from_matrix(matrix[:3, :3]), matrix[:3, 3])

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.rotation, self.translation), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        rotation, translation = children
        return cls(rotation, translation)

    # Basic operations
    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """X_AC = X_AB.compose(X_BC) (apply *other* first, then self)."""
        R = self.rotation.matrix
        return RigidTransform(
            RotationMatrix(R @ other.rotation.matrix),
            self.translation + R @ other.translation,
        )

    def inverse(self) -> "RigidTransform":
        """X_BA from X_AB using the block structure."""
        R_inv = self.rotation.matrix.T
        return RigidTransform(RotationMatrix(R_inv), -(R_inv @ self.translation))

    def __matmul__(self, other):
        if isinstance(other, RigidTransform):
            return self.compose(other)
        return self.transform_points(other)

    # Point transformation
    def transform_points(self, points: Array) -> Array:
        """
        Apply the transform to *points*.

        Accepted shapes
        ---------------
        * (3,)          – single point p_BoQ_B
        * (N, 3)        – many points

        Returns
        -------
        p_AoQ_A with the same shape as *points*.
        """
        points = jnp.asarray(points)
        if points.shape[-1] != 3 or points.ndim > 2:
            raise ValueError("points must have shape (3,) or (N,3)")
        return self.rotation.apply(points) + self.translation

    # Convenience helpers
    def get_as_matrix4(self) -> Array:
        return se3.from_position_and_rotation(self.translation, self.rotation.matrix)

    def get_as_matrix34(self) -> Array:
        return jnp.concatenate([self.rotation.matrix, self.translation[:, None]], axis=1)

    def is_exactly_identity(self) -> bool:
        return self.rotation.is_exactly_identity() and bool(jnp.all(self.translation == 0))

    def is_nearly_equal_to(self, other: "RigidTransform", tolerance: float) -> bool:
        return bool(jnp.max(jnp.abs(self.get_as_matrix34() - other.get_as_matrix34())) <= tolerance)
