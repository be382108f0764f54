"""Spatial vectors: velocities, accelerations and forces of rigid bodies.

All three types wrap a (6,) array ordered ``[rotational; translational]``
and carry, by naming convention only, the point they are measured at and
the frame they are expressed in, e.g. ``V_WB_E`` is the spatial velocity of
frame B in W, measured at Bo and expressed in E.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from .rotation import RotationMatrix

Array = jax.Array


class _SpatialVector:
    """Arithmetic shared by the concrete spatial vector types."""
    coeffs: Array

    @classmethod
    def zero(cls, *, dtype=jnp.float64):
        return cls(jnp.zeros(6, dtype=dtype))

    @classmethod
    def from_parts(cls, rotational: Array, translational: Array):
        return cls(jnp.concatenate([jnp.asarray(rotational), jnp.asarray(translational)]))

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.coeffs,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        (coeffs,) = children
        return cls(coeffs)

    def rotational(self) -> Array:
        return self.coeffs[:3]

    def translational(self) -> Array:
        return self.coeffs[3:]

    def get_coeffs(self) -> Array:
        return self.coeffs

    def rotate_by(self, R_EF: RotationMatrix):
        """Re-express a vector given in F in frame E, i.e. ``R_EF @ self``."""
        R = R_EF.matrix
        return type(self).from_parts(R @ self.rotational(), R @ self.translational())

    def __add__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return type(self)(self.coeffs + other.coeffs)

    def __sub__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return type(self)(self.coeffs - other.coeffs)

    def __neg__(self):
        return type(self)(-self.coeffs)

    def __mul__(self, scalar):
        return type(self)(self.coeffs * scalar)

    __rmul__ = __mul__

    def is_approx(self, other, tolerance: float) -> bool:
        return bool(jnp.max(jnp.abs(self.coeffs - other.coeffs)) <= tolerance)


@register_pytree_node_class
@dataclass(frozen=True)
class SpatialVelocity(_SpatialVector):
    """Spatial velocity ``V = [ω; v]``."""
    coeffs: Array  # shape (6,)

    def shift(self, p_BoQ_E: Array) -> "SpatialVelocity":
        """Velocity of the point Q of the same body: ``[ω; v + ω × p]``."""
        w, v = self.rotational(), self.translational()
        return SpatialVelocity.from_parts(w, v + jnp.cross(w, p_BoQ_E))

    def compose_with_moving_frame_velocity(
        self, p_PoBo_E: Array, V_PB_E: "SpatialVelocity"
    ) -> "SpatialVelocity":
        """V_WB from V_WP (self) and the velocity V_PB of B measured in P."""
        return self.shift(p_PoBo_E) + V_PB_E

    def dot(self, F: "SpatialForce") -> Array:
        """Power ``F · V`` of a force applied at the same point."""
        return jnp.dot(self.coeffs, F.coeffs)


@register_pytree_node_class
@dataclass(frozen=True)
class SpatialAcceleration(_SpatialVector):
    """Spatial acceleration ``A = [α; a]``."""
    coeffs: Array  # shape (6,)

    def shift(self, p_PoQ_E: Array, w_WP_E: Array) -> "SpatialAcceleration":
        """Acceleration of the point Q of the same rigid body P.

        Args:
            p_PoQ_E: Position of Q from Po, expressed in E.
            w_WP_E: Angular velocity of P in W, expressed in E.

        Returns:
            ``[α; a + α × p + ω × (ω × p)]``
        """
        alpha, a = self.rotational(), self.translational()
        a_Q = a + jnp.cross(alpha, p_PoQ_E) + jnp.cross(w_WP_E, jnp.cross(w_WP_E, p_PoQ_E))
        return SpatialAcceleration.from_parts(alpha, a_Q)

    def compose_with_moving_frame_acceleration(
        self,
        p_PoBo_E: Array,
        w_WP_E: Array,
        V_PB_E: SpatialVelocity,
        A_PB_E: "SpatialAcceleration",
    ) -> "SpatialAcceleration":
        """A_WB from A_WP (self) and the motion of B measured in the moving frame P.

        Adds the ``ω_WP × ω_PB`` and ``2 ω_WP × v_PB`` terms that appear when
        differentiating in a rotating frame.
        """
        coriolis = SpatialAcceleration.from_parts(
            jnp.cross(w_WP_E, V_PB_E.rotational()),
            2.0 * jnp.cross(w_WP_E, V_PB_E.translational()),
        )
        return self.shift(p_PoBo_E, w_WP_E) + A_PB_E + coriolis


@register_pytree_node_class
@dataclass(frozen=True)
class SpatialForce(_SpatialVector):
    """Spatial force ``F = [τ; f]`` (torque about a point, then force)."""
    coeffs: Array  # shape (6,)

    def shift(self, p_BpBq_E: Array) -> "SpatialForce":
        """Same force system about Bq: ``[τ - p × f; f]``."""
        tau, f = self.rotational(), self.translational()
        return SpatialForce.from_parts(tau - jnp.cross(p_BpBq_E, f), f)

    def dot(self, V: SpatialVelocity) -> Array:
        return jnp.dot(self.coeffs, V.coeffs)
