"""Forces applied to a multibody tree.

:class:`MultibodyForces` accumulates generalized forces and spatial forces on
bodies. Force elements add their contribution to it; the dynamics
algorithms consume it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import jax
import jax.numpy as jnp

from ..config import DEFAULT_GRAVITY
from ..errors import TopologyError
from ..transforms import SpatialForce

if TYPE_CHECKING:
    from ..core.context import Context
    from ..core.tree import MultibodyTree
    from ..kinematics import PositionKinematics, VelocityKinematics

Array = jax.Array


class MultibodyForces:
    """Accumulator of the forces applied to a multibody tree.

    Attributes:
        generalized_forces: (num_velocities,) generalized forces τ.
        body_forces: (num_bodies, 6) spatial force F_Bo_W applied to each
                     body at its origin Bo, expressed in the world frame.
    """

    def __init__(self, generalized_forces: Array, body_forces: Array):
        self.generalized_forces = generalized_forces
        self.body_forces = body_forces

    @classmethod
    def zero(cls, tree: "MultibodyTree") -> "MultibodyForces":
        return cls(jnp.zeros(tree.num_velocities()), jnp.zeros((tree.num_bodies(), 6)))

    def set_zero(self) -> None:
        self.generalized_forces = jnp.zeros_like(self.generalized_forces)
        self.body_forces = jnp.zeros_like(self.body_forces)

    def add_in_place(self, other: "MultibodyForces") -> None:
        self.generalized_forces = self.generalized_forces + other.generalized_forces
        self.body_forces = self.body_forces + other.body_forces

    def add_generalized_forces(self, tau: Array) -> None:
        self.generalized_forces = self.generalized_forces + tau

    def add_body_force(self, body_index: int, F_Bo_W: SpatialForce) -> None:
        self.body_forces = self.body_forces.at[body_index].add(F_Bo_W.coeffs)


class ForceElement:
    """Base class of the force-producing elements owned by a tree."""

    index = None
    _tree_ref = None

    def _is_in_finalized_tree(self) -> bool:
        tree = self._tree_ref() if self._tree_ref is not None else None
        return tree is not None and tree.is_finalized()

    def calc_and_add_forces(
        self,
        tree: "MultibodyTree",
        context: "Context",
        pc: "PositionKinematics",
        vc: "VelocityKinematics",
        forces: MultibodyForces,
    ) -> None:
        raise NotImplementedError

    def calc_potential_energy(self, tree: "MultibodyTree", context: "Context", pc: "PositionKinematics") -> Array:
        return jnp.zeros(())


class UniformGravityFieldElement(ForceElement):
    """Uniform gravity acting at the center of mass of every body.

    Args:
        gravity_vector: Acceleration of gravity expressed in the world frame.
    """

    def __init__(self, gravity_vector: Sequence[float] = DEFAULT_GRAVITY):
        self._gravity_vector = jnp.asarray(gravity_vector, dtype=jnp.float64)

    def gravity_vector(self) -> Array:
        return self._gravity_vector

    def set_gravity_vector(self, gravity_vector: Sequence[float]) -> None:
        """Only allowed before the owning tree is finalized.

        Raises:
            TopologyError: If the owning tree is already finalized.
        """
        if self._is_in_finalized_tree():
            raise TopologyError(
                "set_gravity_vector(): the multibody tree is already finalized. "
                "Set gravity with PlantConfig or before calling finalize()."
            )
        self._gravity_vector = jnp.asarray(gravity_vector, dtype=jnp.float64)

    def _calc_p_BoBcm_W(self, context: "Context", pc: "PositionKinematics") -> Array:
        return jnp.einsum("bij,bj->bi", pc.R_WB, context.parameters.p_BoBcm_B)

    def calc_and_add_forces(self, tree, context, pc, vc, forces) -> None:
        mass = context.parameters.mass
        f_Bcm_W = mass[:, None] * self._gravity_vector
        # Moving the force from Bcm to Bo adds the moment p_BoBcm × f.
        tau_Bo_W = jnp.cross(self._calc_p_BoBcm_W(context, pc), f_Bcm_W)
        forces.body_forces = forces.body_forces + jnp.concatenate([tau_Bo_W, f_Bcm_W], axis=1)

    def calc_potential_energy(self, tree, context, pc) -> Array:
        p_WoBcm_W = pc.p_WoBo_W + self._calc_p_BoBcm_W(context, pc)
        return -jnp.sum(context.parameters.mass * (p_WoBcm_W @ self._gravity_vector))


@dataclass(frozen=True)
class ExternallyAppliedSpatialForce:
    """A spatial force applied to a body at a point fixed in it.

    Attributes:
        body_index: Index of the body B the force is applied to.
        p_BoBq_B: Application point Bq, from Bo, expressed in B.
        F_Bq_W: The force at Bq, expressed in the world frame.
    """
    body_index: int
    p_BoBq_B: Array
    F_Bq_W: SpatialForce

    def calc_F_Bo_W(self, pc: "PositionKinematics") -> SpatialForce:
        p_BqBo_W = -(pc.R_WB[self.body_index] @ jnp.asarray(self.p_BoBq_B, dtype=jnp.float64))
        return self.F_Bq_W.shift(p_BqBo_W)
