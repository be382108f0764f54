"""Inverse dynamics (recursive Newton-Euler) and the mass matrix.

These are O(n) and O(n²) companions of the articulated body algorithm.
They are used to form implicit residuals of the equations of motion and as
an independent check of forward dynamics.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import jax
import jax.numpy as jnp

from .. import kinematics
from ..core.inertia import SpatialInertia
from ..transforms import se3
from .forces import MultibodyForces

if TYPE_CHECKING:
    from ..core.tree import MultibodyTree

Array = jax.Array


def calc_inverse_dynamics(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    vc: "kinematics.VelocityKinematics",
    M_Bo_W: SpatialInertia,
    vdot: Array,
    forces: MultibodyForces,
) -> Array:
    """
    Generalized forces needed to produce ``vdot`` on top of ``forces``.

    Returns:
        (num_velocities,) array τ_id = M(q) v̇ + C(q, v) v - τ_app - Σ Jᵀ F_app,
        where τ_app and F_app are the generalized and body forces in
        ``forces``.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    ac = kinematics.calc_spatial_acceleration(tree, pc, vc, vdot)

    def calc_net_force(M, A, V):
        return M.copy_to_full_matrix6() @ A + M.calc_bias_force(V[:3]).coeffs

    # Net spatial force on each body at Bo: M A + Fb - F_app.
    F_net_Bo_W = jax.vmap(calc_net_force)(M_Bo_W, ac.A_WB, vc.V_WB) - forces.body_forces

    F_BMo_W = [jnp.zeros(6)] * num_nodes
    tau = [jnp.zeros(0)] * num_nodes
    for node in reversed(range(1, num_nodes)):
        F_B = F_net_Bo_W[topology.body_of_node[node]]
        for child in topology.children_of_node[node]:
            F_B = F_B + se3.shift_operator(pc.p_PoBo_W[child]).T @ F_BMo_W[child]
        F_BMo_W[node] = F_B
        tau[node] = pc.H_PB_W[node].T @ F_B

    tau_id = jnp.concatenate(tau[1:]) if num_nodes > 1 else jnp.zeros(0)
    return tau_id - forces.generalized_forces


def calc_mass_matrix_via_inverse_dynamics(
    tree: "MultibodyTree", pc: "kinematics.PositionKinematics", M_Bo_W: SpatialInertia
) -> Array:
    """
    (num_velocities, num_velocities) mass matrix M(q).

    Column j is the inverse dynamics of the unit acceleration e_j with zero
    velocities and no applied forces; all columns are evaluated with
    ``jax.vmap``.
    """
    nv = tree.num_velocities()
    if nv == 0:
        return jnp.zeros((0, 0))
    vc = kinematics.calc_velocity_kinematics(tree, pc, jnp.zeros(nv))
    forces = MultibodyForces.zero(tree)

    def column(vdot: Array) -> Array:
        return calc_inverse_dynamics(tree, pc, vc, M_Bo_W, vdot, forces)

    return jax.vmap(column, out_axes=1)(jnp.eye(nv))


def calc_bias_term(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    vc: "kinematics.VelocityKinematics",
    M_Bo_W: SpatialInertia,
) -> Array:
    """Coriolis, centripetal and gyroscopic terms C(q, v) v."""
    forces = MultibodyForces.zero(tree)
    return calc_inverse_dynamics(tree, pc, vc, M_Bo_W, jnp.zeros(tree.num_velocities()), forces)
