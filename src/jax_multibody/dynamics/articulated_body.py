"""The Articulated Body Algorithm (ABA) for forward dynamics.

Computes the generalized accelerations v̇ of a tree in O(n) with two sweeps
over the body nodes after the kinematics passes:

1. Tip to base: the articulated body inertia P_B of each subtree, its
   projection D_B = H_PB_Wᵀ P_B H_PB_W onto the inboard joint (the hinge
   inertia), and the articulated body force Z_B.
2. Base to tip: the joint accelerations and the body spatial accelerations.

All spatial quantities are about the body origin Bo and expressed in W;
``Φ`` is :func:`~jax_multibody.transforms.se3.shift_operator` of p_PoBo_W.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Tuple

import jax
import jax.numpy as jnp
import jax.scipy.linalg
from flax import struct

from .. import kinematics
from ..config import DEFAULT_HINGE_INERTIA_TOLERANCE
from ..core.inertia import SpatialInertia
from ..errors import SingularHingeInertiaError
from ..scalar import resolve_bool
from ..transforms import se3
from .forces import MultibodyForces

if TYPE_CHECKING:
    from ..core.tree import MultibodyTree

Array = jax.Array


@struct.dataclass
class ArticulatedBodyInertiaCache:
    """Per node results of the inertia sweep. Depends on q only.

    Attributes:
        P_B_W: Articulated body inertia of each subtree, (6, 6).
        Pplus_PB_W: The same inertia as felt by the parent body through the
                    joint, P_B - g_PB_W H_PB_Wᵀ P_B.
        llt_D_B: Lower Cholesky factor of the hinge inertia D_B, (nv, nv).
        g_PB_W: Kalman gain P_B H_PB_W D_B⁻¹, (6, nv).
    """
    P_B_W: Tuple[Array, ...]
    Pplus_PB_W: Tuple[Array, ...]
    llt_D_B: Tuple[Array, ...]
    g_PB_W: Tuple[Array, ...]


@struct.dataclass
class ArticulatedBodyForceCache:
    """Per node results of the force sweep. Depends on q, v and the forces.

    Attributes:
        Ab_WB: (num_nodes, 6) velocity dependent acceleration bias.
        Z_B_W: (num_nodes, 6) articulated body force.
        Zplus_PB_W: (num_nodes, 6) articulated body force seen by the parent.
        e_B: Per node, the (nv,) generalized force residual τ - H_PB_Wᵀ Z_B.
    """
    Ab_WB: Array
    Z_B_W: Array
    Zplus_PB_W: Array
    e_B: Tuple[Array, ...]


def throw_if_singular_hinge_inertia(
    body_node_index: int, llt_D_B: Array, P_B_W: Array, tolerance: float
) -> None:
    """
    Raise if the Cholesky factorization of a hinge inertia is unusable.

    D_B is numerically singular when the factorization failed (non-finite
    factor) or when its smallest pivot squared is at most ``tolerance``
    times the largest entry of P_B_W. Does nothing for traced values.

    Raises:
        SingularHingeInertiaError: identifying ``body_node_index``.
    """
    min_pivot = jnp.min(jnp.diagonal(llt_D_B))
    is_regular = resolve_bool(
        jnp.all(jnp.isfinite(llt_D_B)) & (min_pivot * min_pivot > tolerance * jnp.max(jnp.abs(P_B_W)))
    )
    if is_regular is not None and not is_regular:
        raise SingularHingeInertiaError(body_node_index)


def _calc_matrix6(M_Bo_W: SpatialInertia) -> Array:
    return jax.vmap(lambda M: M.copy_to_full_matrix6())(M_Bo_W)


def _calc_bias_forces(M_Bo_W: SpatialInertia, V_WB: Array) -> Array:
    return jax.vmap(lambda M, V: M.calc_bias_force(V[:3]).coeffs)(M_Bo_W, V_WB)


def calc_articulated_body_inertia_cache(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    M_Bo_W: SpatialInertia,
    tolerance: float = DEFAULT_HINGE_INERTIA_TOLERANCE,
) -> ArticulatedBodyInertiaCache:
    """
    Tip-to-base sweep computing the articulated body inertias.

    Args:
        tree: Finalized multibody tree.
        pc: Position kinematics.
        M_Bo_W: Batched spatial inertias from
                :func:`~jax_multibody.kinematics.calc_spatial_inertias_in_world`.
        tolerance: Relative threshold of the singular hinge inertia check.

    Raises:
        SingularHingeInertiaError: the first (tip-most) node whose hinge
                                   inertia is numerically singular.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    M_matrix6 = _calc_matrix6(M_Bo_W)

    P_B_W = [jnp.zeros((6, 6))] * num_nodes
    Pplus_PB_W = [jnp.zeros((6, 6))] * num_nodes
    llt_D_B = [jnp.zeros((0, 0))] * num_nodes
    g_PB_W = [jnp.zeros((6, 0))] * num_nodes

    for node in reversed(range(1, num_nodes)):
        P_B = M_matrix6[topology.body_of_node[node]]
        for child in topology.children_of_node[node]:
            Phi = se3.shift_operator(pc.p_PoBo_W[child])
            P_B = P_B + Phi.T @ Pplus_PB_W[child] @ Phi
        P_B_W[node] = P_B

        if topology.nv[node] == 0:
            Pplus_PB_W[node] = P_B
            continue

        H = pc.H_PB_W[node]
        U = P_B @ H
        D_B = H.T @ U
        llt = jnp.linalg.cholesky(D_B)
        throw_if_singular_hinge_inertia(node, llt, P_B, tolerance)
        # D_B is symmetric, so g = U D⁻¹ = (D⁻¹ Uᵀ)ᵀ.
        g = jax.scipy.linalg.cho_solve((llt, True), U.T).T
        llt_D_B[node] = llt
        g_PB_W[node] = g
        Pplus_PB_W[node] = P_B - g @ U.T

    return ArticulatedBodyInertiaCache(
        P_B_W=tuple(P_B_W),
        Pplus_PB_W=tuple(Pplus_PB_W),
        llt_D_B=tuple(llt_D_B),
        g_PB_W=tuple(g_PB_W),
    )


def calc_articulated_body_force_cache(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    vc: "kinematics.VelocityKinematics",
    M_Bo_W: SpatialInertia,
    abic: ArticulatedBodyInertiaCache,
    forces: MultibodyForces,
) -> ArticulatedBodyForceCache:
    """
    Tip-to-base sweep computing the articulated body forces.

    Z_B = Fb_B - F_app_B + Σ Φᵀ Zplus_C over the children C, where Fb_B is
    the gyroscopic bias force of B and F_app_B the applied force at Bo.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    Ab_WB = kinematics.calc_acceleration_bias(tree, pc, vc)
    Fb_Bo_W = _calc_bias_forces(M_Bo_W, vc.V_WB)
    tau = forces.generalized_forces

    Z_B_W = [jnp.zeros(6)] * num_nodes
    Zplus_PB_W = [jnp.zeros(6)] * num_nodes
    e_B = [jnp.zeros(0)] * num_nodes

    for node in reversed(range(1, num_nodes)):
        body = topology.body_of_node[node]
        Z_B = Fb_Bo_W[body] - forces.body_forces[body]
        for child in topology.children_of_node[node]:
            Z_B = Z_B + se3.shift_operator(pc.p_PoBo_W[child]).T @ Zplus_PB_W[child]
        Z_B_W[node] = Z_B

        tau_node = tau[topology.v_start[node]:topology.v_start[node] + topology.nv[node]]
        e = tau_node - pc.H_PB_W[node].T @ Z_B
        e_B[node] = e
        Zplus_PB_W[node] = Z_B + abic.Pplus_PB_W[node] @ Ab_WB[node] + abic.g_PB_W[node] @ e

    return ArticulatedBodyForceCache(
        Ab_WB=Ab_WB,
        Z_B_W=jnp.stack(Z_B_W),
        Zplus_PB_W=jnp.stack(Zplus_PB_W),
        e_B=tuple(e_B),
    )


def calc_articulated_body_accelerations(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    abic: ArticulatedBodyInertiaCache,
    aba_force_cache: ArticulatedBodyForceCache,
) -> "kinematics.AccelerationKinematics":
    """
    Base-to-tip sweep: v̇_B = D_B⁻¹ e_B - g_PB_Wᵀ (Φ A_WP + Ab_WB).

    Returns:
        :class:`~jax_multibody.kinematics.AccelerationKinematics` with v̇ in
        the same order as v.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    A_WB = [jnp.zeros(6)] * num_nodes
    vdot = []

    # Velocity offsets are assigned in node order, so v̇ is assembled in order.
    for node in range(1, num_nodes):
        A_WP = A_WB[topology.parent_node[node]]
        Ap_WB = se3.shift_operator(pc.p_PoBo_W[node]) @ A_WP + aba_force_cache.Ab_WB[node]
        if topology.nv[node] == 0:
            A_WB[node] = Ap_WB
            continue
        nu_B = jax.scipy.linalg.cho_solve((abic.llt_D_B[node], True), aba_force_cache.e_B[node])
        vdot_B = nu_B - abic.g_PB_W[node].T @ Ap_WB
        vdot.append(vdot_B)
        A_WB[node] = Ap_WB + pc.H_PB_W[node] @ vdot_B

    node_of_body = topology.node_of_body
    return kinematics.AccelerationKinematics(
        vdot=jnp.concatenate(vdot) if vdot else jnp.zeros(0),
        A_WB=jnp.stack([A_WB[node_of_body[b]] for b in range(tree.num_bodies())]),
    )


def calc_forward_dynamics(
    tree: "MultibodyTree",
    pc: "kinematics.PositionKinematics",
    vc: "kinematics.VelocityKinematics",
    M_Bo_W: SpatialInertia,
    forces: MultibodyForces,
    tolerance: float = DEFAULT_HINGE_INERTIA_TOLERANCE,
    abic: Optional[ArticulatedBodyInertiaCache] = None,
) -> "kinematics.AccelerationKinematics":
    """
    Generalized accelerations of the tree under ``forces``.

    Args:
        tree: Finalized multibody tree.
        pc: Position kinematics.
        vc: Velocity kinematics.
        M_Bo_W: Batched spatial inertias about the body origins in W.
        forces: Applied forces, gravity included.
        tolerance: Relative threshold of the singular hinge inertia check.
        abic: Articulated body inertia cache for the same q, computed here
              when omitted.

    Returns:
        :class:`~jax_multibody.kinematics.AccelerationKinematics`.
        A tree without velocities returns an empty v̇ without running ABA.
    """
    if tree.num_velocities() == 0:
        return kinematics.AccelerationKinematics(
            vdot=jnp.zeros(0), A_WB=jnp.zeros((tree.num_bodies(), 6))
        )
    if abic is None:
        abic = calc_articulated_body_inertia_cache(tree, pc, M_Bo_W, tolerance)
    aba_force_cache = calc_articulated_body_force_cache(tree, pc, vc, M_Bo_W, abic, forces)
    return calc_articulated_body_accelerations(tree, pc, abic, aba_force_cache)
