"""Position, velocity and acceleration kinematics of a multibody tree.

Every function here is pure: it takes a finalized
:class:`~jax_multibody.core.tree.MultibodyTree` (static structure) and JAX
arrays, and loops over the body nodes in base-to-tip order. The loops unroll
under ``jax.jit`` and are differentiable with ``jax.jvp`` / ``jax.jacfwd``.

Quantities "per body" are indexed by body index; quantities that describe
the motion across a joint ("per node") are indexed by body node index, the
breadth-first order in which the tree is traversed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

import jax
import jax.numpy as jnp
from flax import struct

from .core.context import BodyParameters
from .core.inertia import SpatialInertia
from .transforms import RigidTransform, RotationMatrix, SpatialAcceleration, SpatialVelocity, se3

if TYPE_CHECKING:
    from .core.tree import MultibodyTree

Array = jax.Array


@struct.dataclass
class PositionKinematics:
    """Results of the position kinematics pass.

    Attributes:
        R_WB: (num_bodies, 3, 3) orientation of each body in the world.
        p_WoBo_W: (num_bodies, 3) position of each body origin in the world.
        p_PoBo_W: (num_nodes, 3) position of the body origin Bo from its
                  parent body origin Po, expressed in W.
        p_MoBo_W: (num_nodes, 3) position of Bo from the origin of the inboard
                  joint's child frame M, expressed in W.
        H_PB_W: Per node, the (6, nv) matrix with V_PB_W = H_PB_W v_node,
                the velocity of B in its parent P measured at Bo.
    """
    R_WB: Array
    p_WoBo_W: Array
    p_PoBo_W: Array
    p_MoBo_W: Array
    H_PB_W: Tuple[Array, ...]

    def get_X_WB(self, body_index: int) -> RigidTransform:
        return RigidTransform(RotationMatrix(self.R_WB[body_index]), self.p_WoBo_W[body_index])


@struct.dataclass
class VelocityKinematics:
    """Results of the velocity kinematics pass.

    Attributes:
        V_WB: (num_bodies, 6) spatial velocity of each body in the world,
              measured at Bo and expressed in W.
        V_PB_W: (num_nodes, 6) velocity of each body in its parent body,
                measured at Bo and expressed in W.
    """
    V_WB: Array
    V_PB_W: Array

    def get_V_WB(self, body_index: int) -> SpatialVelocity:
        return SpatialVelocity(self.V_WB[body_index])


@struct.dataclass
class AccelerationKinematics:
    """Generalized accelerations and the body accelerations they produce.

    Attributes:
        vdot: (num_velocities,) generalized accelerations.
        A_WB: (num_bodies, 6) spatial acceleration of each body in the world,
              measured at Bo and expressed in W.
    """
    vdot: Array
    A_WB: Array

    def get_A_WB(self, body_index: int) -> SpatialAcceleration:
        return SpatialAcceleration(self.A_WB[body_index])


def _node_slice(x: Array, start: int, size: int) -> Array:
    return x[start:start + size]


def _to_body_order(tree: "MultibodyTree", per_node) -> Array:
    node_of_body = tree.topology.node_of_body
    return jnp.stack([per_node[node_of_body[b]] for b in range(tree.num_bodies())])


def calc_position_kinematics(tree: "MultibodyTree", q: Array) -> PositionKinematics:
    """World poses of all bodies and the across-joint quantities used by ABA.

    Args:
        tree: Finalized multibody tree.
        q: (num_positions,) generalized positions.

    Returns:
        :class:`PositionKinematics`.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    q = jnp.asarray(q)

    R_WB = [jnp.eye(3)] * num_nodes
    p_WoBo_W = [jnp.zeros(3)] * num_nodes
    p_PoBo_W = [jnp.zeros(3)] * num_nodes
    p_MoBo_W = [jnp.zeros(3)] * num_nodes
    H_PB_W = [jnp.zeros((6, 0))] * num_nodes

    for node in range(1, num_nodes):
        joint = tree.joints[topology.joint_of_node[node]]
        parent = topology.parent_node[node]
        q_node = _node_slice(q, topology.q_start[node], topology.nq[node])

        X_PF = joint.frame_on_parent.get_fixed_pose_in_body_frame()
        X_BM = joint.frame_on_child.get_fixed_pose_in_body_frame()
        X_PB = X_PF @ joint.calc_X_FM(q_node) @ X_BM.inverse()

        R_WP = R_WB[parent]
        R_WB[node] = R_WP @ X_PB.rotation.matrix
        p_PoBo_W[node] = R_WP @ X_PB.translation
        p_WoBo_W[node] = p_WoBo_W[parent] + p_PoBo_W[node]
        p_MoBo_W[node] = -(R_WB[node] @ X_BM.translation)

        # H_FM is expressed in F at Mo; re-express in W and move to Bo.
        R_WF = R_WP @ X_PF.rotation.matrix
        H_PB_W[node] = (
            se3.shift_operator(p_MoBo_W[node]) @ se3.rotation_operator(R_WF) @ joint.calc_H_FM(q_node)
        )

    return PositionKinematics(
        R_WB=_to_body_order(tree, R_WB),
        p_WoBo_W=_to_body_order(tree, p_WoBo_W),
        p_PoBo_W=jnp.stack(p_PoBo_W),
        p_MoBo_W=jnp.stack(p_MoBo_W),
        H_PB_W=tuple(H_PB_W),
    )


def calc_velocity_kinematics(tree: "MultibodyTree", pc: PositionKinematics, v: Array) -> VelocityKinematics:
    """World spatial velocities of all bodies.

    Args:
        tree: Finalized multibody tree.
        pc: Position kinematics for the current q.
        v: (num_velocities,) generalized velocities.

    Returns:
        :class:`VelocityKinematics`.
    """
    topology = tree.topology
    num_nodes = topology.num_nodes
    v = jnp.asarray(v)

    V_WB = [SpatialVelocity.zero()] * num_nodes
    V_PB_W = [SpatialVelocity.zero()] * num_nodes
    for node in range(1, num_nodes):
        v_node = _node_slice(v, topology.v_start[node], topology.nv[node])
        V_PB_W[node] = SpatialVelocity(pc.H_PB_W[node] @ v_node)
        V_WB[node] = V_WB[topology.parent_node[node]].compose_with_moving_frame_velocity(
            pc.p_PoBo_W[node], V_PB_W[node]
        )

    return VelocityKinematics(
        V_WB=_to_body_order(tree, [V.coeffs for V in V_WB]),
        V_PB_W=jnp.stack([V.coeffs for V in V_PB_W]),
    )


def _compose_node_acceleration(
    tree: "MultibodyTree",
    pc: PositionKinematics,
    vc: VelocityKinematics,
    node: int,
    A_WP: SpatialAcceleration,
    vdot_node: Array,
) -> SpatialAcceleration:
    """A_WB of the body of ``node`` from its parent's acceleration A_WP."""
    topology = tree.topology
    parent_body = topology.body_of_node[topology.parent_node[node]]
    w_WP = vc.V_WB[parent_body, :3]
    V_PB_W = SpatialVelocity(vc.V_PB_W[node])
    # M moves on B, so A_PB at Bo picks up the centripetal term of the shift Mo -> Bo.
    w_PB = V_PB_W.rotational()
    A_PB_W = SpatialAcceleration(pc.H_PB_W[node] @ vdot_node) + SpatialAcceleration.from_parts(
        jnp.zeros(3), jnp.cross(w_PB, jnp.cross(w_PB, pc.p_MoBo_W[node]))
    )
    return A_WP.compose_with_moving_frame_acceleration(pc.p_PoBo_W[node], w_WP, V_PB_W, A_PB_W)


def calc_acceleration_bias(tree: "MultibodyTree", pc: PositionKinematics, vc: VelocityKinematics) -> Array:
    """
    Velocity dependent part Ab_WB of each body's acceleration.

    With Φ the shift operator from Po to Bo,
    ``A_WB = Φ A_WP + Ab_WB + H_PB_W v̇_B``.

    Returns:
        (num_nodes, 6) array, zero for the world node.
    """
    topology = tree.topology
    Ab_WB = [jnp.zeros(6)] * topology.num_nodes
    for node in range(1, topology.num_nodes):
        vdot_zero = jnp.zeros(topology.nv[node])
        Ab_WB[node] = _compose_node_acceleration(
            tree, pc, vc, node, SpatialAcceleration.zero(), vdot_zero
        ).coeffs
    return jnp.stack(Ab_WB)


def calc_spatial_acceleration(
    tree: "MultibodyTree", pc: PositionKinematics, vc: VelocityKinematics, vdot: Array
) -> AccelerationKinematics:
    """World spatial accelerations of all bodies for the given vdot."""
    topology = tree.topology
    vdot = jnp.asarray(vdot)
    A_WB = [SpatialAcceleration.zero()] * topology.num_nodes
    for node in range(1, topology.num_nodes):
        vdot_node = _node_slice(vdot, topology.v_start[node], topology.nv[node])
        A_WB[node] = _compose_node_acceleration(
            tree, pc, vc, node, A_WB[topology.parent_node[node]], vdot_node
        )
    return AccelerationKinematics(vdot=vdot, A_WB=_to_body_order(tree, [A.coeffs for A in A_WB]))


def calc_spatial_inertias_in_world(
    tree: "MultibodyTree", pc: PositionKinematics, parameters: BodyParameters
) -> SpatialInertia:
    """
    Spatial inertia M_Bo_W of every body about its origin, in the world frame.

    Returns:
        A :class:`SpatialInertia` whose leaves carry a leading body axis.
    """

    def re_express(mass, p_BoBcm_B, G_BBo_B, R_WB):
        M_BBo_B = SpatialInertia(mass, p_BoBcm_B, G_BBo_B, skip_validity_check=True)
        return M_BBo_B.re_express(RotationMatrix(R_WB))

    return jax.vmap(re_express)(parameters.mass, parameters.p_BoBcm_B, parameters.G_BBo_B, pc.R_WB)


def calc_body_spatial_velocity_jacobian(
    tree: "MultibodyTree", pc: PositionKinematics, body_index: int
) -> Array:
    """
    (6, num_velocities) Jacobian Jv_WB with V_WB = Jv_WB v.

    V_WB is linear in v, so its forward-mode derivative at v = 0 is exact.
    """

    def V_WB(v: Array) -> Array:
        return calc_velocity_kinematics(tree, pc, v).V_WB[body_index]

    return jax.jacfwd(V_WB)(jnp.zeros(tree.num_velocities()))
