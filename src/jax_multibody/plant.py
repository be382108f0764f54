"""MultibodyPlant: model building, state access and forward dynamics.

The plant wraps a :class:`~jax_multibody.core.tree.MultibodyTree`, owns a
uniform gravity field and exposes everything a time-stepping driver needs:
the state layout, ``x = [q; v]``, its time derivatives and the per-body
poses, velocities and accelerations. Results that only depend on a context
are cached in that context.
"""

from __future__ import annotations

from typing import Callable, Generic, List, Optional, Sequence, TypeVar

import jax
import jax.numpy as jnp

from . import kinematics
from .config import PlantConfig
from .core.bodies import FixedOffsetFrame, Frame, RigidBody
from .core.context import Context
from .core.inertia import SpatialInertia
from .core.joints import Joint, QuaternionFloatingJoint, WeldJoint
from .core.tree import MultibodyTree
from .dynamics import inverse_dynamics
from .dynamics.forces import (
    ExternallyAppliedSpatialForce,
    ForceElement,
    MultibodyForces,
    UniformGravityFieldElement,
)
from .errors import TopologyError
from .transforms import RigidTransform, RotationMatrix, SpatialAcceleration, SpatialVelocity

Array = jax.Array
T = TypeVar("T")


class OutputPort(Generic[T]):
    """A named signal computed from a context.

    Args:
        name: Name of the port.
        calc: Function computing the port value from a context.
    """

    def __init__(self, name: str, calc: Callable[[Context], T]):
        self.name = name
        self._calc = calc

    def __repr__(self):
        return f"OutputPort(name={self.name!r})"

    def eval(self, context: Context) -> T:
        return self._calc(context)


class MultibodyPlant:
    """A multibody system of rigid bodies connected by joints.

    Args:
        config: Gravity and numerical tolerances; defaults to
                :class:`~jax_multibody.config.PlantConfig()`.
    """

    def __init__(self, config: Optional[PlantConfig] = None):
        self.config = config if config is not None else PlantConfig()
        self._tree = MultibodyTree(hinge_inertia_tolerance=self.config.hinge_inertia_tolerance)
        self._gravity_field = UniformGravityFieldElement(self.config.gravity)
        self._tree.add_force_element(self._gravity_field)

        self._body_poses_port = OutputPort("body_poses", self._calc_body_poses)
        self._body_spatial_velocities_port = OutputPort(
            "body_spatial_velocities", self._calc_body_spatial_velocities
        )
        self._body_spatial_accelerations_port = OutputPort(
            "body_spatial_accelerations", self._calc_body_spatial_accelerations
        )

    @property
    def tree(self) -> MultibodyTree:
        return self._tree

    # Model building
    def add_rigid_body(self, name: str, M_BBo_B: Optional[SpatialInertia] = None) -> RigidBody:
        return self._tree.add_rigid_body(name, M_BBo_B)

    def add_frame(self, frame: FixedOffsetFrame) -> FixedOffsetFrame:
        return self._tree.add_frame(frame)

    def add_joint(self, joint: Joint) -> Joint:
        return self._tree.add_joint(joint)

    def weld_frames(self, frame_on_parent_F: Frame, frame_on_child_M: Frame,
                    X_FM: Optional[RigidTransform] = None) -> WeldJoint:
        """Rigidly attach M to F at pose X_FM (identity by default)."""
        joint = WeldJoint(
            f"{frame_on_parent_F.name}_welds_to_{frame_on_child_M.name}",
            frame_on_parent_F, frame_on_child_M, X_FM,
        )
        return self._tree.add_joint(joint)

    def add_force_element(self, element: ForceElement) -> ForceElement:
        return self._tree.add_force_element(element)

    def mutable_gravity_field(self) -> UniformGravityFieldElement:
        return self._gravity_field

    def gravity_field(self) -> UniformGravityFieldElement:
        return self._gravity_field

    def set_default_free_body_pose(self, body: RigidBody, X_WB: RigidTransform) -> None:
        self._tree.set_default_free_body_pose(body, X_WB)

    def finalize(self) -> None:
        self._tree.finalize()

    def is_finalized(self) -> bool:
        return self._tree.is_finalized()

    # Queries
    def num_bodies(self) -> int:
        return self._tree.num_bodies()

    def num_frames(self) -> int:
        return self._tree.num_frames()

    def num_joints(self) -> int:
        return self._tree.num_joints()

    def num_positions(self) -> int:
        return self._tree.num_positions()

    def num_velocities(self) -> int:
        return self._tree.num_velocities()

    def num_multibody_states(self) -> int:
        return self.num_positions() + self.num_velocities()

    def world_body(self) -> RigidBody:
        return self._tree.world_body()

    def world_frame(self) -> Frame:
        return self._tree.world_frame()

    def get_body_by_name(self, name: str) -> RigidBody:
        for body in self._tree.bodies:
            if body.name == name:
                return body
        raise ValueError(f"Body '{name}' not found in the plant")

    def get_frame_by_name(self, name: str) -> Frame:
        for frame in self._tree.frames:
            if frame.name == name:
                return frame
        raise ValueError(f"Frame '{name}' not found in the plant")

    def get_joint_by_name(self, name: str) -> Joint:
        for joint in self._tree.joints:
            if joint.name == name:
                return joint
        raise ValueError(f"Joint '{name}' not found in the plant")

    def get_floating_joint(self, body: RigidBody) -> QuaternionFloatingJoint:
        joint = self._tree.get_inboard_joint(body)
        if not isinstance(joint, QuaternionFloatingJoint):
            raise TopologyError(f"Body '{body.name}' is not a free body.")
        return joint

    # Context
    def create_default_context(self) -> Context:
        return self._tree.create_default_context()

    def get_positions(self, context: Context) -> Array:
        return context.get_positions()

    def set_positions(self, context: Context, q) -> None:
        context.set_positions(q)

    def get_velocities(self, context: Context) -> Array:
        return context.get_velocities()

    def set_velocities(self, context: Context, v) -> None:
        context.set_velocities(v)

    def get_positions_and_velocities(self, context: Context) -> Array:
        return context.get_positions_and_velocities()

    def set_positions_and_velocities(self, context: Context, x) -> None:
        context.set_positions_and_velocities(x)

    def set_free_body_pose(self, context: Context, body: RigidBody, X_WB: RigidTransform) -> None:
        self.get_floating_joint(body).set_pose(context, X_WB)

    def set_free_body_spatial_velocity(self, context: Context, body: RigidBody, V_WB: SpatialVelocity) -> None:
        self.get_floating_joint(body).set_spatial_velocity(context, V_WB)

    def set_applied_generalized_force(self, context: Context, tau) -> None:
        context.set_applied_generalized_force(tau)

    def set_applied_spatial_forces(self, context: Context, forces: Sequence[ExternallyAppliedSpatialForce]) -> None:
        context.set_applied_spatial_forces(forces)

    # Cached evaluation
    def eval_position_kinematics(self, context: Context) -> kinematics.PositionKinematics:
        return self._tree.eval_position_kinematics(context)

    def eval_velocity_kinematics(self, context: Context) -> kinematics.VelocityKinematics:
        return self._tree.eval_velocity_kinematics(context)

    def eval_forward_dynamics(self, context: Context) -> Array:
        """Generalized accelerations v̇ for the state and forces in ``context``.

        Raises:
            SingularHingeInertiaError: if an articulated body hinge inertia
                                       is numerically singular.
        """
        return self._tree.eval_forward_dynamics(context).vdot

    def eval_body_pose_in_world(self, context: Context, body: RigidBody) -> RigidTransform:
        return self._tree.eval_body_pose_in_world(context, body)

    def eval_body_spatial_velocity_in_world(self, context: Context, body: RigidBody) -> SpatialVelocity:
        return self._tree.eval_body_spatial_velocity_in_world(context, body)

    def eval_body_spatial_acceleration_in_world(self, context: Context, body: RigidBody) -> SpatialAcceleration:
        return self._tree.eval_body_spatial_acceleration_in_world(context, body)

    def eval_time_derivatives(self, context: Context) -> Array:
        return context.eval_cache_entry("time_derivatives", self.calc_time_derivatives)

    # Calculations
    def calc_force_elements_contribution(self, context: Context) -> MultibodyForces:
        return self._tree.calc_force_elements_contribution(context)

    def calc_inverse_dynamics(self, context: Context, known_vdot, external_forces: MultibodyForces) -> Array:
        """τ = M v̇ + C v - τ_app - Σ Jᵀ F_app for the forces in ``external_forces``."""
        tree = self._tree
        return inverse_dynamics.calc_inverse_dynamics(
            tree,
            tree.eval_position_kinematics(context),
            tree.eval_velocity_kinematics(context),
            tree.eval_spatial_inertias_in_world(context),
            jnp.asarray(known_vdot, dtype=jnp.float64),
            external_forces,
        )

    def calc_mass_matrix_via_inverse_dynamics(self, context: Context) -> Array:
        tree = self._tree
        return inverse_dynamics.calc_mass_matrix_via_inverse_dynamics(
            tree, tree.eval_position_kinematics(context), tree.eval_spatial_inertias_in_world(context)
        )

    def calc_bias_term(self, context: Context) -> Array:
        tree = self._tree
        return inverse_dynamics.calc_bias_term(
            tree,
            tree.eval_position_kinematics(context),
            tree.eval_velocity_kinematics(context),
            tree.eval_spatial_inertias_in_world(context),
        )

    def map_velocity_to_qdot(self, context: Context, v) -> Array:
        return self._map_per_joint(context, jnp.asarray(v), "velocity_to_qdot")

    def map_qdot_to_velocity(self, context: Context, qdot) -> Array:
        return self._map_per_joint(context, jnp.asarray(qdot), "qdot_to_velocity")

    def _map_per_joint(self, context: Context, x: Array, direction: str) -> Array:
        topology = self._tree.topology
        q = context.get_positions()
        pieces: List[Array] = []
        for node in range(1, topology.num_nodes):
            joint = self._tree.joints[topology.joint_of_node[node]]
            q_joint = q[topology.q_start[node]:topology.q_start[node] + topology.nq[node]]
            if direction == "velocity_to_qdot":
                v_joint = x[topology.v_start[node]:topology.v_start[node] + topology.nv[node]]
                pieces.append(joint.map_velocity_to_qdot(q_joint, v_joint))
            else:
                qdot_joint = x[topology.q_start[node]:topology.q_start[node] + topology.nq[node]]
                pieces.append(joint.map_qdot_to_velocity(q_joint, qdot_joint))
        return jnp.concatenate(pieces) if pieces else jnp.zeros(0)

    def calc_time_derivatives(self, context: Context) -> Array:
        """ẋ = [N(q) v; v̇]."""
        qdot = self.map_velocity_to_qdot(context, context.get_velocities())
        return jnp.concatenate([qdot, self.eval_forward_dynamics(context)])

    def calc_implicit_time_derivatives_residual(self, context: Context, proposed_derivatives) -> Array:
        """
        Residual of the equations of motion in implicit form.

        Args:
            context: The state x.
            proposed_derivatives: A candidate ẋ = [q̇; v̇].

        Returns:
            ``[q̇ - N(q) v; ID(v̇)]``, zero when ``proposed_derivatives`` are the
            true time derivatives. The second block is the inverse dynamics
            of v̇ under the force elements and the applied forces.
        """
        xdot = jnp.asarray(proposed_derivatives, dtype=jnp.float64)
        nq = self.num_positions()
        if xdot.shape != (self.num_multibody_states(),):
            raise ValueError(
                f"Expected derivatives of shape {(self.num_multibody_states(),)}, got {xdot.shape}"
            )
        qdot_residual = xdot[:nq] - self.map_velocity_to_qdot(context, context.get_velocities())
        vdot_residual = self.calc_inverse_dynamics(
            context, xdot[nq:], self._tree.calc_applied_forces(context)
        )
        return jnp.concatenate([qdot_residual, vdot_residual])

    def calc_kinetic_energy(self, context: Context) -> Array:
        """½ Σ V_WBᵀ M_Bo_W V_WB over all bodies."""
        V_WB = self.eval_velocity_kinematics(context).V_WB
        M_Bo_W = self._tree.eval_spatial_inertias_in_world(context)
        M = jax.vmap(lambda M: M.copy_to_full_matrix6())(M_Bo_W)
        return 0.5 * jnp.einsum("bi,bij,bj->", V_WB, M, V_WB)

    def calc_potential_energy(self, context: Context) -> Array:
        pc = self.eval_position_kinematics(context)
        return sum(
            (element.calc_potential_energy(self._tree, context, pc) for element in self._tree.force_elements),
            jnp.zeros(()),
        )

    def calc_relative_transform(self, context: Context, frame_A: Frame, frame_B: Frame) -> RigidTransform:
        """X_AB, the pose of ``frame_B`` in ``frame_A``."""
        return frame_B.calc_pose(context, frame_A)

    def calc_relative_rotation_matrix(self, context: Context, frame_A: Frame, frame_B: Frame) -> RotationMatrix:
        return frame_B.calc_rotation_matrix(context, frame_A)

    def calc_jacobian_spatial_velocity(
        self,
        context: Context,
        frame_B: Frame,
        p_BoBp_B,
        frame_A: Frame,
        frame_E: Frame,
    ) -> Array:
        """
        (6, num_velocities) Jacobian of V_ABp_E with respect to v.

        V_ABp_E is the spatial velocity of the point Bp fixed to ``frame_B``,
        measured in ``frame_A`` and expressed in ``frame_E``.
        """
        tree = self._tree
        pc = tree.eval_position_kinematics(context)
        X_WB = frame_B.calc_pose_in_world(context)
        X_WA = frame_A.calc_pose_in_world(context)
        R_EW = frame_E.calc_rotation_matrix_in_world(context).inverse()
        p_WoBp_W = X_WB.transform_points(jnp.asarray(p_BoBp_B, dtype=jnp.float64))
        body_B, body_A = frame_B.body, frame_A.body
        p_BoBp_W = p_WoBp_W - pc.p_WoBo_W[body_B.index]
        p_AoBp_W = p_WoBp_W - X_WA.translation
        p_BoAo_W = X_WA.translation - pc.p_WoBo_W[body_A.index]

        def V_ABp_E(v: Array) -> Array:
            vc = kinematics.calc_velocity_kinematics(tree, pc, v)
            V_WBp = vc.get_V_WB(body_B.index).shift(p_BoBp_W)
            V_WA = vc.get_V_WB(body_A.index).shift(p_BoAo_W)
            return (R_EW @ (V_WBp - V_WA.shift(p_AoBp_W))).coeffs

        return jax.jacfwd(V_ABp_E)(jnp.zeros(self.num_velocities()))

    # Output ports
    def get_body_poses_output_port(self) -> OutputPort[List[RigidTransform]]:
        return self._body_poses_port

    def get_body_spatial_velocities_output_port(self) -> OutputPort[List[SpatialVelocity]]:
        return self._body_spatial_velocities_port

    def get_body_spatial_accelerations_output_port(self) -> OutputPort[List[SpatialAcceleration]]:
        return self._body_spatial_accelerations_port

    def _calc_body_poses(self, context: Context) -> List[RigidTransform]:
        return [self.eval_body_pose_in_world(context, body) for body in self._tree.bodies]

    def _calc_body_spatial_velocities(self, context: Context) -> List[SpatialVelocity]:
        return [self.eval_body_spatial_velocity_in_world(context, body) for body in self._tree.bodies]

    def _calc_body_spatial_accelerations(self, context: Context) -> List[SpatialAcceleration]:
        return [self.eval_body_spatial_acceleration_in_world(context, body) for body in self._tree.bodies]
