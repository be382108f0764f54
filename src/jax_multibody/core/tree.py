"""The multibody tree: an index-addressed arena of bodies, frames and joints.

Elements are added with the ``add_*`` methods and get a dense index that
stays valid for the lifetime of the tree. :meth:`MultibodyTree.finalize`
freezes the structure and computes the :class:`TreeTopology`; after that no
element can be added and state lives in contexts created by
:meth:`MultibodyTree.create_default_context`.
"""

from __future__ import annotations

import logging
import weakref
from typing import Dict, List, Optional, Tuple

import jax
import jax.numpy as jnp
from flax import struct

from .. import kinematics
from ..config import DEFAULT_HINGE_INERTIA_TOLERANCE
from ..dynamics import articulated_body
from ..dynamics.forces import ForceElement, MultibodyForces
from ..errors import TopologyError
from ..transforms import RigidTransform, SpatialAcceleration, SpatialVelocity
from .bodies import Frame, RigidBody
from .context import BodyParameters, Context
from .inertia import SpatialInertia
from .joints import Joint, QuaternionFloatingJoint

logger = logging.getLogger(__name__)

Array = jax.Array


@struct.dataclass
class TreeTopology:
    """Immutable index structure of a finalized tree.

    Body nodes are numbered breadth-first from the world (node 0), so every
    parent node precedes its children. Positions and velocities are laid out
    in node order.

    Attributes:
        num_bodies: Number of bodies, world included. Equal to the number of
                    nodes.
        body_of_node: body_of_node[n] is the body of node n.
        node_of_body: node_of_body[b] is the node of body b.
        parent_node: Parent node of each node, -1 for the world.
        joint_of_node: Index of the inboard joint of each node, -1 for the world.
        children_of_node: Child nodes of each node.
        q_start: Offset of each node's positions in q.
        nq: Number of positions of each node.
        v_start: Offset of each node's velocities in v.
        nv: Number of velocities of each node.
    """
    num_bodies: int = struct.field(pytree_node=False)
    body_of_node: Tuple[int, ...] = struct.field(pytree_node=False)
    node_of_body: Tuple[int, ...] = struct.field(pytree_node=False)
    parent_node: Tuple[int, ...] = struct.field(pytree_node=False)
    joint_of_node: Tuple[int, ...] = struct.field(pytree_node=False)
    children_of_node: Tuple[Tuple[int, ...], ...] = struct.field(pytree_node=False)
    q_start: Tuple[int, ...] = struct.field(pytree_node=False)
    nq: Tuple[int, ...] = struct.field(pytree_node=False)
    v_start: Tuple[int, ...] = struct.field(pytree_node=False)
    nv: Tuple[int, ...] = struct.field(pytree_node=False)

    @property
    def num_nodes(self) -> int:
        return self.num_bodies

    @property
    def num_positions(self) -> int:
        return sum(self.nq)

    @property
    def num_velocities(self) -> int:
        return sum(self.nv)


class MultibodyTree:
    """Bodies connected by joints, rooted at the world body.

    Args:
        hinge_inertia_tolerance: Relative threshold used by forward dynamics
                                 to report a singular hinge inertia.
    """

    def __init__(self, hinge_inertia_tolerance: float = DEFAULT_HINGE_INERTIA_TOLERANCE):
        self.hinge_inertia_tolerance = hinge_inertia_tolerance
        self._bodies: List[RigidBody] = []
        self._frames: List[Frame] = []
        self._joints: List[Joint] = []
        self._force_elements: List[ForceElement] = []
        self._topology: Optional[TreeTopology] = None
        self._inboard_joints: Dict[int, Joint] = {}
        self.add_rigid_body("world")

    # Construction
    def is_finalized(self) -> bool:
        return self._topology is not None

    def _throw_if_finalized(self, action: str) -> None:
        if self.is_finalized():
            raise TopologyError(f"{action}: the multibody tree is already finalized.")

    def add_rigid_body(self, name: str, M_BBo_B: Optional[SpatialInertia] = None) -> RigidBody:
        self._throw_if_finalized(f"add_rigid_body('{name}')")
        if any(body.name == name for body in self._bodies):
            raise TopologyError(f"A body named '{name}' already exists.")
        body = RigidBody(name, M_BBo_B)
        body._attach(self, len(self._bodies))
        self._bodies.append(body)
        body.body_frame.index = len(self._frames)
        self._frames.append(body.body_frame)
        return body

    def add_frame(self, frame: Frame) -> Frame:
        self._throw_if_finalized(f"add_frame('{frame.name}')")
        if frame.index is not None:
            raise TopologyError(f"Frame '{frame.name}' was already added to a tree.")
        if any(other.name == frame.name for other in self._frames):
            raise TopologyError(f"A frame named '{frame.name}' already exists.")
        if frame.body.get_parent_tree() is not self:
            raise TopologyError(f"Frame '{frame.name}' is attached to a body of another tree.")
        frame.index = len(self._frames)
        self._frames.append(frame)
        return frame

    def add_joint(self, joint: Joint) -> Joint:
        self._throw_if_finalized(f"add_joint('{joint.name}')")
        if any(other.name == joint.name for other in self._joints):
            raise TopologyError(f"A joint named '{joint.name}' already exists.")
        for frame in (joint.frame_on_parent, joint.frame_on_child):
            if frame.index is None or self._frames[frame.index] is not frame:
                raise TopologyError(
                    f"Joint '{joint.name}': frame '{frame.name}' has not been added to this tree."
                )
        self._append_joint(joint)
        return joint

    def _append_joint(self, joint: Joint) -> None:
        joint.index = len(self._joints)
        self._joints.append(joint)

    def add_force_element(self, element: ForceElement) -> ForceElement:
        self._throw_if_finalized("add_force_element()")
        element.index = len(self._force_elements)
        element._tree_ref = weakref.ref(self)
        self._force_elements.append(element)
        return element

    def set_default_free_body_pose(self, body: RigidBody, X_WB: RigidTransform) -> None:
        """Default world pose of a body that is (or will be) given a floating joint."""
        if self.is_finalized():
            joint = self.get_inboard_joint(body)
            if not isinstance(joint, QuaternionFloatingJoint):
                raise TopologyError(f"Body '{body.name}' is not a free body.")
            joint.default_pose = X_WB
        body.default_free_body_pose = X_WB

    def finalize(self) -> None:
        """
        Freeze the structure and compute the topology.

        Every body without an inboard joint gets a
        :class:`~jax_multibody.core.joints.QuaternionFloatingJoint` to the
        world.

        Raises:
            TopologyError: if the tree is already finalized, a joint connects a
                           body to itself or has the world as its child, a
                           body has two inboard joints, or the joints form a
                           loop.
        """
        self._throw_if_finalized("finalize()")
        inboard: Dict[int, Joint] = {}
        for joint in self._joints:
            parent, child = joint.parent_body, joint.child_body
            if parent is child:
                raise TopologyError(f"Joint '{joint.name}' connects body '{child.name}' to itself.")
            if child.index == 0:
                raise TopologyError(f"Joint '{joint.name}' has the world body as its child body.")
            if child.index in inboard:
                raise TopologyError(
                    f"Body '{child.name}' has two inboard joints: "
                    f"'{inboard[child.index].name}' and '{joint.name}'."
                )
            inboard[child.index] = joint

        world_frame = self.world_frame()
        for body in self._bodies[1:]:
            if body.index not in inboard:
                joint = QuaternionFloatingJoint(
                    f"$world_{body.name}", world_frame, body.body_frame, body.default_free_body_pose
                )
                self._append_joint(joint)
                inboard[body.index] = joint

        children: Dict[int, List[int]] = {body.index: [] for body in self._bodies}
        for child_index in sorted(inboard):
            children[inboard[child_index].parent_body.index].append(child_index)

        # Breadth-first traversal from the world.
        body_of_node = [0]
        parent_node = [-1]
        node = 0
        while node < len(body_of_node):
            for child_index in children[body_of_node[node]]:
                body_of_node.append(child_index)
                parent_node.append(node)
            node += 1
        if len(body_of_node) != len(self._bodies):
            reached = set(body_of_node)
            in_loop = [body.name for body in self._bodies if body.index not in reached]
            raise TopologyError(f"The joints form a closed loop through bodies {in_loop}.")

        node_of_body = [0] * len(self._bodies)
        for node, body_index in enumerate(body_of_node):
            node_of_body[body_index] = node
        joint_of_node = [-1] + [inboard[b].index for b in body_of_node[1:]]
        children_of_node = [
            tuple(node_of_body[c] for c in children[b]) for b in body_of_node
        ]

        q_start, nq, v_start, nv = [], [], [], []
        q_offset = v_offset = 0
        for node, joint_index in enumerate(joint_of_node):
            joint = self._joints[joint_index] if node > 0 else None
            num_q = joint.num_positions if joint is not None else 0
            num_v = joint.num_velocities if joint is not None else 0
            if joint is not None:
                joint.position_start = q_offset
                joint.velocity_start = v_offset
            q_start.append(q_offset)
            v_start.append(v_offset)
            nq.append(num_q)
            nv.append(num_v)
            q_offset += num_q
            v_offset += num_v

        self._inboard_joints = inboard
        self._topology = TreeTopology(
            num_bodies=len(self._bodies),
            body_of_node=tuple(body_of_node),
            node_of_body=tuple(node_of_body),
            parent_node=tuple(parent_node),
            joint_of_node=tuple(joint_of_node),
            children_of_node=tuple(children_of_node),
            q_start=tuple(q_start),
            nq=tuple(nq),
            v_start=tuple(v_start),
            nv=tuple(nv),
        )
        logger.info(
            "Finalized multibody tree: %d bodies, %d joints, nq = %d, nv = %d",
            len(self._bodies), len(self._joints), q_offset, v_offset,
        )

    # Queries
    @property
    def topology(self) -> TreeTopology:
        if self._topology is None:
            raise TopologyError("The multibody tree has not been finalized.")
        return self._topology

    @property
    def bodies(self) -> Tuple[RigidBody, ...]:
        return tuple(self._bodies)

    @property
    def frames(self) -> Tuple[Frame, ...]:
        return tuple(self._frames)

    @property
    def joints(self) -> Tuple[Joint, ...]:
        return tuple(self._joints)

    @property
    def force_elements(self) -> Tuple[ForceElement, ...]:
        return tuple(self._force_elements)

    def world_body(self) -> RigidBody:
        return self._bodies[0]

    def world_frame(self) -> Frame:
        return self._frames[0]

    def num_bodies(self) -> int:
        return len(self._bodies)

    def num_frames(self) -> int:
        return len(self._frames)

    def num_joints(self) -> int:
        return len(self._joints)

    def num_positions(self) -> int:
        return self.topology.num_positions

    def num_velocities(self) -> int:
        return self.topology.num_velocities

    def get_inboard_joint(self, body: RigidBody) -> Joint:
        if not self.is_finalized():
            raise TopologyError("Inboard joints are only known after finalize().")
        return self._inboard_joints[body.index]

    # Contexts
    def create_default_context(self) -> Context:
        topology = self.topology
        q = [self._joints[topology.joint_of_node[node]].default_positions()
             for node in range(1, topology.num_nodes)]
        parameters = BodyParameters(
            mass=jnp.stack([jnp.asarray(b.default_mass, dtype=jnp.float64) for b in self._bodies]),
            p_BoBcm_B=jnp.stack([jnp.asarray(b.default_com, dtype=jnp.float64) for b in self._bodies]),
            G_BBo_B=jnp.stack([jnp.asarray(b.default_unit_inertia, dtype=jnp.float64) for b in self._bodies]),
        )
        return Context(
            jnp.concatenate(q) if q else jnp.zeros(0),
            jnp.zeros(topology.num_velocities),
            parameters,
        )

    # Cached evaluation
    def eval_position_kinematics(self, context: Context) -> kinematics.PositionKinematics:
        return context.eval_cache_entry(
            "position_kinematics",
            lambda c: kinematics.calc_position_kinematics(self, c.get_positions()),
        )

    def eval_velocity_kinematics(self, context: Context) -> kinematics.VelocityKinematics:
        pc = self.eval_position_kinematics(context)
        return context.eval_cache_entry(
            "velocity_kinematics",
            lambda c: kinematics.calc_velocity_kinematics(self, pc, c.get_velocities()),
        )

    def eval_spatial_inertias_in_world(self, context: Context) -> SpatialInertia:
        pc = self.eval_position_kinematics(context)
        return context.eval_cache_entry(
            "spatial_inertias_in_world",
            lambda c: kinematics.calc_spatial_inertias_in_world(self, pc, c.parameters),
        )

    def eval_articulated_body_inertia_cache(self, context: Context) -> articulated_body.ArticulatedBodyInertiaCache:
        pc = self.eval_position_kinematics(context)
        M_Bo_W = self.eval_spatial_inertias_in_world(context)
        return context.eval_cache_entry(
            "articulated_body_inertia",
            lambda c: articulated_body.calc_articulated_body_inertia_cache(
                self, pc, M_Bo_W, self.hinge_inertia_tolerance
            ),
        )

    def calc_force_elements_contribution(self, context: Context) -> MultibodyForces:
        """Forces produced by the force elements (gravity included)."""
        pc = self.eval_position_kinematics(context)
        vc = self.eval_velocity_kinematics(context)
        forces = MultibodyForces.zero(self)
        for element in self._force_elements:
            element.calc_and_add_forces(self, context, pc, vc, forces)
        return forces

    def calc_applied_forces(self, context: Context) -> MultibodyForces:
        """Force elements plus the forces applied through ``context``."""
        forces = self.calc_force_elements_contribution(context)
        forces.add_generalized_forces(context.get_applied_generalized_force())
        pc = self.eval_position_kinematics(context)
        for applied in context.get_applied_spatial_forces():
            forces.add_body_force(applied.body_index, applied.calc_F_Bo_W(pc))
        return forces

    def eval_forward_dynamics(self, context: Context) -> kinematics.AccelerationKinematics:
        return context.eval_cache_entry("forward_dynamics", self._calc_forward_dynamics)

    def _calc_forward_dynamics(self, context: Context) -> kinematics.AccelerationKinematics:
        pc = self.eval_position_kinematics(context)
        vc = self.eval_velocity_kinematics(context)
        M_Bo_W = self.eval_spatial_inertias_in_world(context)
        abic = None
        if self.num_velocities() > 0:
            abic = self.eval_articulated_body_inertia_cache(context)
        return articulated_body.calc_forward_dynamics(
            self, pc, vc, M_Bo_W, self.calc_applied_forces(context),
            self.hinge_inertia_tolerance, abic=abic,
        )

    def eval_body_pose_in_world(self, context: Context, body: RigidBody) -> RigidTransform:
        return self.eval_position_kinematics(context).get_X_WB(body.index)

    def eval_body_spatial_velocity_in_world(self, context: Context, body: RigidBody) -> SpatialVelocity:
        return self.eval_velocity_kinematics(context).get_V_WB(body.index)

    def eval_body_spatial_acceleration_in_world(self, context: Context, body: RigidBody) -> SpatialAcceleration:
        return self.eval_forward_dynamics(context).get_A_WB(body.index)
