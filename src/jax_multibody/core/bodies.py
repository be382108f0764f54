"""Rigid bodies and the frames attached to them.

Bodies and frames are stateless handles: everything that changes during a
simulation (positions, velocities, mass parameters) lives in a
:class:`~jax_multibody.core.context.Context` and is passed in explicitly.
A frame only keeps a weak reference to its body and a body only keeps a
weak reference to the tree that owns it.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Optional

import jax

from ..errors import TopologyError
from ..transforms import RigidTransform, RotationMatrix, SpatialAcceleration, SpatialVelocity
from .inertia import SpatialInertia
from .joints import QuaternionFloatingJoint

if TYPE_CHECKING:
    from .context import Context
    from .tree import MultibodyTree

Array = jax.Array


class RigidBody:
    """A rigid body with constant default mass properties.

    Args:
        name: Unique name of the body.
        M_BBo_B: Default spatial inertia about the body origin Bo, expressed
                 in the body frame B. Defaults to a massless body.
    """

    def __init__(self, name: str, M_BBo_B: Optional[SpatialInertia] = None):
        self.name = name
        self.default_spatial_inertia = M_BBo_B if M_BBo_B is not None else SpatialInertia.zero()
        self.index: Optional[int] = None
        self._tree_ref = None
        self.body_frame = BodyFrame(self)
        # Pose of a free body in the world, used when it is given a floating joint.
        self.default_free_body_pose = RigidTransform.identity()

    def __repr__(self):
        return f"RigidBody(name={self.name!r}, index={self.index})"

    def _attach(self, tree: "MultibodyTree", index: int) -> None:
        self._tree_ref = weakref.ref(tree)
        self.index = index

    def get_parent_tree(self) -> "MultibodyTree":
        tree = self._tree_ref() if self._tree_ref is not None else None
        if tree is None:
            raise TopologyError(f"Body '{self.name}' is not part of a multibody tree.")
        return tree

    # Default parameters
    @property
    def default_mass(self) -> Array:
        return self.default_spatial_inertia.mass

    @property
    def default_com(self) -> Array:
        return self.default_spatial_inertia.p_PScm_E

    @property
    def default_unit_inertia(self) -> Array:
        return self.default_spatial_inertia.G_SP_E

    # Parameters stored in a context
    def get_mass(self, context: "Context") -> Array:
        return context.parameters.mass[self.index]

    def get_center_of_mass_in_body_frame(self, context: "Context") -> Array:
        return context.parameters.p_BoBcm_B[self.index]

    def get_spatial_inertia_in_body_frame(self, context: "Context") -> SpatialInertia:
        p = context.parameters
        return SpatialInertia(
            p.mass[self.index], p.p_BoBcm_B[self.index], p.G_BBo_B[self.index],
            skip_validity_check=True,
        )

    def set_mass(self, context: "Context", mass) -> None:
        """Change the mass stored in ``context``; p_BoBcm and G_BBo are kept."""
        p = context.parameters
        context.set_parameters(p.replace(mass=p.mass.at[self.index].set(mass)))

    def set_spatial_inertia_in_body_frame(self, context: "Context", M_BBo_B: SpatialInertia) -> None:
        p = context.parameters
        context.set_parameters(p.replace(
            mass=p.mass.at[self.index].set(M_BBo_B.mass),
            p_BoBcm_B=p.p_BoBcm_B.at[self.index].set(M_BBo_B.p_PScm_E),
            G_BBo_B=p.G_BBo_B.at[self.index].set(M_BBo_B.G_SP_E),
        ))

    # Topology
    @property
    def node_index(self) -> int:
        return self.get_parent_tree().topology.node_of_body[self.index]

    def is_floating(self) -> bool:
        """True if the body's inboard joint is a 6-dof quaternion floating joint."""
        tree = self.get_parent_tree()
        joint = tree.get_inboard_joint(self)
        return isinstance(joint, QuaternionFloatingJoint)

    # Cached kinematics
    def eval_pose_in_world(self, context: "Context") -> RigidTransform:
        return self.get_parent_tree().eval_body_pose_in_world(context, self)

    def eval_spatial_velocity_in_world(self, context: "Context") -> SpatialVelocity:
        return self.get_parent_tree().eval_body_spatial_velocity_in_world(context, self)

    def eval_spatial_acceleration_in_world(self, context: "Context") -> SpatialAcceleration:
        return self.get_parent_tree().eval_body_spatial_acceleration_in_world(context, self)


class Frame:
    """A frame rigidly attached to a body."""

    def __init__(self, name: str, body: RigidBody):
        self.name = name
        self._body_ref = weakref.ref(body)
        self.index: Optional[int] = None

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, index={self.index})"

    @property
    def body(self) -> RigidBody:
        body = self._body_ref()
        if body is None:
            raise TopologyError(f"The body of frame '{self.name}' no longer exists.")
        return body

    def get_fixed_pose_in_body_frame(self) -> RigidTransform:
        """X_BF, the pose of this frame F in its body frame B."""
        raise NotImplementedError

    def calc_pose_in_world(self, context: "Context") -> RigidTransform:
        X_WB = self.body.eval_pose_in_world(context)
        return X_WB @ self.get_fixed_pose_in_body_frame()

    def calc_pose(self, context: "Context", frame_M: "Frame") -> RigidTransform:
        """X_MF, the pose of this frame F in ``frame_M``."""
        return frame_M.calc_pose_in_world(context).inverse() @ self.calc_pose_in_world(context)

    def calc_rotation_matrix_in_world(self, context: "Context") -> RotationMatrix:
        return self.calc_pose_in_world(context).rotation

    def calc_rotation_matrix(self, context: "Context", frame_M: "Frame") -> RotationMatrix:
        return self.calc_pose(context, frame_M).rotation

    def calc_spatial_velocity_in_world(self, context: "Context") -> SpatialVelocity:
        """V_WF_W, measured at the origin Fo."""
        X_WB = self.body.eval_pose_in_world(context)
        p_BoFo_W = X_WB.rotation.apply(self.get_fixed_pose_in_body_frame().translation)
        return self.body.eval_spatial_velocity_in_world(context).shift(p_BoFo_W)

    def calc_spatial_velocity(self, context: "Context", frame_M: "Frame", frame_E: "Frame") -> SpatialVelocity:
        """V_MF_E, the velocity of this frame F measured in ``frame_M`` at Fo,
        expressed in ``frame_E``."""
        X_WF = self.calc_pose_in_world(context)
        X_WM = frame_M.calc_pose_in_world(context)
        p_MoFo_W = X_WF.translation - X_WM.translation
        V_MF_W = (
            self.calc_spatial_velocity_in_world(context)
            - frame_M.calc_spatial_velocity_in_world(context).shift(p_MoFo_W)
        )
        R_EW = frame_E.calc_rotation_matrix_in_world(context).inverse()
        return R_EW @ V_MF_W

    def calc_spatial_acceleration_in_world(self, context: "Context") -> SpatialAcceleration:
        """A_WF_W, measured at the origin Fo."""
        X_WB = self.body.eval_pose_in_world(context)
        p_BoFo_W = X_WB.rotation.apply(self.get_fixed_pose_in_body_frame().translation)
        w_WB_W = self.body.eval_spatial_velocity_in_world(context).rotational()
        return self.body.eval_spatial_acceleration_in_world(context).shift(p_BoFo_W, w_WB_W)


class BodyFrame(Frame):
    """The frame B of a body, with origin Bo."""

    def __init__(self, body: RigidBody):
        super().__init__(body.name, body)

    def get_fixed_pose_in_body_frame(self) -> RigidTransform:
        return RigidTransform.identity()


class FixedOffsetFrame(Frame):
    """A frame F with a constant pose X_PF in a parent frame P.

    Args:
        name: Unique name of the frame.
        parent_frame: Frame P; F is attached to the body of P.
        X_PF: Pose of F in P. Defaults to the identity.
    """

    def __init__(self, name: str, parent_frame: Frame, X_PF: Optional[RigidTransform] = None):
        super().__init__(name, parent_frame.body)
        self.parent_frame = parent_frame
        self.X_PF = X_PF if X_PF is not None else RigidTransform.identity()

    def get_fixed_pose_in_body_frame(self) -> RigidTransform:
        return self.parent_frame.get_fixed_pose_in_body_frame() @ self.X_PF

