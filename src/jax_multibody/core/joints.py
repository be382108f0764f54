"""Joints connecting a frame F on a parent body to a frame M on a child body.

A joint describes the motion of M in F as a function of its own slice of the
generalized positions q and velocities v:

* ``calc_X_FM(q)``: pose X_FM.
* ``calc_H_FM(q)``: (6, nv) matrix with V_FM_F = H_FM(q) v, the spatial
  velocity of M in F measured at Mo and expressed in F.

For every joint below H_FM is constant when expressed in F, so the spatial
acceleration of M in F is simply ``H_FM v̇``.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Optional

import jax
import jax.numpy as jnp

from ..errors import TopologyError
from ..transforms import RigidTransform, RotationMatrix, SpatialVelocity, so3

if TYPE_CHECKING:
    from .bodies import Frame, RigidBody
    from .context import Context

Array = jax.Array


def _normalize_axis(axis, joint_name: str) -> Array:
    axis = jnp.asarray(axis, dtype=jnp.float64)
    if axis.shape != (3,):
        raise ValueError(f"Joint '{joint_name}': axis must have shape (3,), got {axis.shape}")
    norm = float(jnp.linalg.norm(axis))
    if not math.isfinite(norm) or norm == 0.0:
        raise ValueError(f"Joint '{joint_name}': axis must be a non-zero, finite vector, got {axis}.")
    return axis / norm


class Joint:
    """Base class of all joints.

    Args:
        name: Unique name of the joint.
        frame_on_parent: Frame F, fixed to the parent body P.
        frame_on_child: Frame M, fixed to the child body B.
    """
    num_positions = 0
    num_velocities = 0

    def __init__(self, name: str, frame_on_parent: "Frame", frame_on_child: "Frame"):
        self.name = name
        self.frame_on_parent = frame_on_parent
        self.frame_on_child = frame_on_child
        self.index: Optional[int] = None
        self.position_start: Optional[int] = None
        self.velocity_start: Optional[int] = None

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, index={self.index})"

    @property
    def parent_body(self) -> "RigidBody":
        return self.frame_on_parent.body

    @property
    def child_body(self) -> "RigidBody":
        return self.frame_on_child.body

    # Kinematics
    def default_positions(self) -> Array:
        return jnp.zeros(self.num_positions)

    def calc_X_FM(self, q: Array) -> RigidTransform:
        raise NotImplementedError

    def calc_H_FM(self, q: Array) -> Array:
        raise NotImplementedError

    def map_velocity_to_qdot(self, q: Array, v: Array) -> Array:
        return v

    def map_qdot_to_velocity(self, q: Array, qdot: Array) -> Array:
        return qdot

    # Context access
    def _check_finalized(self) -> None:
        if self.position_start is None:
            raise TopologyError(
                f"Joint '{self.name}': state access requires a finalized multibody tree."
            )

    def get_positions(self, context: "Context") -> Array:
        self._check_finalized()
        return context.get_positions()[self.position_start:self.position_start + self.num_positions]

    def get_velocities(self, context: "Context") -> Array:
        self._check_finalized()
        return context.get_velocities()[self.velocity_start:self.velocity_start + self.num_velocities]

    def set_positions(self, context: "Context", q_joint) -> None:
        self._check_finalized()
        q = context.get_positions()
        context.set_positions(
            q.at[self.position_start:self.position_start + self.num_positions].set(q_joint)
        )

    def set_velocities(self, context: "Context", v_joint) -> None:
        self._check_finalized()
        v = context.get_velocities()
        context.set_velocities(
            v.at[self.velocity_start:self.velocity_start + self.num_velocities].set(v_joint)
        )


class WeldJoint(Joint):
    """Zero-dof joint holding M at a fixed pose X_FM in F."""

    def __init__(self, name: str, frame_on_parent: "Frame", frame_on_child: "Frame",
                 X_FM: Optional[RigidTransform] = None):
        super().__init__(name, frame_on_parent, frame_on_child)
        self.X_FM = X_FM if X_FM is not None else RigidTransform.identity()

    def calc_X_FM(self, q: Array) -> RigidTransform:
        return self.X_FM

    def calc_H_FM(self, q: Array) -> Array:
        return jnp.zeros((6, 0))


class RevoluteJoint(Joint):
    """One-dof rotation of M about a unit axis fixed in both F and M.

    Args:
        axis: Rotation axis expressed in F; normalized on construction.
    """
    num_positions = 1
    num_velocities = 1

    def __init__(self, name: str, frame_on_parent: "Frame", frame_on_child: "Frame", axis):
        super().__init__(name, frame_on_parent, frame_on_child)
        self.axis = _normalize_axis(axis, name)

    def calc_X_FM(self, q: Array) -> RigidTransform:
        return RigidTransform(RotationMatrix(so3.from_axis_angle(self.axis, q[0])), jnp.zeros(3))

    def calc_H_FM(self, q: Array) -> Array:
        return jnp.concatenate([self.axis, jnp.zeros(3)])[:, None]

    def get_angle(self, context: "Context") -> Array:
        return self.get_positions(context)[0]

    def set_angle(self, context: "Context", angle) -> None:
        self.set_positions(context, jnp.atleast_1d(angle))

    def get_angular_rate(self, context: "Context") -> Array:
        return self.get_velocities(context)[0]

    def set_angular_rate(self, context: "Context", rate) -> None:
        self.set_velocities(context, jnp.atleast_1d(rate))


class PrismaticJoint(Joint):
    """One-dof translation of M along a unit axis fixed in F.

    Args:
        axis: Translation axis expressed in F; normalized on construction.
    """
    num_positions = 1
    num_velocities = 1

    def __init__(self, name: str, frame_on_parent: "Frame", frame_on_child: "Frame", axis):
        super().__init__(name, frame_on_parent, frame_on_child)
        self.axis = _normalize_axis(axis, name)

    def calc_X_FM(self, q: Array) -> RigidTransform:
        return RigidTransform(RotationMatrix.identity(), self.axis * q[0])

    def calc_H_FM(self, q: Array) -> Array:
        return jnp.concatenate([jnp.zeros(3), self.axis])[:, None]

    def get_translation(self, context: "Context") -> Array:
        return self.get_positions(context)[0]

    def set_translation(self, context: "Context", translation) -> None:
        self.set_positions(context, jnp.atleast_1d(translation))

    def get_translation_rate(self, context: "Context") -> Array:
        return self.get_velocities(context)[0]

    def set_translation_rate(self, context: "Context", rate) -> None:
        self.set_velocities(context, jnp.atleast_1d(rate))


class QuaternionFloatingJoint(Joint):
    """Six-dof joint letting M move freely in F.

    Positions are ``[qw, qx, qy, qz, x, y, z]``: the quaternion of R_FM
    followed by p_FoMo_F. Velocities are ``[w_FM_F; v_FM_F]``. The
    quaternion is normalized whenever it is turned into a rotation matrix.
    """
    num_positions = 7
    num_velocities = 6

    def __init__(self, name: str, frame_on_parent: "Frame", frame_on_child: "Frame",
                 default_pose: Optional[RigidTransform] = None):
        super().__init__(name, frame_on_parent, frame_on_child)
        self.default_pose = default_pose if default_pose is not None else RigidTransform.identity()

    def default_positions(self) -> Array:
        return jnp.concatenate([self.default_pose.rotation.to_quaternion(), self.default_pose.translation])

    def calc_X_FM(self, q: Array) -> RigidTransform:
        return RigidTransform(RotationMatrix(so3.from_quaternion(q[:4])), q[4:])

    def calc_H_FM(self, q: Array) -> Array:
        return jnp.eye(6)

    def map_velocity_to_qdot(self, q: Array, v: Array) -> Array:
        """q̇ = [½ (0, w) ⊗ quaternion; v]."""
        w_FM_F = v[:3]
        quaternion_dot = 0.5 * so3.quaternion_multiply(jnp.concatenate([jnp.zeros(1), w_FM_F]), q[:4])
        return jnp.concatenate([quaternion_dot, v[3:]])

    def map_qdot_to_velocity(self, q: Array, qdot: Array) -> Array:
        """w = vec(2 q̇ ⊗ conj(quaternion)) for a unit quaternion."""
        quaternion = q[:4]
        conjugate = quaternion * jnp.array([1.0, -1.0, -1.0, -1.0])
        w_FM_F = 2.0 * so3.quaternion_multiply(qdot[:4], conjugate)[1:]
        return jnp.concatenate([w_FM_F, qdot[4:]])

    def get_quaternion(self, context: "Context") -> Array:
        return self.get_positions(context)[:4]

    def set_quaternion(self, context: "Context", quaternion) -> None:
        q = self.get_positions(context)
        self.set_positions(context, q.at[:4].set(jnp.asarray(quaternion, dtype=jnp.float64)))

    def get_position(self, context: "Context") -> Array:
        return self.get_positions(context)[4:]

    def set_position(self, context: "Context", p_FM) -> None:
        q = self.get_positions(context)
        self.set_positions(context, q.at[4:].set(jnp.asarray(p_FM, dtype=jnp.float64)))

    def get_pose(self, context: "Context") -> RigidTransform:
        return self.calc_X_FM(self.get_positions(context))

    def set_pose(self, context: "Context", X_FM: RigidTransform) -> None:
        self.set_positions(context, jnp.concatenate([X_FM.rotation.to_quaternion(), X_FM.translation]))

    def get_spatial_velocity(self, context: "Context") -> SpatialVelocity:
        return SpatialVelocity(self.get_velocities(context))

    def set_spatial_velocity(self, context: "Context", V_FM_F: SpatialVelocity) -> None:
        self.set_velocities(context, V_FM_F.get_coeffs())
