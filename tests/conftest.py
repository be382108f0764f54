"""Shared models for the test suite."""

import hypothesis
import jax.numpy as jnp
import pytest

from jax_multibody import MultibodyPlant, PlantConfig
from jax_multibody.config import DEFAULT_GRAVITY
from jax_multibody.core import (
    FixedOffsetFrame,
    PrismaticJoint,
    RevoluteJoint,
    SpatialInertia,
    shift_from_center_of_mass,
    solid_box,
    solid_cube,
)
from jax_multibody.transforms import RigidTransform, RotationMatrix, SpatialVelocity

# Use hypothesis profile for CI
hypothesis.settings.register_profile("ci", max_examples=10, deadline=None)

PI = float(jnp.pi)
Q30, Q45, Q60 = PI / 6, PI / 4, PI / 3

# (name, mass, center of mass, principal central inertia) of the links of a
# 7-dof KUKA iiwa arm.
IIWA_LINKS = [
    ("iiwa_link_0", 5.0, (-0.1, 0.0, 0.07), (0.05, 0.06, 0.03)),
    ("iiwa_link_1", 5.76, (0.0, -0.03, 0.12), (0.033, 0.0333, 0.0123)),
    ("iiwa_link_2", 6.35, (0.0003, 0.059, 0.042), (0.0305, 0.0304, 0.011)),
    ("iiwa_link_3", 3.5, (0.0, 0.03, 0.13), (0.025, 0.0238, 0.0076)),
    ("iiwa_link_4", 3.5, (0.0, 0.067, 0.034), (0.017, 0.0164, 0.006)),
    ("iiwa_link_5", 3.5, (0.0001, 0.021, 0.076), (0.01, 0.0087, 0.00449)),
    ("iiwa_link_6", 1.8, (0.0, 0.0006, 0.0004), (0.0049, 0.0047, 0.0036)),
    ("iiwa_link_7", 1.2, (0.0, 0.0, 0.02), (0.001, 0.001, 0.001)),
]

# (joint name, xyz, rpy) of the pose of each joint frame in its parent link.
IIWA_JOINTS = [
    ("iiwa_joint_1", (0.0, 0.0, 0.1575), (0.0, 0.0, 0.0)),
    ("iiwa_joint_2", (0.0, 0.0, 0.2025), (PI / 2, 0.0, PI)),
    ("iiwa_joint_3", (0.0, 0.2045, 0.0), (PI / 2, 0.0, PI)),
    ("iiwa_joint_4", (0.0, 0.0, 0.2155), (PI / 2, 0.0, 0.0)),
    ("iiwa_joint_5", (0.0, 0.1845, 0.0), (-PI / 2, PI, 0.0)),
    ("iiwa_joint_6", (0.0, 0.0, 0.2155), (PI / 2, 0.0, 0.0)),
    ("iiwa_joint_7", (0.0, 0.081, 0.0), (-PI / 2, PI, 0.0)),
]

# Pose of the gripper frame H in the end effector link E.
X_EH = RigidTransform(
    RotationMatrix.from_roll_pitch_yaw(jnp.array([Q30, -Q45, Q60])),
    jnp.array([0.05, -0.02, 0.12]),
)


def make_kuka_iiwa_plant(gravity=DEFAULT_GRAVITY) -> MultibodyPlant:
    """Floating KUKA iiwa arm: link 0 is a free body, the other links hang off revolute joints."""
    plant = MultibodyPlant(PlantConfig(gravity=tuple(gravity)))
    links = []
    for name, mass, com, inertia in IIWA_LINKS:
        M_BBo_B = SpatialInertia.make_from_central_inertia(mass, jnp.array(com), jnp.diag(jnp.array(inertia)))
        links.append(plant.add_rigid_body(name, M_BBo_B))

    for (name, xyz, rpy), parent, child in zip(IIWA_JOINTS, links[:-1], links[1:]):
        X_PF = RigidTransform(RotationMatrix.from_roll_pitch_yaw(jnp.array(rpy)), jnp.array(xyz))
        frame_F = plant.add_frame(FixedOffsetFrame(f"{name}_inboard", parent.body_frame, X_PF))
        plant.add_joint(RevoluteJoint(name, frame_F, child.body_frame, [0.0, 0.0, 1.0]))

    plant.add_frame(FixedOffsetFrame("gripper_frame_H", links[-1].body_frame, X_EH))
    plant.finalize()
    return plant


def get_iiwa_joints(plant: MultibodyPlant):
    return [plant.get_joint_by_name(name) for name, _, _ in IIWA_JOINTS]


def set_iiwa_state(plant, context, q, v) -> None:
    for joint, angle, rate in zip(get_iiwa_joints(plant), q, v):
        joint.set_angle(context, angle)
        joint.set_angular_rate(context, rate)


def set_arbitrary_configuration(plant, context) -> None:
    """Non-trivial joint state plus a moving, rotated base."""
    set_iiwa_state(
        plant, context,
        [Q30, -Q45, Q60, -Q30, Q45, -Q60, Q30],
        [0.3, -0.1, 0.4, -0.1, 0.5, -0.9, 0.2],
    )
    base = plant.get_body_by_name("iiwa_link_0")
    X_WB = RigidTransform(RotationMatrix.from_roll_pitch_yaw(jnp.array([0.2, -0.3, 0.5])), jnp.array([0.1, -0.4, 1.2]))
    plant.set_free_body_pose(context, base, X_WB)
    plant.set_free_body_spatial_velocity(
        context, base, SpatialVelocity(jnp.array([0.1, -0.2, 0.3, 0.5, 0.4, -0.6]))
    )


@pytest.fixture
def kuka_plant():
    return make_kuka_iiwa_plant()


@pytest.fixture
def kuka_context(kuka_plant):
    context = kuka_plant.create_default_context()
    set_arbitrary_configuration(kuka_plant, context)
    return context


def make_cube_unit_inertia(length: float = 1.0):
    """Unit inertia of a uniform cube about the center of its -x face."""
    p_BoBcm_B = jnp.array([length / 2, 0.0, 0.0])
    return shift_from_center_of_mass(solid_cube(length), -p_BoBcm_B)


def add_cubical_link(plant, name: str, mass: float, length: float = 1.0, skip_validity_check: bool = False):
    p_BoBcm_B = jnp.array([length / 2, 0.0, 0.0])
    M_BBo_B = SpatialInertia(
        jnp.asarray(mass, dtype=jnp.float64), p_BoBcm_B, make_cube_unit_inertia(length),
        skip_validity_check=skip_validity_check,
    )
    return plant.add_rigid_body(name, M_BBo_B)


def add_prismatic_x(plant, name: str, parent, child):
    return plant.add_joint(PrismaticJoint(name, parent.body_frame, child.body_frame, [1.0, 0.0, 0.0]))


def add_revolute_z(plant, name: str, parent, child):
    return plant.add_joint(RevoluteJoint(name, parent.body_frame, child.body_frame, [0.0, 0.0, 1.0]))


def make_welded_boxes_plant(cube_size: float = 1.5, box_mass: float = 2.0) -> MultibodyPlant:
    """Two boxes welded to the world and to each other: no degrees of freedom."""
    plant = MultibodyPlant()
    M_BBo_B = SpatialInertia.make_from_central_inertia(
        box_mass, jnp.zeros(3), box_mass * solid_box(cube_size, cube_size, cube_size)
    )
    box_A = plant.add_rigid_body("boxA", M_BBo_B)
    box_B = plant.add_rigid_body("boxB", M_BBo_B)
    X_WA = RigidTransform.identity()
    X_WB = RigidTransform.from_translation(jnp.array([cube_size, 0.0, 0.0]))
    plant.weld_frames(plant.world_frame(), box_A.body_frame, X_WA)
    plant.weld_frames(box_A.body_frame, box_B.body_frame, X_WA.inverse() @ X_WB)
    plant.finalize()
    return plant
