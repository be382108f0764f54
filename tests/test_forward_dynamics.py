"""Tests for the articulated body algorithm and the plant's dynamics API."""

import re

import jax
import jax.numpy as jnp
import jax.scipy.linalg
import numpy as np
import pytest

from jax_multibody import MultibodyPlant, PlantConfig, SingularHingeInertiaError, TopologyError, kinematics
from jax_multibody.core import SpatialInertia, solid_sphere
from jax_multibody.dynamics import ExternallyAppliedSpatialForce, MultibodyForces, calc_forward_dynamics
from jax_multibody.transforms import RigidTransform, RotationMatrix, SpatialForce, SpatialVelocity

from conftest import (
    IIWA_LINKS,
    Q30,
    Q45,
    Q60,
    add_cubical_link,
    add_prismatic_x,
    add_revolute_z,
    make_kuka_iiwa_plant,
    make_welded_boxes_plant,
    set_arbitrary_configuration,
    set_iiwa_state,
)

EPSILON = float(np.finfo(np.float64).eps)

KUKA_STATES = [
    ([0.0] * 7, [0.0] * 7),
    ([Q30, -Q45, Q60, -Q30, Q45, -Q60, Q30], [0.0] * 7),
    ([0.0] * 7, [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7]),
    ([-Q45, Q60, -Q30, Q45, -Q60, Q30, -Q45], [0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1]),
    ([Q30, Q45, Q60, -Q30, -Q45, -Q60, 0.0], [0.3, -0.1, 0.4, -0.1, 0.5, -0.9, 0.2]),
]


def singular_hinge_message(node_index):
    return re.escape(
        f"Encountered singular articulated body hinge inertia for body node index {node_index}. "
        "Please ensure that this body has non-zero inertia along all axes of motion."
    )


def make_sphere_plant(p_BoBcm_B=(0.0, 0.0, 0.0), mass=2.0, config=None):
    plant = MultibodyPlant(config)
    ball = plant.add_rigid_body(
        "ball", SpatialInertia.make_from_central_inertia(mass, jnp.array(p_BoBcm_B), mass * solid_sphere(0.1))
    )
    plant.finalize()
    return plant, ball


def make_slider(mass_A):
    """A cube sliding along the world x axis."""
    plant = MultibodyPlant()
    box_A = add_cubical_link(plant, "boxA", 1.0)
    add_prismatic_x(plant, "slider", plant.world_body(), box_A)
    plant.finalize()
    context = plant.create_default_context()
    box_A.set_mass(context, mass_A)
    return plant, context


def make_slider_chain(mass_A, mass_B):
    plant = MultibodyPlant()
    box_A = add_cubical_link(plant, "boxA", 1.0)
    box_B = add_cubical_link(plant, "boxB", 1.0)
    add_prismatic_x(plant, "world_to_A", plant.world_body(), box_A)
    add_prismatic_x(plant, "A_to_B", box_A, box_B)
    plant.finalize()
    context = plant.create_default_context()
    box_A.set_mass(context, mass_A)
    box_B.set_mass(context, mass_B)
    return plant, context


def make_pin(mass_A):
    """A cube turning about the z axis through the center of its -x face."""
    plant = MultibodyPlant()
    box_A = add_cubical_link(plant, "boxA", 1.0)
    add_revolute_z(plant, "pin", plant.world_body(), box_A)
    plant.finalize()
    context = plant.create_default_context()
    box_A.set_mass(context, mass_A)
    return plant, context


def make_pin_chain(mass_A, mass_B):
    plant = MultibodyPlant()
    box_A = add_cubical_link(plant, "boxA", 1.0)
    box_B = add_cubical_link(plant, "boxB", 1.0)
    pin_A = add_revolute_z(plant, "world_to_A", plant.world_body(), box_A)
    pin_B = add_revolute_z(plant, "A_to_B", box_A, box_B)
    plant.finalize()
    context = plant.create_default_context()
    box_A.set_mass(context, mass_A)
    box_B.set_mass(context, mass_B)
    pin_A.set_angle(context, Q30)
    pin_B.set_angle(context, Q45)
    return plant, context


# Forward dynamics against the mass matrix
@pytest.mark.parametrize("q, v", KUKA_STATES)
def test_kuka_forward_dynamics_matches_mass_matrix_solve(kuka_plant, q, v):
    """ABA agrees with v̇ = M⁻¹ (τ_app - C v) to within κ(M) ε."""
    context = kuka_plant.create_default_context()
    set_iiwa_state(kuka_plant, context, q, v)
    base = kuka_plant.get_body_by_name("iiwa_link_0")
    X_WB = RigidTransform(RotationMatrix.from_roll_pitch_yaw(jnp.array([-0.4, 0.1, 0.7])), jnp.array([0.3, 0.2, 0.5]))
    kuka_plant.set_free_body_pose(context, base, X_WB)
    kuka_plant.set_free_body_spatial_velocity(
        context, base, SpatialVelocity(jnp.array([-0.2, 0.1, 0.4, 0.3, -0.5, 0.2]))
    )
    nv = kuka_plant.num_velocities()

    vdot = kuka_plant.eval_forward_dynamics(context)
    M = kuka_plant.calc_mass_matrix_via_inverse_dynamics(context)
    forces = kuka_plant.calc_force_elements_contribution(context)
    minus_rhs = kuka_plant.calc_inverse_dynamics(context, jnp.zeros(nv), forces)
    expected = jax.scipy.linalg.cho_solve(jax.scipy.linalg.cho_factor(M), -minus_rhs)

    kappa = float(jnp.linalg.cond(M))
    assert vdot.shape == (nv,)
    relative_error = float(jnp.linalg.norm(vdot - expected) / jnp.linalg.norm(expected))
    assert relative_error <= kappa * EPSILON


def test_kuka_momentum_rate_equals_gravity(kuka_plant):
    """At rest, Σ M_B A_WB about Wo equals the total gravity wrench about Wo."""
    context = kuka_plant.create_default_context()
    set_iiwa_state(kuka_plant, context, [Q30, -Q45, Q60, -Q30, Q45, -Q60, Q30], [0.0] * 7)
    tree = kuka_plant.tree
    A_WB = tree.eval_forward_dynamics(context).A_WB
    M_Bo_W = tree.eval_spatial_inertias_in_world(context)
    pc = kuka_plant.eval_position_kinematics(context)
    g = jnp.array([0.0, 0.0, -9.81])

    momentum_rate = jnp.zeros(6)
    gravity_wrench = jnp.zeros(6)
    for body in tree.bodies[1:]:
        i = body.index
        M = jax.tree_util.tree_map(lambda x: x[i], M_Bo_W)
        F_Bo_W = SpatialForce(M.copy_to_full_matrix6() @ A_WB[i])
        momentum_rate = momentum_rate + F_Bo_W.shift(-pc.p_WoBo_W[i]).coeffs
        p_WoBcm_W = pc.p_WoBo_W[i] + M.p_PScm_E
        f = M.mass * g
        gravity_wrench = gravity_wrench + jnp.concatenate([jnp.cross(p_WoBcm_W, f), f])

    total_mass = sum(mass for _, mass, _, _ in IIWA_LINKS)
    np.testing.assert_allclose(gravity_wrench[3:], [0.0, 0.0, -9.81 * total_mass], atol=1e-12)
    np.testing.assert_allclose(momentum_rate, gravity_wrench, atol=1e-10)


def test_free_falling_sphere():
    plant, ball = make_sphere_plant(p_BoBcm_B=(0.05, -0.02, 0.1))
    context = plant.create_default_context()
    vdot = plant.eval_forward_dynamics(context)
    np.testing.assert_allclose(vdot, [0.0, 0.0, 0.0, 0.0, 0.0, -9.81], atol=1e-11)
    A_WB = plant.eval_body_spatial_acceleration_in_world(context, ball)
    np.testing.assert_allclose(A_WB.coeffs, [0.0, 0.0, 0.0, 0.0, 0.0, -9.81], atol=1e-11)


def test_gravity_from_config():
    plant, _ = make_sphere_plant(config=PlantConfig(gravity=(1.0, 2.0, 3.0)))
    context = plant.create_default_context()
    np.testing.assert_allclose(plant.eval_forward_dynamics(context)[3:], [1.0, 2.0, 3.0], atol=1e-14)
    np.testing.assert_allclose(plant.gravity_field().gravity_vector(), [1.0, 2.0, 3.0])


def test_gravity_is_frozen_by_finalize():
    plant = MultibodyPlant()
    plant.add_rigid_body("ball", SpatialInertia.make_from_central_inertia(2.0, jnp.zeros(3), 2.0 * solid_sphere(0.1)))
    plant.mutable_gravity_field().set_gravity_vector([0.0, 0.0, -1.0])
    plant.finalize()
    context = plant.create_default_context()
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [0.0, 0.0, 0.0, 0.0, 0.0, -1.0], atol=1e-14)

    with pytest.raises(TopologyError, match="finalized"):
        plant.mutable_gravity_field().set_gravity_vector([0.0, 0.0, 0.0])
    np.testing.assert_allclose(plant.gravity_field().gravity_vector(), [0.0, 0.0, -1.0])
    fresh = plant.create_default_context()
    np.testing.assert_array_equal(plant.eval_forward_dynamics(fresh), plant.eval_forward_dynamics(context))


def test_welded_boxes_have_empty_dynamics():
    plant = make_welded_boxes_plant()
    context = plant.create_default_context()
    assert plant.eval_forward_dynamics(context).shape == (0,)
    assert plant.eval_time_derivatives(context).shape == (0,)
    box_B = plant.get_body_by_name("boxB")
    np.testing.assert_array_equal(
        plant.eval_body_spatial_acceleration_in_world(context, box_B).coeffs, jnp.zeros(6)
    )
    X_WB = plant.eval_body_pose_in_world(context, box_B)
    np.testing.assert_allclose(X_WB.translation, [1.5, 0.0, 0.0])


# Singular hinge inertias
def test_massless_slider_is_singular():
    plant, context = make_slider(0.0)
    with pytest.raises(SingularHingeInertiaError, match=singular_hinge_message(1)) as exc_info:
        plant.eval_forward_dynamics(context)
    assert exc_info.value.body_node_index == 1


def test_tiny_slider_mass_is_not_singular():
    plant, context = make_slider(1e-33)
    vdot = plant.eval_forward_dynamics(context)
    assert np.all(np.isfinite(np.asarray(vdot)))


def test_massless_pin_is_singular():
    plant, context = make_pin(0.0)
    with pytest.raises(SingularHingeInertiaError, match=singular_hinge_message(1)):
        plant.eval_forward_dynamics(context)
    plant, context = make_pin(1e-33)
    plant.eval_forward_dynamics(context)


def test_slider_chain_with_light_base_is_singular():
    """A 1e-9 kg slider under a 1e9 kg slider is lost in round-off."""
    plant, context = make_slider_chain(1e-9, 1e9)
    with pytest.raises(SingularHingeInertiaError, match=singular_hinge_message(1)):
        plant.eval_forward_dynamics(context)


@pytest.mark.parametrize("mass_A, mass_B", [(1e-3, 1e9), (1e9, 1e-9)])
def test_slider_chain_with_resolvable_masses(mass_A, mass_B):
    plant, context = make_slider_chain(mass_A, mass_B)
    vdot = plant.eval_forward_dynamics(context)
    assert np.all(np.isfinite(np.asarray(vdot)))


def test_pin_chain_with_massless_tip_is_singular():
    plant, context = make_pin_chain(1.0, 0.0)
    with pytest.raises(SingularHingeInertiaError, match=singular_hinge_message(2)):
        plant.eval_forward_dynamics(context)


@pytest.mark.parametrize("mass_B", [1e-33, 1e-9])
def test_pin_chain_with_light_tip(mass_B):
    plant, context = make_pin_chain(1.0, mass_B)
    vdot = plant.eval_forward_dynamics(context)
    assert np.all(np.isfinite(np.asarray(vdot)))


def test_hinge_inertia_tolerance_is_configurable():
    plant = MultibodyPlant(PlantConfig(hinge_inertia_tolerance=2.0))
    box_A = add_cubical_link(plant, "boxA", 1.0)
    add_prismatic_x(plant, "slider", plant.world_body(), box_A)
    plant.finalize()
    with pytest.raises(SingularHingeInertiaError):
        plant.eval_forward_dynamics(plant.create_default_context())


# Applied forces
def test_applied_generalized_force_on_pin():
    """I_zz of a unit cube about the center of a face is 5/12 m."""
    plant, context = make_pin(2.0)
    plant.set_applied_generalized_force(context, jnp.array([1.5]))
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [1.8], rtol=1e-14)


def test_applied_spatial_force_on_pin():
    plant, context = make_pin(2.0)
    box_A = plant.get_body_by_name("boxA")
    pushed_at_far_face = ExternallyAppliedSpatialForce(
        box_A.index, jnp.array([1.0, 0.0, 0.0]), SpatialForce.from_parts(jnp.zeros(3), jnp.array([0.0, 1.0, 0.0]))
    )
    plant.set_applied_spatial_forces(context, [pushed_at_far_face])
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [1.2], rtol=1e-14)

    plant.set_applied_generalized_force(context, jnp.array([-1.0]))
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [0.0], atol=1e-14)


def test_mass_parameter_changes_the_dynamics():
    plant, context = make_pin(2.0)
    plant.set_applied_generalized_force(context, jnp.array([1.5]))
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [1.8], rtol=1e-14)
    plant.get_body_by_name("boxA").set_mass(context, 4.0)
    np.testing.assert_allclose(plant.eval_forward_dynamics(context), [0.9], rtol=1e-14)


# Residuals, energy and the mass matrix
def test_implicit_residual_vanishes_without_gravity():
    plant = make_kuka_iiwa_plant(gravity=(0.0, 0.0, 0.0))
    context = plant.create_default_context()
    set_arbitrary_configuration(plant, context)
    xdot = plant.eval_time_derivatives(context)
    assert xdot.shape == (plant.num_multibody_states(),)
    residual = plant.calc_implicit_time_derivatives_residual(context, xdot)
    assert float(jnp.max(jnp.abs(residual))) <= 4e-13


def test_implicit_residual_with_gravity_and_applied_forces(kuka_plant, kuka_context):
    kuka_plant.set_applied_generalized_force(kuka_context, jnp.linspace(-1.0, 1.0, kuka_plant.num_velocities()))
    xdot = kuka_plant.eval_time_derivatives(kuka_context)
    residual = kuka_plant.calc_implicit_time_derivatives_residual(kuka_context, xdot)
    assert float(jnp.max(jnp.abs(residual))) <= 4e-13

    # A wrong acceleration leaves a residual M δv̇.
    delta = jnp.zeros(kuka_plant.num_velocities()).at[-1].set(1.0)
    nq = kuka_plant.num_positions()
    perturbed = kuka_plant.calc_implicit_time_derivatives_residual(kuka_context, xdot.at[nq:].add(delta))
    M = kuka_plant.calc_mass_matrix_via_inverse_dynamics(kuka_context)
    np.testing.assert_allclose(perturbed[nq:], M @ delta, atol=1e-12)


def test_implicit_residual_shape_check(kuka_plant, kuka_context):
    with pytest.raises(ValueError, match="shape"):
        kuka_plant.calc_implicit_time_derivatives_residual(kuka_context, jnp.zeros(3))


def test_time_derivatives_layout(kuka_plant, kuka_context):
    xdot = kuka_plant.eval_time_derivatives(kuka_context)
    nq = kuka_plant.num_positions()
    v = kuka_plant.get_velocities(kuka_context)
    np.testing.assert_allclose(xdot[:nq], kuka_plant.map_velocity_to_qdot(kuka_context, v))
    np.testing.assert_array_equal(xdot[nq:], kuka_plant.eval_forward_dynamics(kuka_context))


def test_mass_matrix_is_symmetric_positive_definite(kuka_plant, kuka_context):
    M = kuka_plant.calc_mass_matrix_via_inverse_dynamics(kuka_context)
    assert M.shape == (13, 13)
    np.testing.assert_allclose(M, M.T, atol=1e-12)
    assert float(jnp.min(jnp.linalg.eigvalsh(M))) > 0
    # The base block holds the total mass.
    total_mass = sum(mass for _, mass, _, _ in IIWA_LINKS)
    np.testing.assert_allclose(M[3:6, 3:6], total_mass * jnp.eye(3), atol=1e-12)


def test_kinetic_energy(kuka_plant, kuka_context):
    M = kuka_plant.calc_mass_matrix_via_inverse_dynamics(kuka_context)
    v = kuka_plant.get_velocities(kuka_context)
    np.testing.assert_allclose(kuka_plant.calc_kinetic_energy(kuka_context), 0.5 * v @ M @ v, rtol=1e-12)


def test_potential_energy_of_raised_sphere():
    plant, ball = make_sphere_plant(p_BoBcm_B=(0.0, 0.0, 0.5), mass=3.0)
    context = plant.create_default_context()
    plant.set_free_body_pose(context, ball, RigidTransform.from_translation([0.3, -0.2, 2.0]))
    np.testing.assert_allclose(plant.calc_potential_energy(context), 3.0 * 9.81 * 2.5, rtol=1e-14)


def test_bias_term_vanishes_at_rest(kuka_plant):
    context = kuka_plant.create_default_context()
    np.testing.assert_array_equal(kuka_plant.calc_bias_term(context), jnp.zeros(13))


# Pure functions and transformations
def test_forward_dynamics_jacobian_is_inverse_mass_matrix(kuka_plant, kuka_context):
    tree = kuka_plant.tree
    pc = kuka_plant.eval_position_kinematics(kuka_context)
    vc = kuka_plant.eval_velocity_kinematics(kuka_context)
    M_Bo_W = tree.eval_spatial_inertias_in_world(kuka_context)
    base = kuka_plant.calc_force_elements_contribution(kuka_context)

    def calc_vdot(tau):
        forces = MultibodyForces(base.generalized_forces + tau, base.body_forces)
        return calc_forward_dynamics(tree, pc, vc, M_Bo_W, forces, tree.hinge_inertia_tolerance).vdot

    nv = kuka_plant.num_velocities()
    J = jax.jacfwd(calc_vdot)(jnp.zeros(nv))
    M = kuka_plant.calc_mass_matrix_via_inverse_dynamics(kuka_context)
    np.testing.assert_allclose(J @ M, jnp.eye(nv), atol=1e-10)


def test_forward_dynamics_under_jit(kuka_plant, kuka_context):
    tree = kuka_plant.tree
    gravity = kuka_plant.gravity_field()
    parameters = kuka_context.parameters

    @jax.jit
    def calc_vdot(q, v):
        pc = kinematics.calc_position_kinematics(tree, q)
        vc = kinematics.calc_velocity_kinematics(tree, pc, v)
        M_Bo_W = kinematics.calc_spatial_inertias_in_world(tree, pc, parameters)
        forces = MultibodyForces.zero(tree)
        gravity.calc_and_add_forces(tree, kuka_context, pc, vc, forces)
        return calc_forward_dynamics(tree, pc, vc, M_Bo_W, forces).vdot

    vdot = calc_vdot(kuka_plant.get_positions(kuka_context), kuka_plant.get_velocities(kuka_context))
    np.testing.assert_allclose(vdot, kuka_plant.eval_forward_dynamics(kuka_context), rtol=1e-12, atol=1e-12)


# Caching and contexts
def test_forward_dynamics_is_cached_until_the_state_changes(kuka_plant, kuka_context):
    first = kuka_plant.eval_forward_dynamics(kuka_context)
    assert kuka_context.is_cache_entry_up_to_date("forward_dynamics")
    assert kuka_plant.eval_forward_dynamics(kuka_context) is first

    version = kuka_context.version
    kuka_plant.set_velocities(kuka_context, jnp.zeros(13))
    assert kuka_context.version > version
    for name in ("position_kinematics", "velocity_kinematics", "forward_dynamics"):
        assert not kuka_context.is_cache_entry_up_to_date(name)

    second = kuka_plant.eval_forward_dynamics(kuka_context)
    assert second is not first
    assert kuka_context.is_cache_entry_up_to_date("forward_dynamics")
    assert kuka_context.is_cache_entry_up_to_date("articulated_body_inertia")


def test_contexts_are_independent(kuka_plant, kuka_context):
    clone = kuka_context.clone()
    np.testing.assert_array_equal(
        kuka_plant.eval_forward_dynamics(clone), kuka_plant.eval_forward_dynamics(kuka_context)
    )
    kuka_plant.set_velocities(clone, jnp.zeros(13))
    assert not np.array_equal(
        np.asarray(kuka_plant.eval_forward_dynamics(clone)),
        np.asarray(kuka_plant.eval_forward_dynamics(kuka_context)),
    )
    np.testing.assert_allclose(kuka_plant.get_velocities(kuka_context)[:3], [0.1, -0.2, 0.3])
