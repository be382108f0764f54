"""Forward and inverse dynamics of multibody trees."""

from .articulated_body import (
    ArticulatedBodyForceCache,
    ArticulatedBodyInertiaCache,
    calc_articulated_body_accelerations,
    calc_articulated_body_force_cache,
    calc_articulated_body_inertia_cache,
    calc_forward_dynamics,
    throw_if_singular_hinge_inertia,
)
from .forces import (
    ExternallyAppliedSpatialForce,
    ForceElement,
    MultibodyForces,
    UniformGravityFieldElement,
)
from .inverse_dynamics import calc_bias_term, calc_inverse_dynamics, calc_mass_matrix_via_inverse_dynamics

__all__ = [
    "ArticulatedBodyForceCache",
    "ArticulatedBodyInertiaCache",
    "calc_articulated_body_accelerations",
    "calc_articulated_body_force_cache",
    "calc_articulated_body_inertia_cache",
    "calc_forward_dynamics",
    "throw_if_singular_hinge_inertia",
    "ExternallyAppliedSpatialForce",
    "ForceElement",
    "MultibodyForces",
    "UniformGravityFieldElement",
    "calc_bias_term",
    "calc_inverse_dynamics",
    "calc_mass_matrix_via_inverse_dynamics",
]
