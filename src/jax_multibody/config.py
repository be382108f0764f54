"""Numerical defaults and plant configuration for JAX Multibody.

The tolerances below are the defaults used by the validation routines and by
the articulated body algorithm. Each of them can be overridden per call (for
the validation helpers) or per plant through :class:`PlantConfig`.
"""

from typing import Tuple

import jax.numpy as jnp
from flax import struct

# Machine epsilon of the float64 scalars the library runs on.
EPSILON = float(jnp.finfo(jnp.float64).eps)

# max|R Rᵀ - I| allowed for a matrix to be accepted as a rotation matrix.
DEFAULT_ORTHONORMALITY_TOLERANCE = 128 * EPSILON

# abs(|u| - 1) allowed for a vector to be accepted as a unit vector.
DEFAULT_UNIT_VECTOR_TOLERANCE = 4 * EPSILON

# A hinge inertia D_B is treated as singular when its smallest Cholesky
# pivot squared is at most this factor times max|P_B|, the largest entry of
# the articulated body inertia it was projected from.
DEFAULT_HINGE_INERTIA_TOLERANCE = 64 * EPSILON

# Principal moments of a central unit inertia may fall below zero, or below
# the triangle inequality, by this factor times the magnitude of the inertia
# they were shifted from.
DEFAULT_INERTIA_TOLERANCE = 16 * EPSILON

DEFAULT_GRAVITY: Tuple[float, float, float] = (0.0, 0.0, -9.81)


@struct.dataclass
class PlantConfig:
    """Static configuration of a :class:`~jax_multibody.plant.MultibodyPlant`.

    Attributes:
        gravity: Gravity vector expressed in the world frame (m/s²). Used for
                 the uniform gravity field element every plant owns.
        hinge_inertia_tolerance: Relative threshold below which an
                 articulated body hinge inertia is reported as singular.
    """
    gravity: Tuple[float, float, float] = struct.field(pytree_node=False, default=DEFAULT_GRAVITY)
    hinge_inertia_tolerance: float = struct.field(
        pytree_node=False, default=DEFAULT_HINGE_INERTIA_TOLERANCE
    )
