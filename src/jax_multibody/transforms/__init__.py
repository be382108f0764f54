"""
JAX-based rigid-body math for JAX Multibody.

This module provides JIT-compilable implementations of:
- SO(3) array helpers (so3 module)
- SE(3) and 6x6 spatial operators (se3 module)
- validated rotation matrices and unit-vector checks (rotation, unit_vector)
- rigid transforms (transform module)
- spatial velocities, accelerations and forces (spatial module)
"""

from . import so3
from . import se3
from .rotation import (
    RotationMatrix,
    get_internal_tolerance_for_orthonormality,
    get_measure_of_orthonormality,
    is_orthonormal,
    project_mat_to_rot_mat_with_axis,
    project_to_rotation_matrix,
)
from .spatial import SpatialAcceleration, SpatialForce, SpatialVelocity
from .transform import RigidTransform
from .unit_vector import throw_if_not_unit_vector, warn_if_not_unit_vector

__all__ = [
    "so3",
    "se3",
    "RotationMatrix",
    "RigidTransform",
    "SpatialVelocity",
    "SpatialAcceleration",
    "SpatialForce",
    "get_internal_tolerance_for_orthonormality",
    "get_measure_of_orthonormality",
    "is_orthonormal",
    "project_to_rotation_matrix",
    "project_mat_to_rot_mat_with_axis",
    "throw_if_not_unit_vector",
    "warn_if_not_unit_vector",
]
