"""
JAX Multibody: rigid multibody forward dynamics in JAX.

This library provides spatial algebra (rotations, rigid transforms, spatial
velocities, accelerations and forces), kinematic trees of rigid bodies
connected by joints, and the articulated body algorithm for forward
dynamics, all built on JAX arrays.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import kinematics
from . import dynamics
from .config import PlantConfig
from .errors import (
    ImproperRotationError,
    MultibodyError,
    NonFiniteRotationError,
    NonOrthonormalRotationError,
    RotationMatrixError,
    SingularHingeInertiaError,
    TopologyError,
    UnitVectorError,
)
from .plant import MultibodyPlant, OutputPort

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "kinematics",
    "dynamics",
    "PlantConfig",
    "MultibodyPlant",
    "OutputPort",
    "MultibodyError",
    "RotationMatrixError",
    "NonFiniteRotationError",
    "NonOrthonormalRotationError",
    "ImproperRotationError",
    "UnitVectorError",
    "TopologyError",
    "SingularHingeInertiaError",
]
