"""Kinematic tree data structures for JAX Multibody.

This module provides the model-building objects (bodies, frames, joints, the
tree itself), mass properties, and the per-simulation context.
"""

from .inertia import (
    SpatialInertia,
    calc_central_principal_moments,
    could_be_physical_unit_inertia,
    point_mass,
    shift_from_center_of_mass,
    shift_to_center_of_mass,
    solid_box,
    solid_cube,
    solid_sphere,
)
from .context import BodyParameters, CacheEntry, Context
from .joints import Joint, PrismaticJoint, QuaternionFloatingJoint, RevoluteJoint, WeldJoint
from .bodies import BodyFrame, FixedOffsetFrame, Frame, RigidBody
from .tree import MultibodyTree, TreeTopology

__all__ = [
    "SpatialInertia",
    "calc_central_principal_moments",
    "could_be_physical_unit_inertia",
    "point_mass",
    "shift_from_center_of_mass",
    "shift_to_center_of_mass",
    "solid_box",
    "solid_cube",
    "solid_sphere",
    "BodyParameters",
    "CacheEntry",
    "Context",
    "Joint",
    "PrismaticJoint",
    "QuaternionFloatingJoint",
    "RevoluteJoint",
    "WeldJoint",
    "BodyFrame",
    "FixedOffsetFrame",
    "Frame",
    "RigidBody",
    "MultibodyTree",
    "TreeTopology",
]
