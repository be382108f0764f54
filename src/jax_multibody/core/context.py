"""Per-simulation state and caches.

A :class:`Context` owns everything that changes while a model is simulated:
generalized positions and velocities, the mass parameters of each body and
the externally applied forces. Every write bumps :attr:`Context.version`;
cached results record the version they were computed at and are recomputed
lazily when it no longer matches. The kinematic tree itself never holds
state, so any number of contexts can be evaluated against the same tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence

import jax
import jax.numpy as jnp
from flax import struct

logger = logging.getLogger(__name__)

Array = jax.Array


@struct.dataclass
class BodyParameters:
    """Mass properties of every body, indexed by body index.

    Attributes:
        mass: (num_bodies,) masses.
        p_BoBcm_B: (num_bodies, 3) centers of mass in their body frames.
        G_BBo_B: (num_bodies, 3, 3) unit inertias about the body origins.
    """
    mass: Array
    p_BoBcm_B: Array
    G_BBo_B: Array


@dataclass
class CacheEntry:
    """A cached value and the context version it was computed for."""
    version: int
    value: Any


class Context:
    """Mutable state of one simulation of a multibody tree.

    Contexts are created by
    :meth:`~jax_multibody.core.tree.MultibodyTree.create_default_context`.
    """

    def __init__(self, q: Array, v: Array, parameters: BodyParameters):
        self._q = jnp.asarray(q, dtype=jnp.float64)
        self._v = jnp.asarray(v, dtype=jnp.float64)
        self._parameters = parameters
        self._applied_generalized_force = jnp.zeros_like(self._v)
        self._applied_spatial_forces: List[Any] = []
        self._version = 0
        self._cache: Dict[str, CacheEntry] = {}

    @property
    def version(self) -> int:
        return self._version

    def _bump_version(self) -> None:
        self._version += 1

    @property
    def num_positions(self) -> int:
        return self._q.shape[0]

    @property
    def num_velocities(self) -> int:
        return self._v.shape[0]

    # State
    def get_positions(self) -> Array:
        return self._q

    def get_velocities(self) -> Array:
        return self._v

    def get_positions_and_velocities(self) -> Array:
        return jnp.concatenate([self._q, self._v])

    def set_positions(self, q) -> None:
        q = jnp.asarray(q, dtype=jnp.float64)
        if q.shape != self._q.shape:
            raise ValueError(f"Expected positions of shape {self._q.shape}, got {q.shape}")
        self._q = q
        self._bump_version()

    def set_velocities(self, v) -> None:
        v = jnp.asarray(v, dtype=jnp.float64)
        if v.shape != self._v.shape:
            raise ValueError(f"Expected velocities of shape {self._v.shape}, got {v.shape}")
        self._v = v
        self._bump_version()

    def set_positions_and_velocities(self, x) -> None:
        x = jnp.asarray(x, dtype=jnp.float64)
        nq, nv = self.num_positions, self.num_velocities
        if x.shape != (nq + nv,):
            raise ValueError(f"Expected a state of shape {(nq + nv,)}, got {x.shape}")
        self._q = x[:nq]
        self._v = x[nq:]
        self._bump_version()

    # Parameters
    @property
    def parameters(self) -> BodyParameters:
        return self._parameters

    def set_parameters(self, parameters: BodyParameters) -> None:
        self._parameters = parameters
        self._bump_version()

    # Applied forces
    def get_applied_generalized_force(self) -> Array:
        return self._applied_generalized_force

    def set_applied_generalized_force(self, tau) -> None:
        tau = jnp.asarray(tau, dtype=jnp.float64)
        if tau.shape != self._v.shape:
            raise ValueError(f"Expected generalized forces of shape {self._v.shape}, got {tau.shape}")
        self._applied_generalized_force = tau
        self._bump_version()

    def get_applied_spatial_forces(self) -> Sequence[Any]:
        return tuple(self._applied_spatial_forces)

    def set_applied_spatial_forces(self, forces: Sequence[Any]) -> None:
        self._applied_spatial_forces = list(forces)
        self._bump_version()

    # Caching
    def eval_cache_entry(self, name: str, calc: Callable[["Context"], Any]) -> Any:
        """Return the value cached under ``name``, recomputing it if stale."""
        entry = self._cache.get(name)
        if entry is None or entry.version != self._version:
            logger.debug("Computing cache entry '%s' for context version %d", name, self._version)
            entry = CacheEntry(self._version, calc(self))
            self._cache[name] = entry
        return entry.value

    def is_cache_entry_up_to_date(self, name: str) -> bool:
        entry = self._cache.get(name)
        return entry is not None and entry.version == self._version

    def clone(self) -> "Context":
        """An independent copy with the same state and an empty cache."""
        other = Context(self._q, self._v, self._parameters)
        other._applied_generalized_force = self._applied_generalized_force
        other._applied_spatial_forces = list(self._applied_spatial_forces)
        return other
