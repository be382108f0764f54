"""Mass properties of rigid bodies.

Rotational inertias are stored per unit mass ("unit inertias", G) so that a
body's mass can be changed without touching its inertia distribution. The
helpers below return raw (3, 3) arrays; :class:`SpatialInertia` bundles the
mass, the center of mass and the unit inertia about a point.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from ..config import DEFAULT_INERTIA_TOLERANCE
from ..scalar import resolve_bool
from ..transforms import se3, so3
from ..transforms.rotation import RotationMatrix
from ..transforms.spatial import SpatialAcceleration, SpatialForce

Array = jax.Array


# Unit inertia helpers
def solid_box(lx: float, ly: float, lz: float) -> Array:
    """Unit inertia of a solid box about its center, edges along the axes."""
    lx2, ly2, lz2 = lx * lx, ly * ly, lz * lz
    return jnp.diag(jnp.array([ly2 + lz2, lx2 + lz2, lx2 + ly2]) / 12.0)


def solid_cube(L: float) -> Array:
    return solid_box(L, L, L)


def solid_sphere(r: float) -> Array:
    return jnp.eye(3) * (0.4 * r * r)


def point_mass(p: Array) -> Array:
    """Unit inertia about the origin of a unit point mass at ``p``: |p|² I - p pᵀ."""
    p = jnp.asarray(p, dtype=jnp.float64)
    return jnp.dot(p, p) * jnp.eye(3) - jnp.outer(p, p)


def shift_from_center_of_mass(G_BBcm: Array, p_BcmQ: Array) -> Array:
    """Parallel axis theorem: G_BQ from the central unit inertia G_BBcm."""
    return G_BBcm + point_mass(p_BcmQ)


def shift_to_center_of_mass(G_BQ: Array, p_QBcm: Array) -> Array:
    """Inverse of :func:`shift_from_center_of_mass`."""
    return G_BQ - point_mass(p_QBcm)


def calc_central_principal_moments(G_BQ: Array, p_QBcm: Array) -> Array:
    """Principal moments of the central unit inertia, in ascending order."""
    return jnp.linalg.eigvalsh(shift_to_center_of_mass(G_BQ, p_QBcm))


def could_be_physical_unit_inertia(G_BQ: Array, p_QBcm: Array) -> Array:
    """
    True if G_BQ can be the unit inertia of a body about Q.

    The central principal moments must be non-negative and each no larger
    than the sum of the other two.
    """
    moments = calc_central_principal_moments(G_BQ, p_QBcm)
    tolerance = DEFAULT_INERTIA_TOLERANCE * (jnp.max(jnp.abs(G_BQ)) + jnp.dot(p_QBcm, p_QBcm))
    return (moments[0] >= -tolerance) & (moments[0] + moments[1] >= moments[2] - tolerance)


@register_pytree_node_class
@dataclass(frozen=True)
class SpatialInertia:
    """
    Spatial inertia M_SP_E of a body S about a point P, expressed in E.

    Attributes:
        mass: Mass of S (kg), non-negative.
        p_PScm_E: Position of the center of mass Scm from P, expressed in E.
        G_SP_E: Unit inertia (rotational inertia divided by mass) of S about
                P, expressed in E.
        skip_validity_check: Do not reject negative or non-finite masses and
                             non-physical unit inertias.
    """
    mass: Array
    p_PScm_E: Array  # shape (3,)
    G_SP_E: Array  # shape (3, 3)
    skip_validity_check: bool = field(default=False, repr=False, compare=False)

    def __post_init__(self):
        if self.skip_validity_check:
            return
        valid = resolve_bool(jnp.isfinite(self.mass) & (self.mass >= 0))
        if valid is not None and not valid:
            raise ValueError(
                f"Spatial inertia is not physically valid: "
                f"mass = {float(self.mass)} is negative or not finite."
            )
        p, G = jnp.asarray(self.p_PScm_E), jnp.asarray(self.G_SP_E)
        valid = resolve_bool(jnp.all(jnp.isfinite(p)) & jnp.all(jnp.isfinite(G)))
        if valid is not None and not valid:
            raise ValueError(
                "Spatial inertia is not physically valid: "
                "the center of mass or the unit inertia is not finite."
            )
        valid = resolve_bool(could_be_physical_unit_inertia(G, p))
        if valid is not None and not valid:
            moments = [float(m) for m in calc_central_principal_moments(G, p)]
            raise ValueError(
                f"Spatial inertia is not physically valid: the principal moments "
                f"{moments} of the unit inertia about the center of mass are "
                f"negative or violate the triangle inequality."
            )

    @classmethod
    def make_from_central_inertia(cls, mass, p_PScm_E: Array, I_SScm_E: Array) -> "SpatialInertia":
        """Spatial inertia about P from the rotational inertia about Scm.

        ``mass`` must be positive; the unit inertia is I_SScm / mass.
        """
        mass = jnp.asarray(mass, dtype=jnp.float64)
        p_PScm_E = jnp.asarray(p_PScm_E, dtype=jnp.float64)
        G_SScm_E = jnp.asarray(I_SScm_E, dtype=jnp.float64) / mass
        return cls(mass, p_PScm_E, shift_from_center_of_mass(G_SScm_E, -p_PScm_E))

    @classmethod
    def from_unit_inertia(cls, mass, p_PScm_E: Array, G_SP_E: Array) -> "SpatialInertia":
        return cls(
            jnp.asarray(mass, dtype=jnp.float64),
            jnp.asarray(p_PScm_E, dtype=jnp.float64),
            jnp.asarray(G_SP_E, dtype=jnp.float64),
        )

    @classmethod
    def zero(cls) -> "SpatialInertia":
        return cls(jnp.zeros(()), jnp.zeros(3), jnp.zeros((3, 3)))

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.mass, self.p_PScm_E, self.G_SP_E), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        mass, p, G = children
        return cls(mass, p, G, skip_validity_check=True)

    def is_physically_valid(self) -> bool:
        return bool(
            jnp.isfinite(self.mass)
            & (self.mass >= 0)
            & jnp.all(jnp.isfinite(self.p_PScm_E))
            & jnp.all(jnp.isfinite(self.G_SP_E))
            & could_be_physical_unit_inertia(self.G_SP_E, self.p_PScm_E)
        )

    def calc_rotational_inertia(self) -> Array:
        """I_SP_E = mass · G_SP_E."""
        return self.mass * self.G_SP_E

    def shift(self, p_PQ_E: Array) -> "SpatialInertia":
        """M_SQ_E: the same body about the point Q at ``p_PQ_E`` from P."""
        p_QScm_E = self.p_PScm_E - p_PQ_E
        G_SQ_E = shift_from_center_of_mass(
            shift_to_center_of_mass(self.G_SP_E, self.p_PScm_E), p_QScm_E
        )
        return SpatialInertia(self.mass, p_QScm_E, G_SQ_E, skip_validity_check=True)

    def re_express(self, R_AE: RotationMatrix) -> "SpatialInertia":
        """M_SP_A from M_SP_E."""
        R = R_AE.matrix
        return SpatialInertia(
            self.mass, R @ self.p_PScm_E, R @ self.G_SP_E @ R.T, skip_validity_check=True
        )

    def copy_to_full_matrix6(self) -> Array:
        """
        The (6, 6) matrix mapping ``[ω; v_P]`` to the spatial momentum about P.

        Returns:
            [[m G, m [p]x], [-m [p]x, m I]]
        """
        m = self.mass
        mpx = m * so3.skew_symmetric(self.p_PScm_E)
        return jnp.block([[m * self.G_SP_E, mpx], [-mpx, m * jnp.eye(3)]])

    def calc_bias_force(self, w_WS_E: Array) -> SpatialForce:
        """
        Velocity dependent force ``[ω × I_P ω; m ω × (ω × p_PScm)]``.

        Together with ``M @ A_WS`` (A measured at P) it gives the net force
        on S about P.
        """
        V = jnp.concatenate([w_WS_E, jnp.zeros_like(w_WS_E)])
        return SpatialForce(se3.force_cross(V) @ self.copy_to_full_matrix6() @ V)

    def __matmul__(self, A: SpatialAcceleration) -> SpatialForce:
        if not isinstance(A, SpatialAcceleration):
            return NotImplemented
        return SpatialForce(self.copy_to_full_matrix6() @ A.coeffs)
