"""Validated 3x3 rotation matrices in JAX."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple, Union

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from . import so3
from .unit_vector import throw_if_not_unit_vector
from ..config import DEFAULT_ORTHONORMALITY_TOLERANCE
from ..errors import ImproperRotationError, NonFiniteRotationError, NonOrthonormalRotationError
from ..scalar import resolve_bool, resolve_float

Array = jax.Array


def get_internal_tolerance_for_orthonormality() -> float:
    """Tolerance used by :meth:`RotationMatrix.throw_if_not_valid`."""
    return DEFAULT_ORTHONORMALITY_TOLERANCE


def get_measure_of_orthonormality(R: Array) -> Array:
    """max|R Rᵀ - I|, zero for a perfectly orthonormal matrix."""
    return jnp.max(jnp.abs(R @ R.T - jnp.eye(3, dtype=R.dtype)))


def is_orthonormal(R: Array, tolerance: float) -> Array:
    return get_measure_of_orthonormality(R) <= tolerance


@register_pytree_node_class
@dataclass(frozen=True)
class RotationMatrix:
    """Immutable proper orthonormal 3x3 matrix R_AB.

    The plain constructor stores ``matrix`` as is; the named constructors
    (:meth:`from_matrix`, :meth:`from_quaternion`, ...) validate their result
    with :meth:`throw_if_not_valid`. Validation is skipped for traced values,
    so every constructor works under ``jit``.
    """
    matrix: Array  # shape (3, 3)

    # Constructors
    @classmethod
    def identity(cls, *, dtype=jnp.float64) -> "RotationMatrix":
        return cls(jnp.eye(3, dtype=dtype))

    @classmethod
    def from_matrix(cls, matrix: Array) -> "RotationMatrix":
        matrix = jnp.asarray(matrix, dtype=jnp.float64)
        if matrix.shape != (3, 3):
            raise ValueError(f"matrix must have shape (3,3), got {matrix.shape}")
        cls.throw_if_not_valid(matrix)
        return cls(matrix)

    @classmethod
    def from_quaternion(cls, quaternion: Array) -> "RotationMatrix":
        """Rotation from a (w, x, y, z) quaternion, normalized first."""
        R = so3.from_quaternion(jnp.asarray(quaternion, dtype=jnp.float64))
        cls.throw_if_not_valid(R)
        return cls(R)

    @classmethod
    def from_axis_angle(cls, axis: Array, angle) -> "RotationMatrix":
        """Right-handed rotation by ``angle`` about the unit vector ``axis``."""
        axis = jnp.asarray(axis, dtype=jnp.float64)
        throw_if_not_unit_vector(axis, "RotationMatrix.from_axis_angle")
        return cls(so3.from_axis_angle(axis, angle))

    @classmethod
    def from_roll_pitch_yaw(cls, rpy: Array) -> "RotationMatrix":
        return cls(so3.from_roll_pitch_yaw(jnp.asarray(rpy, dtype=jnp.float64)))

    @classmethod
    def make_x_rotation(cls, theta) -> "RotationMatrix":
        return cls(so3.from_axis_angle(jnp.array([1.0, 0.0, 0.0]), theta))

    @classmethod
    def make_y_rotation(cls, theta) -> "RotationMatrix":
        return cls(so3.from_axis_angle(jnp.array([0.0, 1.0, 0.0]), theta))

    @classmethod
    def make_z_rotation(cls, theta) -> "RotationMatrix":
        return cls(so3.from_axis_angle(jnp.array([0.0, 0.0, 1.0]), theta))

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.matrix,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        (matrix,) = children
        return cls(matrix)

    # Validation
    @staticmethod
    def throw_if_not_valid(R: Array) -> None:
        """Raise unless R is finite, orthonormal and right-handed.

        Raises:
            NonFiniteRotationError: an element is NaN or infinite.
            NonOrthonormalRotationError: max|R Rᵀ - I| exceeds
                :func:`get_internal_tolerance_for_orthonormality`.
            ImproperRotationError: det(R) < 0.
        """
        all_finite = resolve_bool(jnp.all(jnp.isfinite(R)))
        if all_finite is None:
            return
        if not all_finite:
            raise NonFiniteRotationError(
                "Error: Rotation matrix contains an element that is infinity or NaN."
            )
        tolerance = get_internal_tolerance_for_orthonormality()
        if not resolve_bool(is_orthonormal(R, tolerance)):
            measure = resolve_float(get_measure_of_orthonormality(R))
            raise NonOrthonormalRotationError(
                "Error: Rotation matrix is not orthonormal.\n"
                f"  Measure of orthonormality error: {measure:g}  (near-zero is good).\n"
                "  To calculate the proper orthonormal rotation matrix closest to the"
                " alleged rotation matrix, use the SVD (expensive) function"
                " project_to_rotation_matrix(), or for a less expensive (but not"
                " necessarily closest) rotation matrix, use"
                " RotationMatrix.from_quaternion(so3.to_quaternion(your_matrix))."
                " Alternatively, if using quaternions, ensure the quaternion is normalized.",
                measure,
            )
        if resolve_bool(jnp.linalg.det(R) < 0):
            raise ImproperRotationError(
                "Error: Rotation matrix determinant is negative. It is possible a basis is left-handed."
            )

    def is_valid(self) -> bool:
        """True if the matrix passes :meth:`throw_if_not_valid`."""
        R = self.matrix
        return bool(
            jnp.all(jnp.isfinite(R))
            & is_orthonormal(R, get_internal_tolerance_for_orthonormality())
            & (jnp.linalg.det(R) > 0)
        )

    # Basic operations
    def compose(self, other: "RotationMatrix") -> "RotationMatrix":
        """R_AC = R_AB.compose(R_BC)."""
        return RotationMatrix(self.matrix @ other.matrix)

    def inverse(self) -> "RotationMatrix":
        return RotationMatrix(self.matrix.T)

    def transpose(self) -> "RotationMatrix":
        return RotationMatrix(self.matrix.T)

    def apply(self, v: Array) -> Array:
        """Re-express vector(s) v_B (shape (3,) or (N, 3)) in frame A."""
        return jnp.einsum("ij,...j->...i", self.matrix, v)

    def __matmul__(self, other: Union["RotationMatrix", Array]):
        if isinstance(other, RotationMatrix):
            return self.compose(other)
        if hasattr(other, "rotate_by"):
            return other.rotate_by(self)
        return self.apply(other)

    def col(self, index: int) -> Array:
        return self.matrix[:, index]

    def row(self, index: int) -> Array:
        return self.matrix[index, :]

    def to_quaternion(self) -> Array:
        return so3.to_quaternion(self.matrix)

    def is_exactly_identity(self) -> bool:
        return bool(jnp.all(self.matrix == jnp.eye(3)))

    def is_nearly_equal_to(self, other: "RotationMatrix", tolerance: float) -> bool:
        return bool(jnp.max(jnp.abs(self.matrix - other.matrix)) <= tolerance)


def project_to_rotation_matrix(
    M: Array, return_quality_factor: bool = False
) -> Union[RotationMatrix, Tuple[RotationMatrix, Array]]:
    """
    Proper rotation matrix closest to ``M`` in the Frobenius norm.

    With M = U Σ Vᵀ the closest orthonormal matrix is U Vᵀ. If that product is
    a reflection, the column of U that belongs to the smallest singular value
    is negated so the result has determinant +1. This is an expensive
    operation, use it only when a matrix really needs repair.

    Args:
        M: (3, 3) matrix to project.
        return_quality_factor: Also return how close M is to a rotation: the
            singular value of M farthest from 1, negated when M is improper.
            1 means M already is a rotation.

    Returns:
        The projected :class:`RotationMatrix` (and the quality factor).
    """
    M = jnp.asarray(M, dtype=jnp.float64)
    U, sigma, Vt = jnp.linalg.svd(M)
    sign = jnp.sign(jnp.linalg.det(U @ Vt))
    D = jnp.diag(jnp.array([1.0, 1.0, 1.0]).at[2].set(sign))
    R = RotationMatrix(U @ D @ Vt)
    if not return_quality_factor:
        return R
    farthest = sigma[jnp.argmax(jnp.abs(sigma - 1.0))]
    return R, sign * farthest


def project_mat_to_rot_mat_with_axis(
    M: Array, axis: Array, angle_lb: float, angle_ub: float
) -> float:
    """
    Angle θ in [angle_lb, angle_ub] maximizing trace(Mᵀ R(axis, θ)).

    With A the skew matrix of the unit axis, R(θ) = I + sin(θ) A +
    (1 - cos(θ)) A², so the objective is a constant plus K sin(θ + α) with
    α = atan2(-trace(Mᵀ A²), trace(Aᵀ M)). It is maximal where
    θ + α = π/2 + 2kπ; when no such point lies in the interval the better of
    the two bounds is returned. Either bound may be infinite.

    Args:
        M: (3, 3) matrix to project.
        axis: (3,) rotation axis, need not be normalized.
        angle_lb: Lower bound on θ (may be -inf).
        angle_ub: Upper bound on θ (may be inf).

    Returns:
        The optimal angle θ in radians.

    Raises:
        ValueError: if angle_ub < angle_lb or axis is the zero vector.
    """
    if angle_ub < angle_lb:
        raise ValueError("The angle upper bound should be no smaller than the angle lower bound.")
    axis = jnp.asarray(axis, dtype=jnp.float64)
    axis_norm = float(jnp.linalg.norm(axis))
    if axis_norm == 0:
        raise ValueError("The axis argument cannot be the zero vector.")
    M = jnp.asarray(M, dtype=jnp.float64)
    A = so3.skew_symmetric(axis / axis_norm)
    alpha = math.atan2(-float(jnp.trace(M.T @ A @ A)), float(jnp.trace(A.T @ M)))

    if math.isinf(angle_lb) and math.isinf(angle_ub):
        return math.pi / 2 - alpha
    if math.isinf(angle_ub):
        # First stationary point θ + α = π/2 + 2kπ at or above angle_lb.
        k = math.ceil((angle_lb + alpha - math.pi / 2) / (2 * math.pi))
        return (2 * k + 0.5) * math.pi - alpha
    # Last stationary point at or below angle_ub.
    k = math.floor((angle_ub + alpha - math.pi / 2) / (2 * math.pi))
    if math.isinf(angle_lb):
        return (2 * k + 0.5) * math.pi - alpha
    max_sin_angle = math.pi / 2 + 2 * k * math.pi
    if max_sin_angle >= angle_lb + alpha:
        return max_sin_angle - alpha
    if math.sin(angle_lb + alpha) >= math.sin(angle_ub + alpha):
        return angle_lb
    return angle_ub
