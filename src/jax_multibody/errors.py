"""Exception types raised by JAX Multibody."""


class MultibodyError(Exception):
    """Base class of every error raised by this package."""


class RotationMatrixError(MultibodyError, ValueError):
    """A matrix was rejected as a rotation matrix."""


class NonFiniteRotationError(RotationMatrixError):
    """The matrix contains a NaN or an infinity."""


class NonOrthonormalRotationError(RotationMatrixError):
    """R Rᵀ deviates from the identity by more than the allowed tolerance."""

    def __init__(self, message: str, measure: float):
        super().__init__(message)
        self.measure = measure


class ImproperRotationError(RotationMatrixError):
    """The matrix is orthonormal but its determinant is negative."""


class UnitVectorError(MultibodyError, ValueError):
    """A vector that must have unit magnitude does not."""


class TopologyError(MultibodyError, RuntimeError):
    """The kinematic tree was built or modified in an invalid way."""


class SingularHingeInertiaError(MultibodyError, RuntimeError):
    """An articulated body hinge inertia is not invertible.

    Attributes:
        body_node_index: Index of the body node whose hinge inertia failed.
    """

    def __init__(self, body_node_index: int):
        self.body_node_index = body_node_index
        super().__init__(
            f"Encountered singular articulated body hinge inertia for body node "
            f"index {body_node_index}. Please ensure that this body has non-zero "
            f"inertia along all axes of motion."
        )
