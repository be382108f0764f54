"""Unit-vector validation.

Used by :class:`~jax_multibody.transforms.rotation.RotationMatrix` and by the
joints to check axes. Both checks return |v|² so callers can reuse it.
"""

import logging
from typing import Optional, Set

import jax
import jax.numpy as jnp

from ..config import DEFAULT_UNIT_VECTOR_TOLERANCE
from ..errors import UnitVectorError
from ..scalar import resolve_bool

Array = jax.Array

logger = logging.getLogger(__name__)

# Function names that already produced a warning.
_warned_function_names: Set[str] = set()


def _fmt(x: float) -> str:
    return format(float(x), ".17g")


def _unit_vector_message(v: Array, function_name: str, tolerance: float) -> Optional[str]:
    """Build the error message for ``v``, or None when v is a unit vector."""
    v_norm = jnp.linalg.norm(v)
    deviation = jnp.abs(v_norm - 1.0)
    is_finite = resolve_bool(jnp.all(jnp.isfinite(v)))
    is_bad = resolve_bool(~(deviation <= tolerance))
    if is_finite is None or is_bad is None or not is_bad:
        return None

    components = " ".join(_fmt(x) for x in v)
    if not is_finite:
        return (
            f"{function_name}(): The unit_vector argument {components} is not finite; "
            f"it contains a NaN or an infinity.\n"
            f"|unit_vector| = {_fmt(v_norm)}\n"
            f"A non-finite vector cannot be a unit vector."
        )
    return (
        f"{function_name}(): The unit_vector argument {components} is not a unit vector.\n"
        f"|unit_vector| = {_fmt(v_norm)}\n"
        f"||unit_vector| - 1| = {_fmt(deviation)} is greater than {tolerance:g}."
    )


def throw_if_not_unit_vector(v: Array, function_name: str, tolerance: Optional[float] = None) -> Array:
    """Raise if ``v`` is not a unit vector.

    Args:
        v: (3,) vector to check.
        function_name: Name of the calling function, used in the message.
        tolerance: Allowed abs(|v| - 1). Defaults to
                   :data:`~jax_multibody.config.DEFAULT_UNIT_VECTOR_TOLERANCE`.

    Returns:
        |v|², i.e. ``v · v``.

    Raises:
        UnitVectorError: if |v| is not within ``tolerance`` of 1 or if ``v``
                         contains a NaN or infinity.
    """
    v = jnp.asarray(v)
    if tolerance is None:
        tolerance = DEFAULT_UNIT_VECTOR_TOLERANCE
    message = _unit_vector_message(v, function_name, tolerance)
    if message is not None:
        raise UnitVectorError(message)
    return jnp.dot(v, v)


def warn_if_not_unit_vector(v: Array, function_name: str, tolerance: Optional[float] = None) -> Array:
    """Same check as :func:`throw_if_not_unit_vector` but only logs a warning.

    The warning is logged once per ``function_name``; execution continues
    with ``v`` as given.

    Returns:
        |v|², i.e. ``v · v``.
    """
    v = jnp.asarray(v)
    if tolerance is None:
        tolerance = DEFAULT_UNIT_VECTOR_TOLERANCE
    message = _unit_vector_message(v, function_name, tolerance)
    if message is not None and function_name not in _warned_function_names:
        _warned_function_names.add(function_name)
        logger.warning(message)
    return jnp.dot(v, v)
