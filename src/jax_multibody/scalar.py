"""Helpers for scalars that may or may not have a concrete value.

Every algorithm in this package runs on concrete arrays, under forward-mode
differentiation (``jax.jvp`` / ``jax.jacfwd``) and under ``jax.jit``. Inside
``jit`` the values are abstract tracers and a comparison such as
``jnp.all(jnp.isfinite(R))`` has no definite truth value. Validation code asks
:func:`resolve_bool` first and does nothing when the answer is ``None``.
"""

from typing import Optional

import jax


def resolve_bool(predicate) -> Optional[bool]:
    """Return ``predicate`` as a Python bool, or ``None`` if it is traced."""
    try:
        return bool(predicate)
    except jax.errors.ConcretizationTypeError:
        return None


def resolve_float(value) -> Optional[float]:
    """Return ``value`` as a Python float, or ``None`` if it is traced."""
    try:
        return float(value)
    except jax.errors.ConcretizationTypeError:
        return None

