"""Error types for the smile fitting pipeline."""


class SmileFitError(Exception):
    """Base exception for the volsmile package."""

    pass


class UnsolvableError(SmileFitError):
    """Implied volatility cannot be bracketed or did not converge for an option."""

    pass


class InsufficientDataError(SmileFitError):
    """An expiry group has fewer members than the fitting threshold."""

    pass


class UnfittableGroupError(SmileFitError):
    """No arbitrage-free SVI candidate was found for an expiry group."""

    pass


class NumericDegeneracyError(SmileFitError):
    """NaN or infinity showed up in a cost or Jacobian evaluation."""

    pass


__all__ = [
    "SmileFitError",
    "UnsolvableError",
    "InsufficientDataError",
    "UnfittableGroupError",
    "NumericDegeneracyError",
]
