"""
Error taxonomy for network estimation and pathway testing.

Configuration and shape problems subclass ``ValueError`` so callers that
already guard input validation with ``except ValueError`` keep working.
Numerical failures subclass ``RuntimeError``. The one non-fatal outcome
(an edgeless network at a large penalty) is a warning, not an error.

Examples:
    >>> from netgsa.core.errors import DimensionError
    >>> try:
    ...     raise DimensionError("B has 12 columns, network has 10 genes")
    ... except ValueError as e:
    ...     print(type(e).__name__)
    DimensionError
"""

from __future__ import annotations

__all__ = [
    'NetGSAError',
    'DimensionError',
    'ConstraintConflictError',
    'ConvergenceError',
    'OrderingError',
    'DegenerateVarianceError',
    'DegenerateFitWarning',
]


class NetGSAError(Exception):
    """Base class for all netgsa errors."""
    pass


class DimensionError(NetGSAError, ValueError):
    """Raised on shape or gene-ordering mismatches between matrices."""
    pass


class ConstraintConflictError(NetGSAError, ValueError):
    """Raised when zero/one constraint masks overlap or are not symmetric."""
    pass


class OrderingError(NetGSAError, ValueError):
    """Raised when a directed mask contradicts the declared topological order."""
    pass


class ConvergenceError(NetGSAError, RuntimeError):
    """
    Raised when a numerical solver exhausts its iteration budget.

    Attributes:
        parameters: Parameter values of the failed unit (lambda, weight,
            condition, ...) so the caller can tell which grid point or
            condition is affected.
    """

    def __init__(self, message: str, **parameters: object) -> None:
        super().__init__(message)
        self.parameters = parameters


class DegenerateVarianceError(NetGSAError, RuntimeError):
    """
    Raised when a variance-component estimate is negative beyond tolerance.

    The restricted moment estimator is unstable for the given data; switch
    to the full-likelihood method or increase ``eta`` upstream.
    """

    def __init__(self, message: str, condition: object = None,
                 component: str | None = None, value: float | None = None) -> None:
        super().__init__(message)
        self.condition = condition
        self.component = component
        self.value = value


class DegenerateFitWarning(UserWarning):
    """Emitted when an estimated network has no edges."""
    pass
