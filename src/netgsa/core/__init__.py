"""Core data structures: expression container, constraint masks, errors."""

from netgsa.core.errors import (
    NetGSAError,
    DimensionError,
    ConstraintConflictError,
    ConvergenceError,
    OrderingError,
    DegenerateVarianceError,
    DegenerateFitWarning,
)
from netgsa.core.expression import ExpressionMatrix, as_expression_matrix
from netgsa.core.masks import ConstraintMasks, validate_masks

__all__ = [
    'ExpressionMatrix',
    'as_expression_matrix',
    'ConstraintMasks',
    'validate_masks',
    'NetGSAError',
    'DimensionError',
    'ConstraintConflictError',
    'ConvergenceError',
    'OrderingError',
    'DegenerateVarianceError',
    'DegenerateFitWarning',
]
