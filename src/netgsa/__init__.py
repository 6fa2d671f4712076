"""
netgsa - Network-based Gene Set Analysis

Estimates one gene network per condition under prior-knowledge constraints
(known edges and non-edges, or a directed topology), selects the
regularization by BIC, and tests pathways for differential activity with a
model in which perturbations spread along the estimated network.
"""

__version__ = "0.1.0"

from netgsa.core.expression import ExpressionMatrix
from netgsa.core.errors import (
    NetGSAError,
    DimensionError,
    ConstraintConflictError,
    ConvergenceError,
    OrderingError,
    DegenerateVarianceError,
    DegenerateFitWarning,
)
from netgsa.network.undirected import estimate_undirected_network
from netgsa.network.selection import select_undirected_network
from netgsa.network.directed import estimate_directed_network
from netgsa.network.conditions import estimate_condition_networks
from netgsa.stats.influence import NetworkKind
from netgsa.stats.variance import VarianceMethod
from netgsa.stats.enrichment import test_pathways

__all__ = [
    "ExpressionMatrix",
    "NetGSAError",
    "DimensionError",
    "ConstraintConflictError",
    "ConvergenceError",
    "OrderingError",
    "DegenerateVarianceError",
    "DegenerateFitWarning",
    "estimate_undirected_network",
    "select_undirected_network",
    "estimate_directed_network",
    "estimate_condition_networks",
    "NetworkKind",
    "VarianceMethod",
    "test_pathways",
]
