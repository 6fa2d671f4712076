"""Network estimation: covariance, constrained graphical lasso, BIC tuning, DAGs."""

from netgsa.network.covariance import empirical_covariance
from netgsa.network.glasso import GlassoSolution, constrained_graphical_lasso
from netgsa.network.undirected import (
    UndirectedNetwork,
    estimate_undirected_network,
    precision_to_partial_correlation,
    count_edges,
)
from netgsa.network.selection import (
    BICRecord,
    SelectionResult,
    bic_score,
    select_undirected_network,
)
from netgsa.network.directed import (
    RegressionPenalty,
    DirectedNetwork,
    estimate_directed_network,
    check_topological_order,
)
from netgsa.network.conditions import (
    EstimationMethod,
    ConditionNetworks,
    estimate_condition_networks,
)

__all__ = [
    'empirical_covariance',
    'GlassoSolution',
    'constrained_graphical_lasso',
    'UndirectedNetwork',
    'estimate_undirected_network',
    'precision_to_partial_correlation',
    'count_edges',
    'BICRecord',
    'SelectionResult',
    'bic_score',
    'select_undirected_network',
    'RegressionPenalty',
    'DirectedNetwork',
    'estimate_directed_network',
    'check_topological_order',
    'EstimationMethod',
    'ConditionNetworks',
    'estimate_condition_networks',
]
