"""Pathway-level testing: influence matrices, variance components, enrichment."""

from netgsa.stats.influence import (
    NetworkKind,
    influence_matrix,
    propagation_matrix,
    resolve_network,
)
from netgsa.stats.variance import (
    VarianceMethod,
    VarianceComponents,
    estimate_rehe,
    estimate_reml,
    estimate_variance_components,
)
from netgsa.stats.enrichment import (
    PathwayResult,
    EnrichmentResult,
    fdr_correction,
    test_pathways,
)

__all__ = [
    'NetworkKind',
    'influence_matrix',
    'propagation_matrix',
    'resolve_network',
    'VarianceMethod',
    'VarianceComponents',
    'estimate_rehe',
    'estimate_reml',
    'estimate_variance_components',
    'PathwayResult',
    'EnrichmentResult',
    'fdr_correction',
    'test_pathways',
]
