"""
Network adapters: from an estimated network to an influence matrix.

The pathway test models a gene's expression as a network-propagated effect
plus independent noise, x = Λ(μ + γ) + ε, so that Cov(x) = σγ² ΛΛ' + σε² I.
The influence matrix Λ says how a perturbation of one gene spreads along
the network edges:

    - Precision: Λ is the symmetric square root of Ω⁻¹, so ΛΛ' = Ω⁻¹ and
      data drawn from N(μ, Ω⁻¹) follow the model with σγ² = 1, σε² = 0.
      The diagonal of Ω carries each gene's conditional variance.
    - Partial correlation: with A the partial-correlation matrix, Λ is the
      symmetric square root of (I - A)⁻¹. This equals the precision case
      for a unit-diagonal Ω; gene-specific scales are not recoverable from
      A alone. I - A must be positive definite.
    - Directed: with W the weighted DAG adjacency (W[i, j] = effect of i on
      j), the structural equations x = W'x + e give Λ = (I - W')⁻¹, always
      invertible for an acyclic W.

Λ is not rescaled: M = ΛΛ' keeps the gene variances the network implies,
which is what lets the two variance components fit data generated by the
network itself.

Networks produced by the estimators know their own kind. A raw matrix must
be accompanied by an explicit ``NetworkKind``; the content of the matrix is
never used to guess whether it is directed.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import linalg

from netgsa.core.errors import DimensionError

__all__ = ['NetworkKind', 'influence_matrix', 'propagation_matrix', 'resolve_network']

_PD_TOL = 1e-10


class NetworkKind(Enum):
    """
    How to read a network matrix.

    Attributes:
        PRECISION: Symmetric precision matrix (positive diagonal)
        PARTIAL_CORRELATION: Symmetric weighted adjacency in partial-correlation
            units (diagonal ignored)
        DIRECTED: Weighted DAG adjacency, entry [i, j] = effect of i on j
    """

    PRECISION = "precision"
    PARTIAL_CORRELATION = "partial_correlation"
    DIRECTED = "directed"


def resolve_network(
    network,
    gene_ids: pd.Index,
    kind: NetworkKind | str | None = None,
    name: str = "network",
) -> tuple[NDArray[np.float64], NetworkKind]:
    """
    Extract an aligned matrix and its kind from an estimator output or raw matrix.

    Args:
        network: UndirectedNetwork, DirectedNetwork, SelectionResult,
            DataFrame labelled by genes, or ndarray in ``gene_ids`` order.
        gene_ids: Analysis gene order.
        kind: Required for raw matrices; must agree with estimator outputs.
        name: Label used in error messages (e.g., the condition).

    Raises:
        DimensionError: If shapes or gene labels do not match ``gene_ids``.
        ValueError: If ``kind`` is missing for a raw matrix or contradicts
            the network object.
    """
    if hasattr(network, 'network') and hasattr(network, 'records'):
        network = network.network

    declared = NetworkKind(kind) if kind is not None else None

    if hasattr(network, 'matrix') and hasattr(network, 'gene_ids'):
        own_kind = network.kind
        if declared is not None and declared is not own_kind:
            raise ValueError(f"{name}: declared kind {declared.value} but network is {own_kind.value}")
        net_genes = pd.Index(network.gene_ids)
        if not net_genes.equals(gene_ids):
            raise DimensionError(
                f"{name}: network gene order ({len(net_genes)} genes) does not match "
                f"the expression gene order ({len(gene_ids)} genes)"
            )
        return np.asarray(network.matrix, dtype=float), own_kind

    if declared is None:
        raise ValueError(
            f"{name}: raw network matrices need an explicit kind "
            f"({', '.join(k.value for k in NetworkKind)})"
        )

    if isinstance(network, pd.DataFrame):
        if not (network.index.equals(gene_ids) and network.columns.equals(gene_ids)):
            if set(network.index) != set(gene_ids) or set(network.columns) != set(gene_ids):
                raise DimensionError(
                    f"{name}: network labels ({network.shape[0]} x {network.shape[1]}) "
                    f"do not match the {len(gene_ids)} expression genes"
                )
            network = network.loc[gene_ids, gene_ids]
        matrix = network.to_numpy(dtype=float)
    else:
        matrix = np.asarray(network, dtype=float)

    p = len(gene_ids)
    if matrix.shape != (p, p):
        raise DimensionError(f"{name}: network has shape {matrix.shape}, expected ({p}, {p})")
    if not np.all(np.isfinite(matrix)):
        raise ValueError(f"{name}: network contains non-finite values")
    if declared is not NetworkKind.DIRECTED and not np.allclose(matrix, matrix.T, atol=1e-8):
        raise ValueError(f"{name}: undirected network must be symmetric")
    return matrix, declared


def _inverse_sqrt(matrix: NDArray[np.float64], what: str, hint: str) -> NDArray[np.float64]:
    """Symmetric square root of matrix⁻¹; matrix must be positive definite."""
    evals, evecs = linalg.eigh(matrix)
    if evals[0] <= _PD_TOL:
        raise ValueError(
            f"{what} is not positive definite (smallest eigenvalue {evals[0]:.3e}); {hint}"
        )
    return (evecs / np.sqrt(evals)) @ evecs.T


def influence_matrix(matrix: NDArray[np.float64], kind: NetworkKind | str) -> NDArray[np.float64]:
    """
    Influence matrix Λ for one network.

    Args:
        matrix: Network matrix of the given kind.
        kind: How to read ``matrix``.

    Returns:
        Λ (p × p); ΛΛ' is the network-implied covariance of a unit
        perturbation (Ω⁻¹ for a precision matrix).

    Raises:
        ValueError: If a precision matrix or I - A is not positive definite,
            or a directed network is not acyclic.
    """
    kind = NetworkKind(kind)
    matrix = np.asarray(matrix, dtype=float)
    identity = np.eye(matrix.shape[0])

    if kind is NetworkKind.DIRECTED:
        if np.any(np.diag(matrix) != 0):
            raise ValueError("Directed network has self-loops")
        # (I - W') is invertible for any acyclic W: W is nilpotent
        lam = linalg.solve(identity - matrix.T, identity)
        if not np.all(np.isfinite(lam)):
            raise ValueError("Directed network is not acyclic; I - W' is singular")
        return lam

    if kind is NetworkKind.PRECISION:
        return _inverse_sqrt(matrix, "Precision matrix", "re-estimate with a larger eta")

    A = matrix.copy()
    np.fill_diagonal(A, 0.0)
    return _inverse_sqrt(
        identity - A, "I - A", "rescale the partial correlations or re-estimate with a larger eta"
    )


def propagation_matrix(matrix: NDArray[np.float64], kind: NetworkKind | str) -> NDArray[np.float64]:
    """M = ΛΛ', the network-implied covariance of the propagated signal."""
    lam = influence_matrix(matrix, kind)
    M = lam @ lam.T
    return (M + M.T) / 2.0
