"""
Undirected partial-correlation network estimation under prior knowledge.

For one condition's expression slice this module estimates a sparse,
symmetric precision matrix Ω by ℓ1-penalized Gaussian likelihood:

    maximize log det(Ω) - tr(Σ̂ Ω) - λ Σ_{i≠j} c_ij |Ω_ij|

where c_ij = weight for known edges (``one`` mask), c_ij = 1 otherwise, and
Ω_ij is held at exactly zero for known non-edges (``zero`` mask). With
``weight = 0`` the known edges are unpenalized, i.e. treated as certain.

After convergence, entries smaller than ``eps`` in absolute value are set to
zero (known edges with zero effective penalty are exempt), and Ω is
symmetrized by averaging with its transpose.

An edgeless result is a legitimate outcome at large λ: it is reported with
a ``DegenerateFitWarning`` (emitted and stored on the result), not an error.

Example:
    >>> from netgsa.network.undirected import estimate_undirected_network
    >>> net = estimate_undirected_network(data, lambda_=0.2, zero=zero_mask)
    >>> net.df == net.adjacency.sum() // 2
    True
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from netgsa.core.errors import ConvergenceError, DegenerateFitWarning, DimensionError
from netgsa.core.masks import ConstraintMasks, validate_masks
from netgsa.network.covariance import empirical_covariance
from netgsa.network.glasso import constrained_graphical_lasso

__all__ = [
    'UndirectedNetwork',
    'estimate_undirected_network',
    'precision_to_partial_correlation',
    'count_edges',
]

logger = logging.getLogger(__name__)


def count_edges(matrix: NDArray[np.float64]) -> int:
    """Number of nonzero off-diagonal entries, each undirected edge counted once."""
    return int(np.count_nonzero(np.triu(matrix, k=1)))


def precision_to_partial_correlation(precision: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert a precision matrix to partial correlations.

    ρ_ij = -ω_ij / sqrt(ω_ii ω_jj), with a zero diagonal.

    Raises:
        ValueError: If a diagonal entry is not positive.
    """
    precision = np.asarray(precision, dtype=float)
    d = np.diag(precision)
    if np.any(d <= 0):
        raise ValueError("Precision matrix must have a positive diagonal")
    scale = 1.0 / np.sqrt(d)
    pcor = -precision * np.outer(scale, scale)
    np.fill_diagonal(pcor, 0.0)
    return pcor


@dataclass(frozen=True)
class UndirectedNetwork:
    """
    Estimated undirected network for one condition.

    Attributes:
        precision: Weighted precision matrix Ω (symmetric)
        adjacency: Binary edge indicator (symmetric, zero diagonal)
        covariance: Covariance Σ̂ the solver was given (eta included)
        lambda_: Regularization strength
        weight: Penalty multiplier for known edges
        n_samples: Number of samples used for Σ̂
        n_iter: Solver sweeps
        gene_ids: Gene order of every matrix
        warnings: Non-fatal messages (e.g., edgeless network)
    """

    precision: NDArray[np.float64]
    adjacency: NDArray[np.int_]
    covariance: NDArray[np.float64]
    lambda_: float
    weight: float
    n_samples: int
    n_iter: int
    gene_ids: pd.Index
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def df(self) -> int:
        """Number of edges (nonzero off-diagonal entries counted once)."""
        return count_edges(self.precision)

    @property
    def n_genes(self) -> int:
        return self.precision.shape[0]

    @property
    def is_degenerate(self) -> bool:
        """True when the network has no edges."""
        return self.df == 0

    @property
    def partial_correlation(self) -> NDArray[np.float64]:
        """Weighted adjacency in partial-correlation units."""
        return precision_to_partial_correlation(self.precision)

    @property
    def kind(self):
        from netgsa.stats.influence import NetworkKind
        return NetworkKind.PRECISION

    @property
    def matrix(self) -> NDArray[np.float64]:
        """Matrix consumed by the pathway test (the precision)."""
        return self.precision

    def to_dataframe(self, weighted: bool = True) -> pd.DataFrame:
        """Precision (or adjacency if ``weighted=False``) labelled by gene."""
        values = self.precision if weighted else self.adjacency
        return pd.DataFrame(values, index=self.gene_ids, columns=self.gene_ids)

    def edge_list(self) -> pd.DataFrame:
        """One row per edge with its precision entry and partial correlation."""
        rows, cols = np.nonzero(np.triu(self.adjacency, k=1))
        pcor = self.partial_correlation
        return pd.DataFrame({
            'gene_a': self.gene_ids[rows],
            'gene_b': self.gene_ids[cols],
            'precision': self.precision[rows, cols],
            'partial_correlation': pcor[rows, cols],
        })


def _penalty_matrix(masks: ConstraintMasks, lambda_: float, weight: float) -> NDArray[np.float64]:
    p = masks.n_genes
    penalty = np.full((p, p), float(lambda_))
    penalty[masks.one] = lambda_ * weight
    np.fill_diagonal(penalty, 0.0)
    return penalty


def _check_parameters(lambda_: float, weight: float, eps: float) -> None:
    if lambda_ < 0 or not np.isfinite(lambda_):
        raise ValueError(f"lambda must be a non-negative finite number, got {lambda_}")
    if weight < 0 or not np.isfinite(weight):
        raise ValueError(f"weight must be a non-negative finite number, got {weight}")
    if eps < 0:
        raise ValueError(f"eps must be non-negative, got {eps}")


def _gene_index(data: NDArray[np.float64], gene_ids) -> pd.Index:
    n_genes = data.shape[0]
    if gene_ids is None:
        return pd.RangeIndex(n_genes)
    gene_ids = pd.Index(gene_ids)
    if len(gene_ids) != n_genes:
        raise DimensionError(
            f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
        )
    return gene_ids


def fit_undirected(
    covariance: NDArray[np.float64],
    masks: ConstraintMasks,
    n_samples: int,
    gene_ids: pd.Index,
    lambda_: float,
    weight: float = 0.0,
    eps: float = 1e-8,
    tol: float = 1e-4,
    max_iter: int = 500,
) -> UndirectedNetwork:
    """
    Fit one network from a prepared covariance and validated masks.

    This is the shared kernel of ``estimate_undirected_network`` and the
    BIC grid search; it records but does not emit degenerate-fit warnings.

    Raises:
        ConvergenceError: If the solver does not converge. The error's
            ``parameters`` include ``lambda_`` and ``weight``.
    """
    _check_parameters(lambda_, weight, eps)
    penalty = _penalty_matrix(masks, lambda_, weight)

    try:
        solution = constrained_graphical_lasso(
            covariance, penalty, zero=masks.zero, tol=tol, max_iter=max_iter
        )
    except ConvergenceError as e:
        raise ConvergenceError(
            f"{e} [lambda={lambda_}, weight={weight}]",
            lambda_=lambda_,
            weight=weight,
            **e.parameters,
        ) from e

    precision = solution.precision.copy()

    # Unpenalized known edges are certain; keep them even if tiny
    certain = masks.one & (penalty == 0)
    small = (np.abs(precision) < eps) & ~certain
    np.fill_diagonal(small, False)
    precision[small] = 0.0
    precision[masks.zero] = 0.0
    precision = (precision + precision.T) / 2.0

    adjacency = (precision != 0).astype(int)
    np.fill_diagonal(adjacency, 0)

    notes: list[str] = []
    n_edges = count_edges(precision)
    if n_edges == 0:
        notes.append(
            f"Estimated network has no edges at lambda={lambda_}, weight={weight} "
            f"({len(gene_ids)} genes, {n_samples} samples)"
        )

    logger.debug(
        f"Undirected fit: lambda={lambda_}, weight={weight}, edges={n_edges}, "
        f"sweeps={solution.n_iter}"
    )

    return UndirectedNetwork(
        precision=precision,
        adjacency=adjacency,
        covariance=covariance,
        lambda_=float(lambda_),
        weight=float(weight),
        n_samples=n_samples,
        n_iter=solution.n_iter,
        gene_ids=gene_ids,
        warnings=tuple(notes),
    )


def estimate_undirected_network(
    data: NDArray[np.float64] | pd.DataFrame,
    lambda_: float,
    zero: NDArray | pd.DataFrame | None = None,
    one: NDArray | pd.DataFrame | None = None,
    weight: float = 0.0,
    eta: float = 0.0,
    eps: float = 1e-8,
    tol: float = 1e-4,
    max_iter: int = 500,
    gene_ids: pd.Index | None = None,
) -> UndirectedNetwork:
    """
    Estimate a sparse undirected network for one condition.

    Args:
        data: Expression slice (genes × samples). A DataFrame supplies
            ``gene_ids`` from its index.
        lambda_: ℓ1 penalty on off-diagonal entries (≥ 0).
        zero: Known non-edges, held at exactly zero.
        one: Known edges, penalized at ``lambda_ * weight``.
        weight: Penalty multiplier for known edges; 0 treats them as certain.
        eta: Constant added to the covariance diagonal.
        eps: Entries below this magnitude are set to zero.
        tol: Solver convergence tolerance.
        max_iter: Solver sweep budget.
        gene_ids: Gene identifiers (row order of ``data``).

    Returns:
        UndirectedNetwork with symmetric precision and adjacency matrices.

    Raises:
        ConstraintConflictError: If masks overlap or are asymmetric.
        DimensionError: On shape mismatches or fewer than 2 samples.
        ConvergenceError: If the solver does not converge.

    Warns:
        DegenerateFitWarning: If the network has no edges.
    """
    if isinstance(data, pd.DataFrame):
        gene_ids = data.index if gene_ids is None else gene_ids
        data = data.to_numpy(dtype=float)
    data = np.asarray(data, dtype=float)
    if data.ndim != 2:
        raise DimensionError(f"data must be 2D (genes × samples), got shape {data.shape}")

    gene_ids = _gene_index(data, gene_ids)
    _check_parameters(lambda_, weight, eps)
    masks = validate_masks(zero, one, data.shape[0], gene_ids)
    covariance = empirical_covariance(data, eta=eta)

    network = fit_undirected(
        covariance, masks, data.shape[1], gene_ids,
        lambda_=lambda_, weight=weight, eps=eps, tol=tol, max_iter=max_iter,
    )
    for message in network.warnings:
        warnings.warn(message, DegenerateFitWarning, stacklevel=2)
    return network
