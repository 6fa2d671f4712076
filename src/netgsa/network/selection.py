"""
Tuning-parameter selection for undirected networks by BIC grid search.

Every (lambda, weight) grid point is fitted with the constrained graphical
lasso and scored with

    BIC = tr(Σ̂ Ω̂) - log det(Ω̂) + (log n / n) · df

where df is the number of edges. The grid point with the smallest BIC is
selected; ties go to the larger lambda (the sparser model), then to the
larger weight.

Execution model:
    Grid points are independent and may run in parallel (joblib). The
    selection is made only after all requested points have finished, so the
    result never depends on completion order. A point whose solver fails to
    converge is recorded with ``bic = nan`` and its error message, and is
    excluded from selection; sibling points are unaffected. The whole call
    fails only if no grid point converges.

Example:
    >>> from netgsa.network.selection import select_undirected_network
    >>> result = select_undirected_network(data, lambdas=[0.05, 0.1, 0.2, 0.4])
    >>> result.lambda_, result.network.df
    >>> result.to_dataframe()
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from netgsa.core.errors import ConvergenceError, DegenerateFitWarning, DimensionError
from netgsa.core.masks import ConstraintMasks, validate_masks
from netgsa.network.covariance import empirical_covariance
from netgsa.network.undirected import (
    UndirectedNetwork,
    _check_parameters,
    _gene_index,
    count_edges,
    fit_undirected,
)

__all__ = ['BICRecord', 'SelectionResult', 'bic_score', 'select_undirected_network']

logger = logging.getLogger(__name__)

_TIE_RTOL = 1e-12


def bic_score(
    covariance: NDArray[np.float64],
    precision: NDArray[np.float64],
    n_samples: int,
    df: int | None = None,
) -> float:
    """
    BIC-style criterion for an estimated precision matrix.

    Args:
        covariance: Covariance Σ̂ used for the fit.
        precision: Estimated Ω̂.
        n_samples: Sample count n.
        df: Edge count; computed from ``precision`` when omitted.

    Returns:
        tr(Σ̂Ω̂) - log det(Ω̂) + (log n / n) · df, or ``inf`` when Ω̂ is not
        positive definite.
    """
    if df is None:
        df = count_edges(precision)
    sign, logdet = np.linalg.slogdet(precision)
    if sign <= 0 or not np.isfinite(logdet):
        return float(np.inf)
    trace = float(np.sum(covariance * precision.T))
    return trace - logdet + (np.log(n_samples) / n_samples) * df


@dataclass(frozen=True)
class BICRecord:
    """
    Score of one grid point.

    Attributes:
        lambda_: Regularization strength
        weight: Known-edge penalty multiplier (None when no weight grid)
        bic: Criterion value; nan if the fit failed
        df: Edge count; None if the fit failed
        degenerate: True if the network had no edges
        error: Failure message when the solver did not converge
    """

    lambda_: float
    weight: float | None
    bic: float
    df: int | None
    degenerate: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            'lambda': self.lambda_,
            'weight': self.weight,
            'bic': self.bic,
            'df': self.df,
            'degenerate': self.degenerate,
            'error': self.error,
        }


@dataclass(frozen=True)
class SelectionResult:
    """
    Outcome of a BIC grid search.

    Attributes:
        records: One BICRecord per grid point, in grid order
        network: Network fitted at the selected point
        lambda_: Selected lambda
        weight: Selected weight (None when no weight grid)
        warnings: Aggregate non-fatal messages
        networks: All fitted networks keyed by (lambda, weight), only when
            requested with ``keep_networks=True``
    """

    records: tuple[BICRecord, ...]
    network: UndirectedNetwork
    lambda_: float
    weight: float | None
    warnings: tuple[str, ...] = field(default_factory=tuple)
    networks: dict = field(default_factory=dict)

    @property
    def best_record(self) -> BICRecord:
        for record in self.records:
            if record.lambda_ == self.lambda_ and record.weight == self.weight:
                return record
        raise LookupError("Selected grid point missing from records")

    @property
    def has_weight_grid(self) -> bool:
        return self.weight is not None

    def to_dataframe(self) -> pd.DataFrame:
        """BIC table, one row per grid point, with a ``selected`` flag."""
        df = pd.DataFrame([r.to_dict() for r in self.records])
        df['selected'] = (df['lambda'] == self.lambda_) & (
            df['weight'].isna() if self.weight is None else df['weight'] == self.weight
        )
        if not self.has_weight_grid:
            df = df.drop(columns=['weight'])
        return df

    def bic_grid(self) -> pd.Series | pd.DataFrame:
        """BIC as a Series over lambda, or a lambda × weight DataFrame."""
        df = pd.DataFrame([r.to_dict() for r in self.records])
        if not self.has_weight_grid:
            return df.set_index('lambda')['bic']
        return df.pivot(index='lambda', columns='weight', values='bic')


def _evaluate_point(
    covariance: NDArray[np.float64],
    masks: ConstraintMasks,
    n_samples: int,
    gene_ids: pd.Index,
    lambda_: float,
    weight: float | None,
    eps: float,
    tol: float,
    max_iter: int,
) -> tuple[BICRecord, UndirectedNetwork | None]:
    """Fit and score one grid point; convergence failures become records."""
    try:
        network = fit_undirected(
            covariance, masks, n_samples, gene_ids,
            lambda_=lambda_, weight=0.0 if weight is None else weight,
            eps=eps, tol=tol, max_iter=max_iter,
        )
    except ConvergenceError as e:
        return BICRecord(lambda_=lambda_, weight=weight, bic=float('nan'), df=None, error=str(e)), None

    df = network.df
    bic = bic_score(covariance, network.precision, n_samples, df)
    record = BICRecord(lambda_=lambda_, weight=weight, bic=bic, df=df, degenerate=df == 0)
    return record, network


def _select(records: Sequence[BICRecord]) -> int:
    """Index of the minimum-BIC record; ties favour larger lambda then weight."""
    candidates = [i for i, r in enumerate(records) if r.succeeded]
    best_bic = min(records[i].bic for i in candidates)
    if np.isfinite(best_bic):
        tol = _TIE_RTOL * max(1.0, abs(best_bic))
        tied = [i for i in candidates if records[i].bic <= best_bic + tol]
    else:
        tied = candidates
    return max(
        tied,
        key=lambda i: (records[i].lambda_, records[i].weight if records[i].weight is not None else 0.0),
    )


def select_undirected_network(
    data: NDArray[np.float64] | pd.DataFrame,
    lambdas: Sequence[float],
    weights: Sequence[float] | None = None,
    zero: NDArray | pd.DataFrame | None = None,
    one: NDArray | pd.DataFrame | None = None,
    eta: float = 0.0,
    eps: float = 1e-8,
    tol: float = 1e-4,
    max_iter: int = 500,
    gene_ids: pd.Index | None = None,
    n_jobs: int = 1,
    keep_networks: bool = False,
) -> SelectionResult:
    """
    Select lambda (and optionally the known-edge weight) by BIC.

    Args:
        data: Expression slice (genes × samples).
        lambdas: Non-empty sequence of non-negative lambda candidates.
        weights: Optional non-negative weight candidates, crossed with lambdas.
        zero: Known non-edges.
        one: Known edges.
        eta: Constant added to the covariance diagonal.
        eps: Sparsification threshold.
        tol: Solver convergence tolerance.
        max_iter: Solver sweep budget per grid point.
        gene_ids: Gene identifiers.
        n_jobs: Parallel workers for grid points (joblib convention).
        keep_networks: Keep every fitted network on the result.

    Returns:
        SelectionResult with the BIC table and the selected network.

    Raises:
        ValueError: If the grid is empty or contains invalid values.
        ConstraintConflictError, DimensionError: On invalid inputs.
        ConvergenceError: If no grid point converges.

    Warns:
        DegenerateFitWarning: If every converged grid point is edgeless.
    """
    from joblib import Parallel, delayed

    lambdas = [float(v) for v in lambdas]
    if len(lambdas) == 0:
        raise ValueError("lambdas must contain at least one value")
    weight_grid: list[float | None] = [None] if weights is None else [float(w) for w in weights]
    if len(weight_grid) == 0:
        raise ValueError("weights must contain at least one value when given")
    for lam in lambdas:
        for w in weight_grid:
            _check_parameters(lam, 0.0 if w is None else w, eps)

    if isinstance(data, pd.DataFrame):
        gene_ids = data.index if gene_ids is None else gene_ids
        data = data.to_numpy(dtype=float)
    data = np.asarray(data, dtype=float)
    if data.ndim != 2:
        raise DimensionError(f"data must be 2D (genes × samples), got shape {data.shape}")
    gene_ids = _gene_index(data, gene_ids)

    masks = validate_masks(zero, one, data.shape[0], gene_ids)
    covariance = empirical_covariance(data, eta=eta)
    n_samples = data.shape[1]

    grid = [(lam, w) for lam in lambdas for w in weight_grid]
    logger.info(
        f"BIC grid search: {len(grid)} points ({len(lambdas)} lambda x {len(weight_grid)} weight), "
        f"{data.shape[0]} genes, {n_samples} samples"
    )

    if n_jobs == 1:
        outcomes = [
            _evaluate_point(covariance, masks, n_samples, gene_ids, lam, w, eps, tol, max_iter)
            for lam, w in grid
        ]
    else:
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_evaluate_point)(covariance, masks, n_samples, gene_ids, lam, w, eps, tol, max_iter)
            for lam, w in grid
        )

    records = tuple(record for record, _ in outcomes)
    failed = [r for r in records if not r.succeeded]
    if len(failed) == len(records):
        raise ConvergenceError(
            f"No grid point converged ({len(records)} attempted); "
            f"first failure: {failed[0].error}",
            lambdas=lambdas,
            weights=weights,
        )
    for r in failed:
        logger.warning(f"Grid point lambda={r.lambda_}, weight={r.weight} failed: {r.error}")

    best = _select(records)
    best_record = records[best]
    network = outcomes[best][1]

    notes: list[str] = []
    succeeded = [r for r in records if r.succeeded]
    if all(r.degenerate for r in succeeded):
        message = (
            f"All {len(succeeded)} converged grid points produced edgeless networks "
            f"(lambda range {min(lambdas)}-{max(lambdas)}); consider smaller lambda values"
        )
        notes.append(message)
        warnings.warn(message, DegenerateFitWarning, stacklevel=2)
    if failed:
        notes.append(f"{len(failed)} of {len(records)} grid points did not converge")

    logger.info(
        f"Selected lambda={best_record.lambda_}, weight={best_record.weight}, "
        f"BIC={best_record.bic:.4f}, edges={best_record.df}"
    )

    kept = {}
    if keep_networks:
        kept = {
            (record.lambda_, record.weight): net
            for record, net in outcomes if net is not None
        }

    return SelectionResult(
        records=records,
        network=network,
        lambda_=best_record.lambda_,
        weight=best_record.weight,
        warnings=tuple(notes),
        networks=kept,
    )
