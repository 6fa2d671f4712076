"""
Per-condition network estimation.

Each condition's network is estimated from that condition's expression
slice only, with the shared (read-only) constraint masks. The conditions
are known up front, so results live in a fixed mapping keyed by condition
in sorted order; every slot is written exactly once.

Failure policy:
    - Bad configuration (masks, order, grid values) raises before any
      estimation starts.
    - A condition whose estimation fails numerically (``ConvergenceError``)
      is marked absent and its error message recorded; the other conditions
      are unaffected.
    - Non-fatal messages from every condition are collected on the result
      and emitted once, prefixed with the condition label.

Example:
    >>> from netgsa.network.conditions import estimate_condition_networks
    >>> nets = estimate_condition_networks(expr, lambdas=[0.05, 0.1, 0.2], zero=zero)
    >>> nets[1].df, nets.selections[1].lambda_
    >>> nets.absent
    []
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from enum import Enum
from typing import Hashable, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from netgsa.core.errors import ConvergenceError, DegenerateFitWarning
from netgsa.core.expression import ExpressionMatrix, as_expression_matrix, resolve_gene_order
from netgsa.core.masks import as_binary_mask, validate_masks
from netgsa.network.directed import (
    DirectedNetwork,
    RegressionPenalty,
    check_topological_order,
    estimate_directed_network,
)
from netgsa.network.selection import SelectionResult, select_undirected_network
from netgsa.network.undirected import UndirectedNetwork, _check_parameters

__all__ = ['EstimationMethod', 'ConditionNetworks', 'estimate_condition_networks']

logger = logging.getLogger(__name__)


class EstimationMethod(Enum):
    """Which network estimator to run for every condition."""

    UNDIRECTED = "undirected"
    DIRECTED = "directed"


class ConditionNetworks(Mapping):
    """
    Fixed mapping condition -> estimated network.

    Iteration follows the sorted condition order. A condition whose
    estimation failed maps to ``None``; its message is in ``errors``.

    Attributes:
        method: Estimator used
        selections: BIC grid results per condition (undirected only)
        errors: Failure message per absent condition
        warnings: Aggregated non-fatal messages
    """

    def __init__(
        self,
        conditions: Sequence[Hashable],
        method: EstimationMethod,
        gene_ids: pd.Index,
    ):
        self._order = tuple(conditions)
        self._networks: dict = dict.fromkeys(self._order)
        self._filled: set = set()
        self.method = method
        self.gene_ids = gene_ids
        self.selections: dict[Hashable, SelectionResult] = {}
        self.errors: dict[Hashable, str] = {}
        self.warnings: tuple[str, ...] = ()

    def _fill(
        self,
        condition: Hashable,
        network: UndirectedNetwork | DirectedNetwork | None,
        selection: SelectionResult | None = None,
        error: str | None = None,
    ) -> None:
        if condition not in self._networks:
            raise KeyError(f"Unknown condition {condition!r}; expected one of {list(self._order)}")
        if condition in self._filled:
            raise RuntimeError(f"Network slot for condition {condition!r} already written")
        self._filled.add(condition)
        self._networks[condition] = network
        if selection is not None:
            self.selections[condition] = selection
        if error is not None:
            self.errors[condition] = error

    def __getitem__(self, condition: Hashable):
        return self._networks[condition]

    def __iter__(self):
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    @property
    def conditions(self) -> tuple:
        return self._order

    @property
    def absent(self) -> list:
        """Conditions whose estimation failed."""
        return [c for c in self._order if self._networks[c] is None]

    @property
    def complete(self) -> bool:
        return not self.absent

    def bic_table(self) -> pd.DataFrame:
        """Concatenated BIC tables with a ``condition`` column."""
        frames = []
        for condition, selection in self.selections.items():
            frame = selection.to_dataframe()
            frame.insert(0, 'condition', condition)
            frames.append(frame)
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def __repr__(self) -> str:
        status = {c: ('absent' if self._networks[c] is None else type(self._networks[c]).__name__)
                  for c in self._order}
        return f"ConditionNetworks({self.method.value}, {status})"


def _estimate_condition(
    condition: Hashable,
    data: NDArray[np.float64],
    gene_ids: pd.Index,
    method: EstimationMethod,
    options: dict,
) -> tuple[Hashable, object, SelectionResult | None, str | None, list[tuple[type, str]]]:
    """Estimate one condition; numerical failures are returned, not raised."""
    notes: list[tuple[type, str]] = []
    selection = None
    try:
        with warnings.catch_warnings():
            # Re-emitted once by the caller with the condition label attached
            warnings.simplefilter("ignore", DegenerateFitWarning)
            if method is EstimationMethod.UNDIRECTED:
                selection = select_undirected_network(data, gene_ids=gene_ids, **options)
                network = selection.network
                notes.extend((DegenerateFitWarning, m) for m in network.warnings)
                failed = [r for r in selection.records if not r.succeeded]
                if failed:
                    notes.append((
                        UserWarning,
                        f"{len(failed)} of {len(selection.records)} grid points did not converge",
                    ))
            else:
                network = estimate_directed_network(data, gene_ids=gene_ids, **options)
    except ConvergenceError as e:
        logger.warning(f"Condition {condition!r}: estimation failed: {e}")
        return condition, None, None, str(e), notes
    return condition, network, selection, None, notes


def estimate_condition_networks(
    expression: ExpressionMatrix | pd.DataFrame | NDArray[np.float64],
    method: EstimationMethod | str = EstimationMethod.UNDIRECTED,
    lambdas: Sequence[float] | float | None = None,
    weights: Sequence[float] | None = None,
    zero: NDArray | pd.DataFrame | None = None,
    one: NDArray | pd.DataFrame | None = None,
    mask: NDArray | pd.DataFrame | None = None,
    order: Sequence | None = None,
    penalty: RegressionPenalty | str = RegressionPenalty.RIDGE,
    eta: float = 0.0,
    eps: float = 1e-8,
    tol: float = 1e-4,
    max_iter: int = 500,
    conditions: Sequence[Hashable] | pd.Series | None = None,
    n_jobs: int = 1,
) -> ConditionNetworks:
    """
    Estimate one network per condition.

    Args:
        expression: ExpressionMatrix, or genes × samples data plus ``conditions``.
        method: ``"undirected"`` (BIC-tuned constrained graphical lasso) or
            ``"directed"`` (parent regressions under ``order``).
        lambdas: Undirected: the lambda grid (a single value is a one-point
            grid). Directed: one regression penalty, default 0.01.
        weights: Known-edge weight grid (undirected).
        zero: Known non-edges (undirected).
        one: Known edges (undirected).
        mask: Allowed directed edges (directed, required).
        order: Topological order (directed).
        penalty: ``"ridge"`` or ``"lasso"`` (directed).
        eta: Constant added to the covariance diagonal (undirected).
        eps: Sparsification threshold (undirected).
        tol: Solver tolerance (undirected).
        max_iter: Solver sweep budget (undirected).
        conditions: Condition labels for raw expression input.
        n_jobs: Parallel workers across conditions (joblib convention).

    Returns:
        ConditionNetworks keyed by condition.

    Raises:
        ValueError, DimensionError, ConstraintConflictError, OrderingError:
            On invalid configuration, before any estimation runs.
    """
    from joblib import Parallel, delayed

    method = EstimationMethod(method)
    expr = as_expression_matrix(expression, conditions)
    p = expr.n_genes
    gene_ids = expr.gene_ids

    if method is EstimationMethod.UNDIRECTED:
        if mask is not None or order is not None:
            raise ValueError("mask and order apply to directed estimation only")
        if lambdas is None:
            raise ValueError("Undirected estimation needs a lambda grid")
        grid = [float(lambdas)] if np.isscalar(lambdas) else [float(v) for v in lambdas]
        if not grid:
            raise ValueError("lambdas must contain at least one value")
        for lam in grid:
            for w in (weights if weights is not None else [0.0]):
                _check_parameters(lam, float(w), eps)
        masks = validate_masks(zero, one, p, gene_ids)
        options = dict(
            lambdas=grid, weights=weights, zero=masks.zero, one=masks.one,
            eta=eta, eps=eps, tol=tol, max_iter=max_iter,
        )
    else:
        if zero is not None or one is not None or weights is not None:
            raise ValueError("zero, one and weights apply to undirected estimation only")
        if mask is None:
            raise ValueError("Directed estimation needs a mask of allowed edges")
        if lambdas is None:
            lambda_ = 0.01
        elif np.isscalar(lambdas):
            lambda_ = float(lambdas)
        else:
            values = list(lambdas)
            if len(values) != 1:
                raise ValueError(
                    f"Directed estimation takes a single lambda, got {len(values)} values"
                )
            lambda_ = float(values[0])
        mask_b = as_binary_mask(mask, p, gene_ids, name="directed mask")
        positions = np.arange(p) if order is None else resolve_gene_order(order, gene_ids)
        check_topological_order(mask_b, positions, gene_ids)
        options = dict(mask=mask_b, order=positions, lambda_=lambda_, penalty=RegressionPenalty(penalty))

    levels = expr.conditions_present
    logger.info(
        f"Estimating {method.value} networks for {len(levels)} conditions "
        f"({p} genes, sizes {expr.condition_sizes()})"
    )

    tasks = [(c, expr.condition_data(c)) for c in levels]
    if n_jobs == 1:
        outcomes = [_estimate_condition(c, X, gene_ids, method, options) for c, X in tasks]
    else:
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_estimate_condition)(c, X, gene_ids, method, options) for c, X in tasks
        )

    result = ConditionNetworks(levels, method, gene_ids)
    notes: list[tuple[type, str]] = []
    for condition, network, selection, error, messages in outcomes:
        result._fill(condition, network, selection=selection, error=error)
        notes.extend((category, f"Condition {condition!r}: {m}") for category, m in messages)
        if error is not None:
            notes.append((UserWarning, f"Condition {condition!r}: estimation failed and is absent: {error}"))

    for category, message in notes:
        warnings.warn(message, category, stacklevel=2)
    result.warnings = tuple(message for _, message in notes)

    if result.absent:
        logger.warning(f"No network for conditions {result.absent}")
    return result
