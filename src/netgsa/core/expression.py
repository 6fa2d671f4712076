"""
Core data structure for expression data split by condition.

ExpressionMatrix couples a genes × samples log-expression array with the
gene ordering every downstream matrix must share (constraint masks,
networks, pathway indicators) and with the condition label of each sample.

Biological Context:
    - Rows = genes (unique identifiers, fixed order)
    - Columns = samples (unique identifiers)
    - Values = log-scale expression, already normalized by the caller
    - One condition label per sample (e.g., 1 = control, 2 = treated)

    Networks are estimated separately for each condition, and the pathway
    test compares conditions, so the label vector travels with the data.

Engineering Design:
    - Immutable: operations return new instances
    - Validated: constructor checks shapes, uniqueness and group sizes
    - Gene order is the single source of truth; ``reorder_genes`` is the
      only sanctioned way to change it

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from netgsa.core.expression import ExpressionMatrix
    >>>
    >>> data = np.random.default_rng(0).normal(size=(3, 4))
    >>> matrix = ExpressionMatrix(
    ...     data=data,
    ...     gene_ids=pd.Index(["G1", "G2", "G3"]),
    ...     sample_ids=pd.Index(["s1", "s2", "s3", "s4"]),
    ...     conditions=np.array([1, 1, 2, 2]),
    ... )
    >>> matrix.conditions_present
    [1, 2]
    >>> matrix.condition_data(2).shape
    (3, 2)
"""

from __future__ import annotations

from typing import Hashable, Sequence

import numpy as np
import pandas as pd

from netgsa.core.errors import DimensionError

__all__ = ['ExpressionMatrix', 'as_expression_matrix', 'resolve_gene_order', 'MIN_SAMPLES_PER_CONDITION']

MIN_SAMPLES_PER_CONDITION = 2


class ExpressionMatrix:
    """
    Immutable container for expression data + gene order + condition labels.

    Attributes:
        data: Expression matrix (genes × samples)
        gene_ids: Row identifiers, unique
        sample_ids: Column identifiers, unique
        conditions: Condition label per sample (length = n_samples)

    Shape Invariants:
        - data.shape[0] == len(gene_ids)
        - data.shape[1] == len(sample_ids) == len(conditions)
        - every condition has at least MIN_SAMPLES_PER_CONDITION samples
    """

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index,
        sample_ids: pd.Index,
        conditions: np.ndarray,
    ):
        """
        Initialize ExpressionMatrix with validation.

        Args:
            data: Expression matrix (genes × samples)
            gene_ids: Row identifiers
            sample_ids: Column identifiers
            conditions: Condition label for each sample

        Raises:
            DimensionError: If shapes are inconsistent, identifiers repeat,
                or a condition has fewer than 2 samples
            ValueError: If data contains NaN or infinite values
            TypeError: If data is not a numpy array
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if data.ndim != 2:
            raise DimensionError(f"data must be 2D, got shape {data.shape}")

        gene_ids = pd.Index(gene_ids)
        sample_ids = pd.Index(sample_ids)
        conditions = np.asarray(conditions)

        n_genes, n_samples = data.shape

        if len(gene_ids) != n_genes:
            raise DimensionError(
                f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
            )
        if len(sample_ids) != n_samples:
            raise DimensionError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if conditions.ndim != 1 or len(conditions) != n_samples:
            raise DimensionError(
                f"conditions length ({conditions.size}) must match data columns ({n_samples})"
            )
        if not gene_ids.is_unique:
            dupes = gene_ids[gene_ids.duplicated()].unique().tolist()
            raise DimensionError(f"gene_ids must be unique, duplicated: {dupes[:5]}")
        if not sample_ids.is_unique:
            dupes = sample_ids[sample_ids.duplicated()].unique().tolist()
            raise DimensionError(f"sample_ids must be unique, duplicated: {dupes[:5]}")
        if not np.all(np.isfinite(data)):
            raise ValueError(
                f"data contains {int(np.sum(~np.isfinite(data)))} non-finite values; "
                "impute or filter missing values before analysis"
            )

        counts = pd.Series(conditions).value_counts()
        small = counts[counts < MIN_SAMPLES_PER_CONDITION]
        if len(small) > 0:
            raise DimensionError(
                f"Each condition needs at least {MIN_SAMPLES_PER_CONDITION} samples, "
                f"got {small.to_dict()}"
            )

        self._data = data.astype(float, copy=False)
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids
        self._conditions = conditions

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        conditions: Sequence[Hashable] | pd.Series | np.ndarray,
    ) -> ExpressionMatrix:
        """
        Build from a genes × samples DataFrame.

        If ``conditions`` is a Series it is aligned to ``df.columns`` by
        sample id; otherwise it is taken positionally.
        """
        if isinstance(conditions, pd.Series):
            missing = df.columns.difference(conditions.index)
            if len(missing) > 0:
                raise DimensionError(
                    f"{len(missing)} samples have no condition label, e.g. {list(missing[:5])}"
                )
            conditions = conditions.reindex(df.columns).values
        return cls(
            data=df.to_numpy(dtype=float),
            gene_ids=df.index,
            sample_ids=df.columns,
            conditions=np.asarray(conditions),
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (genes × samples)."""
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        """Row identifiers in analysis order."""
        return self._gene_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def conditions(self) -> np.ndarray:
        """Condition label for each sample."""
        return self._conditions

    @property
    def conditions_present(self) -> list:
        """Sorted unique condition labels."""
        return sorted(pd.unique(self._conditions).tolist())

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._data.shape

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def condition_mask(self, condition: Hashable) -> np.ndarray:
        """Boolean sample mask for one condition."""
        mask = self._conditions == condition
        if not mask.any():
            raise KeyError(
                f"Unknown condition {condition!r}; present: {self.conditions_present}"
            )
        return mask

    def condition_data(self, condition: Hashable) -> np.ndarray:
        """Genes × samples slice for one condition."""
        return self._data[:, self.condition_mask(condition)]

    def condition_sizes(self) -> dict:
        """Number of samples per condition, in sorted condition order."""
        return {c: int(np.sum(self._conditions == c)) for c in self.conditions_present}

    def reorder_genes(self, order: Sequence[int] | Sequence[Hashable]) -> ExpressionMatrix:
        """
        Return a copy with rows permuted.

        Args:
            order: Either integer positions or gene identifiers; must be a
                permutation of all genes.

        Raises:
            DimensionError: If ``order`` is not a permutation of the genes
        """
        positions = resolve_gene_order(order, self._gene_ids)
        return ExpressionMatrix(
            data=self._data[positions, :],
            gene_ids=self._gene_ids[positions],
            sample_ids=self._sample_ids,
            conditions=self._conditions,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Genes × samples DataFrame (labels not included)."""
        return pd.DataFrame(self._data, index=self._gene_ids, columns=self._sample_ids)

    def __repr__(self) -> str:
        return (
            f"ExpressionMatrix({self.n_genes} genes × {self.n_samples} samples)\n"
            f"  Genes: {self.gene_ids[0]}...{self.gene_ids[-1]}\n"
            f"  Conditions: {self.condition_sizes()}"
        )


def resolve_gene_order(order: Sequence, gene_ids: pd.Index) -> np.ndarray:
    """
    Convert a gene order (positions or identifiers) into integer positions.

    Raises:
        DimensionError: If ``order`` is not a permutation of ``gene_ids``
    """
    order = list(order)
    p = len(gene_ids)
    if len(order) != p:
        raise DimensionError(f"order has {len(order)} entries, expected {p}")

    if all(isinstance(o, (int, np.integer)) for o in order):
        positions = np.asarray(order, dtype=int)
    else:
        positions = gene_ids.get_indexer(order)
        if (positions < 0).any():
            unknown = [o for o, i in zip(order, positions) if i < 0]
            raise DimensionError(f"order names unknown genes: {unknown[:5]}")

    if sorted(positions.tolist()) != list(range(p)):
        raise DimensionError("order must be a permutation of all genes")
    return positions


def as_expression_matrix(
    expression,
    conditions: Sequence[Hashable] | pd.Series | None = None,
    gene_ids: Sequence[Hashable] | None = None,
) -> ExpressionMatrix:
    """
    Accept an ExpressionMatrix, or a genes × samples DataFrame / array plus labels.

    Raises:
        ValueError: If labels are missing for raw input, or given twice.
        DimensionError: On shape mismatches.
    """
    if isinstance(expression, ExpressionMatrix):
        if conditions is not None:
            raise ValueError("conditions are taken from the ExpressionMatrix; do not pass them separately")
        return expression
    if conditions is None:
        raise ValueError("conditions are required unless expression is an ExpressionMatrix")
    if isinstance(expression, pd.DataFrame):
        return ExpressionMatrix.from_dataframe(expression, conditions)

    data = np.asarray(expression, dtype=float)
    if data.ndim != 2:
        raise DimensionError(f"expression must be 2D (genes × samples), got shape {data.shape}")
    return ExpressionMatrix(
        data=data,
        gene_ids=pd.RangeIndex(data.shape[0]) if gene_ids is None else gene_ids,
        sample_ids=pd.RangeIndex(data.shape[1]),
        conditions=np.asarray(conditions),
    )
