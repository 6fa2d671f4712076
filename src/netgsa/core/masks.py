"""
Validation of prior-knowledge constraint masks.

Two binary genes × genes masks encode partial prior knowledge of a network:

- ``zero[i, j] = 1``: the edge i–j is known to be absent; the estimator
  holds the entry at exactly zero.
- ``one[i, j] = 1``: the edge i–j is known (or believed) to be present; the
  estimator penalizes it at ``lambda * weight`` instead of ``lambda``.

For undirected networks both masks must be symmetric and disjoint. The
diagonal carries no meaning and is ignored. Masks may be given as numpy
arrays (already aligned to the gene order) or as DataFrames indexed by gene
identifiers, which are then aligned to the analysis gene order.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from netgsa.core.errors import ConstraintConflictError, DimensionError

__all__ = ['ConstraintMasks', 'as_binary_mask', 'validate_masks']


def as_binary_mask(
    mask: np.ndarray | pd.DataFrame | None,
    n_genes: int,
    gene_ids: pd.Index | None = None,
    name: str = "mask",
) -> np.ndarray:
    """
    Convert a user-supplied mask to a boolean p × p array.

    Args:
        mask: Binary matrix, DataFrame labelled by genes, or None (empty)
        n_genes: Expected dimension p
        gene_ids: Analysis gene order, used to align labelled masks
        name: Mask name used in error messages

    Returns:
        Boolean array of shape (p, p)

    Raises:
        DimensionError: On shape mismatch or unknown gene labels
        ValueError: If entries are not 0/1
    """
    if mask is None:
        return np.zeros((n_genes, n_genes), dtype=bool)

    if isinstance(mask, pd.DataFrame):
        if gene_ids is not None:
            unknown = mask.index.difference(gene_ids).union(mask.columns.difference(gene_ids))
            if len(unknown) > 0:
                raise DimensionError(
                    f"{name} references {len(unknown)} genes not in the analysis, "
                    f"e.g. {list(unknown[:5])}"
                )
            mask = mask.reindex(index=gene_ids, columns=gene_ids, fill_value=0)
        values = mask.to_numpy()
    else:
        values = np.asarray(mask)

    if values.shape != (n_genes, n_genes):
        raise DimensionError(
            f"{name} has shape {values.shape}, expected ({n_genes}, {n_genes})"
        )

    values = values.astype(float)
    if not np.all(np.isin(values, (0.0, 1.0))):
        raise ValueError(f"{name} must be binary (0/1)")

    return values.astype(bool)


@dataclass(frozen=True)
class ConstraintMasks:
    """
    Validated pair of boolean constraint masks.

    Attributes:
        zero: Forbidden edges (p × p, symmetric, zero diagonal)
        one: Known edges (p × p, symmetric, zero diagonal)
    """

    zero: np.ndarray
    one: np.ndarray

    @property
    def n_genes(self) -> int:
        return self.zero.shape[0]

    @property
    def n_zero(self) -> int:
        """Number of forbidden undirected edges."""
        return int(np.triu(self.zero, k=1).sum())

    @property
    def n_one(self) -> int:
        """Number of known undirected edges."""
        return int(np.triu(self.one, k=1).sum())


def validate_masks(
    zero: np.ndarray | pd.DataFrame | None,
    one: np.ndarray | pd.DataFrame | None,
    n_genes: int,
    gene_ids: pd.Index | None = None,
) -> ConstraintMasks:
    """
    Validate and normalize undirected constraint masks.

    Args:
        zero: Forbidden-edge mask or None
        one: Known-edge mask or None
        n_genes: Number of genes p
        gene_ids: Gene order for aligning labelled masks

    Returns:
        ConstraintMasks with the diagonal cleared

    Raises:
        ConstraintConflictError: If either mask is asymmetric or the masks
            share an off-diagonal entry
        DimensionError: On shape mismatch
    """
    zero_b = as_binary_mask(zero, n_genes, gene_ids, name="zero")
    one_b = as_binary_mask(one, n_genes, gene_ids, name="one")

    for name, m in (("zero", zero_b), ("one", one_b)):
        asym = np.argwhere(m != m.T)
        if len(asym) > 0:
            i, j = asym[0]
            raise ConstraintConflictError(
                f"{name} mask is not symmetric: {len(asym) // 2} asymmetric pairs, "
                f"first at ({i}, {j})"
            )

    np.fill_diagonal(zero_b, False)
    np.fill_diagonal(one_b, False)

    overlap = np.argwhere(np.triu(zero_b & one_b, k=1))
    if len(overlap) > 0:
        i, j = overlap[0]
        raise ConstraintConflictError(
            f"zero and one masks overlap on {len(overlap)} edges, first at ({i}, {j})"
        )

    return ConstraintMasks(zero=zero_b, one=one_b)
