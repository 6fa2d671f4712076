"""
Empirical covariance for one condition's expression slice.

Each gene is centred across samples and the unbiased covariance is formed.
A non-negative ``eta`` is added to the diagonal, which keeps the matrix
positive definite when there are fewer samples than genes or when genes are
collinear. That matters for the graphical lasso, whose coordinate descent
divides by diagonal entries of the working covariance.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from netgsa.core.errors import DimensionError

__all__ = ['empirical_covariance']


def empirical_covariance(data: NDArray[np.float64], eta: float = 0.0) -> NDArray[np.float64]:
    """
    Compute the p × p covariance of a genes × samples matrix.

    Args:
        data: Expression slice (n_genes, n_samples).
        eta: Constant added to every diagonal entry.

    Returns:
        Covariance matrix S + eta * I (symmetric).

    Raises:
        DimensionError: If data is not 2D or has fewer than 2 samples.
        ValueError: If eta is negative or data contains non-finite values.
    """
    data = np.asarray(data, dtype=float)
    if data.ndim != 2:
        raise DimensionError(f"data must be 2D (genes × samples), got shape {data.shape}")

    n_genes, n_samples = data.shape
    if n_samples < 2:
        raise DimensionError(
            f"Covariance needs at least 2 samples, got {n_samples} "
            f"(data shape {data.shape})"
        )
    if eta < 0:
        raise ValueError(f"eta must be non-negative, got {eta}")
    if not np.all(np.isfinite(data)):
        raise ValueError("data contains non-finite values")

    centered = data - data.mean(axis=1, keepdims=True)
    cov = centered @ centered.T / (n_samples - 1)
    # Exact symmetry; the matmul can differ in the last bit
    cov = (cov + cov.T) / 2.0

    if eta > 0:
        cov[np.diag_indices(n_genes)] += eta

    return cov
