"""
CSV loaders for the in-memory inputs of estimation and testing.

Every file is a labelled matrix with identifiers in the first column:

    - Expression: genes × samples, log-scale values, header = sample ids
    - Condition labels: one row per sample, a ``condition`` column (or the
      first data column)
    - Binary matrices: constraint masks (genes × genes), directed masks and
      pathway indicator matrices (pathways × genes)
    - Networks: weighted genes × genes matrices as written by
      ``netgsa.io.writers.write_network_csv``

Loaders only parse and validate already-formed matrices; building masks or
pathway matrices from databases and edge lists happens elsewhere.

Examples:
    >>> from netgsa.io.loaders import load_expression_matrix, load_binary_matrix
    >>> expr = load_expression_matrix("expr.csv", "labels.csv")
    >>> B = load_binary_matrix("pathways.csv")
"""

from __future__ import annotations

import logging
import warnings
from pathlib import Path

import numpy as np
import pandas as pd

from netgsa.core.errors import DimensionError
from netgsa.core.expression import ExpressionMatrix

__all__ = [
    'load_expression_csv',
    'load_condition_labels',
    'load_expression_matrix',
    'load_binary_matrix',
    'load_network_csv',
]

logger = logging.getLogger(__name__)


def _read_labelled_csv(path: str | Path, what: str) -> pd.DataFrame:
    """Read a CSV with identifiers in the first column; reject empty files."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    try:
        df = pd.read_csv(path, index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{what} file is empty: {path}") from e

    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"{what} file contains no data ({df.shape[0]} x {df.shape[1]}): {path}")
    # Identifiers are always strings so row and column labels compare equal
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return df


def _numeric(df: pd.DataFrame, what: str, path: str | Path) -> pd.DataFrame:
    converted = df.apply(pd.to_numeric, errors='coerce')
    bad = converted.isna() & df.notna()
    if bad.to_numpy().any():
        row, col = np.argwhere(bad.to_numpy())[0]
        raise ValueError(
            f"{what} file {path} has {int(bad.to_numpy().sum())} non-numeric entries, "
            f"first at ({df.index[row]!r}, {df.columns[col]!r}): {df.iat[row, col]!r}"
        )
    return converted.astype(float)


def load_expression_csv(path: str | Path) -> pd.DataFrame:
    """
    Load a genes × samples expression matrix.

    Duplicated gene ids keep their first occurrence (with a warning).

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file is empty, non-numeric or has missing values.
    """
    df = _numeric(_read_labelled_csv(path, "Expression"), "Expression", path)

    if df.index.duplicated().any():
        n_dup = int(df.index.duplicated().sum())
        warnings.warn(f"Found {n_dup} duplicate gene ids; using first occurrence of each", UserWarning)
        df = df[~df.index.duplicated(keep='first')]
    if df.columns.duplicated().any():
        raise DimensionError(f"Expression file {path} has duplicated sample ids")

    n_missing = int(df.isna().to_numpy().sum())
    if n_missing > 0:
        raise ValueError(
            f"Expression file {path} has {n_missing:,} missing values; "
            "impute or filter them before analysis"
        )

    logger.info(f"Loaded expression: {df.shape[0]} genes × {df.shape[1]} samples from {path}")
    return df


def load_condition_labels(path: str | Path, column: str = "condition") -> pd.Series:
    """
    Load condition labels indexed by sample id.

    Uses ``column`` when present, otherwise the first data column.
    """
    df = _read_labelled_csv(path, "Condition labels")
    labels = df[column] if column in df.columns else df.iloc[:, 0]
    if labels.isna().any():
        raise ValueError(f"{int(labels.isna().sum())} samples have no condition label in {path}")
    if labels.index.duplicated().any():
        raise DimensionError(f"Condition labels file {path} lists a sample more than once")
    return labels.rename("condition")


def load_expression_matrix(
    expression_path: str | Path,
    labels_path: str | Path,
    column: str = "condition",
) -> ExpressionMatrix:
    """Load expression and labels and align labels to the samples by id."""
    df = load_expression_csv(expression_path)
    labels = load_condition_labels(labels_path, column=column)
    return ExpressionMatrix.from_dataframe(df, labels)


def load_binary_matrix(path: str | Path, what: str = "Binary matrix") -> pd.DataFrame:
    """
    Load a labelled 0/1 matrix (constraint mask, directed mask or pathways).

    Raises:
        ValueError: If an entry is not 0 or 1.
    """
    df = _numeric(_read_labelled_csv(path, what), what, path)
    values = df.to_numpy()
    if not np.all(np.isin(values, (0.0, 1.0))):
        raise ValueError(f"{what} file {path} must contain only 0/1 entries")
    return df.astype(int)


def load_network_csv(path: str | Path) -> pd.DataFrame:
    """
    Load a weighted gene × gene network matrix.

    Raises:
        DimensionError: If the matrix is not square with matching labels.
    """
    df = _numeric(_read_labelled_csv(path, "Network"), "Network", path)
    if df.shape[0] != df.shape[1]:
        raise DimensionError(f"Network file {path} is not square: {df.shape}")
    if not df.index.equals(df.columns):
        raise DimensionError(f"Network file {path} has different row and column gene labels")
    if df.isna().to_numpy().any():
        raise ValueError(f"Network file {path} has missing values")
    return df
