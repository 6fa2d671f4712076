"""
Atomic output writes for estimation and test results.

Each writer serializes into a temporary file next to the destination and
moves it into place with ``os.replace()``, so an interrupted run never
leaves a half-written network or results table behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import numpy as np
import pandas as pd


@contextmanager
def _atomic_handle(path: str | os.PathLike) -> Iterator[TextIO]:
    path = os.fspath(path)
    dir_path = os.path.dirname(path) or "."
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=dir_path, suffix=".tmp", delete=False, newline=""
        ) as tmp:
            tmp_path = tmp.name
            yield tmp
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _json_default(obj: Any) -> Any:
    """Convert numpy scalars/arrays that json cannot encode."""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically; numpy values are converted."""
    with _atomic_handle(path) as handle:
        json.dump(data, handle, indent=indent, default=_json_default)


def atomic_write_csv(path: str | os.PathLike, frame: pd.DataFrame, *, index: bool = True) -> None:
    """Write a DataFrame as CSV atomically."""
    with _atomic_handle(path) as handle:
        frame.to_csv(handle, index=index)
