"""Utility modules."""

from netgsa.utils.fileio import (
    atomic_write_csv,
    atomic_write_json,
)

__all__ = [
    'atomic_write_csv',
    'atomic_write_json',
]
