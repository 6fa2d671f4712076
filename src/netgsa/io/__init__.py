"""
Reading inputs and writing results as CSV / JSON.

Key Functions:
    - load_expression_matrix: expression CSV + labels CSV -> ExpressionMatrix
    - load_binary_matrix: masks and pathway indicator matrices
    - load_network_csv: networks written by a previous estimation run
    - write_condition_networks: per-condition networks, BIC table, summary
    - write_enrichment_results: pathway results table
"""

from netgsa.io.loaders import (
    load_expression_csv,
    load_condition_labels,
    load_expression_matrix,
    load_binary_matrix,
    load_network_csv,
)
from netgsa.io.writers import (
    network_filename,
    write_network_csv,
    write_selection_table,
    write_enrichment_results,
    write_condition_networks,
)

__all__ = [
    'load_expression_csv',
    'load_condition_labels',
    'load_expression_matrix',
    'load_binary_matrix',
    'load_network_csv',
    'network_filename',
    'write_network_csv',
    'write_selection_table',
    'write_enrichment_results',
    'write_condition_networks',
]
