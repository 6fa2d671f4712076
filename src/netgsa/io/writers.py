"""
Writers for estimated networks, BIC tables and pathway test results.

All outputs are plain CSV (readable from R, Excel or pandas) plus a JSON
run summary, written atomically so an interrupted run leaves either the
previous file or the complete new one.

Output layout of a per-condition estimation run:
    {dir}/network_{condition}.csv      weighted network (genes × genes)
    {dir}/edges_{condition}.csv        edge list of the same network
    {dir}/bic_table.csv                BIC per grid point and condition
    {dir}/summary.json                 parameters, selections, warnings
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from netgsa.network.conditions import ConditionNetworks
from netgsa.network.directed import DirectedNetwork
from netgsa.network.selection import SelectionResult
from netgsa.network.undirected import UndirectedNetwork
from netgsa.stats.enrichment import EnrichmentResult
from netgsa.utils.fileio import atomic_write_csv, atomic_write_json

__all__ = [
    'network_filename',
    'write_network_csv',
    'write_selection_table',
    'write_enrichment_results',
    'write_condition_networks',
]

logger = logging.getLogger(__name__)


def network_filename(condition) -> str:
    return f"network_{condition}.csv"


def write_network_csv(network: UndirectedNetwork | DirectedNetwork, path: str | Path) -> None:
    """
    Write the matrix the pathway test consumes (precision or directed weights).

    The first column and the header hold the gene ids, so the file loads
    back with ``load_network_csv``.
    """
    atomic_write_csv(path, network.to_dataframe())
    logger.debug(f"Wrote {type(network).__name__} ({len(network.gene_ids)} genes) to {path}")


def write_selection_table(selection: SelectionResult | pd.DataFrame, path: str | Path) -> None:
    """Write a BIC table (one row per grid point, ``selected`` flag)."""
    table = selection.to_dataframe() if isinstance(selection, SelectionResult) else selection
    atomic_write_csv(path, table, index=False)


def write_enrichment_results(result: EnrichmentResult, path: str | Path) -> None:
    """Write the pathway results table, smallest p-value first."""
    table = result.to_dataframe().sort_values('p_value', kind='mergesort')
    atomic_write_csv(path, table, index=False)
    logger.info(f"Wrote {len(table)} pathway results to {path}")


def write_condition_networks(
    networks: ConditionNetworks,
    output_dir: str | Path,
    parameters: dict | None = None,
) -> dict:
    """
    Write every present network, the BIC table and a JSON summary.

    Returns:
        The summary dictionary that was written.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    conditions = {}
    for condition in networks:
        network = networks[condition]
        entry: dict = {'present': network is not None}
        if network is None:
            entry['error'] = networks.errors.get(condition)
        else:
            write_network_csv(network, output_dir / network_filename(condition))
            atomic_write_csv(output_dir / f"edges_{condition}.csv", network.edge_list(), index=False)
            if isinstance(network, UndirectedNetwork):
                entry.update(edges=network.df, lambda_=network.lambda_, weight=network.weight)
            else:
                entry.update(edges=network.n_edges, lambda_=network.lambda_,
                             penalty=network.penalty.value)
        conditions[str(condition)] = entry

    table = networks.bic_table()
    if not table.empty:
        write_selection_table(table, output_dir / "bic_table.csv")

    summary = {
        'method': networks.method.value,
        'genes': len(networks.gene_ids),
        'conditions': conditions,
        'warnings': list(networks.warnings),
        'parameters': parameters or {},
    }
    atomic_write_json(output_dir / "summary.json", summary)
    logger.info(f"Wrote {len(networks) - len(networks.absent)} networks to {output_dir}")
    return summary
