"""
netgsa test command - Network-based pathway enrichment test.

Usage:
    netgsa test --input expr.csv --labels labels.csv --pathways pathways.csv \\
        --networks results/networks --output results/pathways.csv

The network directory is the output of ``netgsa estimate`` (one
network_{condition}.csv per condition). The network kind is taken from that
run's summary.json; pass --kind for networks produced elsewhere.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from netgsa.cli._validators import _positive_float, _probability

logger = logging.getLogger(__name__)

_SUMMARY_KIND = {"undirected": "precision", "directed": "directed"}


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the test subcommand."""
    parser = subparsers.add_parser(
        "test",
        help="Test pathways for differential network-adjusted activity",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")
    parser.add_argument("--input", "-i", type=Path, required=False,
                        help="Expression CSV (genes × samples, log scale)")
    parser.add_argument("--labels", "-l", type=Path, required=False,
                        help="Condition labels CSV (sample id, condition)")
    parser.add_argument("--pathways", "-p", type=Path, required=False,
                        help="Pathway indicator CSV (pathways × genes, 0/1)")
    parser.add_argument("--networks", "-n", type=Path, required=False,
                        help="Directory with network_{condition}.csv files")
    parser.add_argument("--output", "-o", type=Path, required=False,
                        help="Results CSV")

    parser.add_argument("--kind", choices=["precision", "partial_correlation", "directed"],
                        default=None,
                        help="How to read the network matrices (default: from the estimate run's summary.json)")
    parser.add_argument("--method", choices=["rehe", "reml"], default="rehe",
                        help="Variance-component estimator: rehe (fast) or reml (full likelihood)")
    parser.add_argument("--tolerance", type=_positive_float, default=5.0,
                        help="Standard errors a REHE variance component may fall below zero (default: 5)")
    parser.add_argument("--alpha", type=_probability, default=0.05,
                        help="FDR level for the significance summary (default: 0.05)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    parser.set_defaults(func=run_test)


def _network_kind(network_dir: Path, declared: str | None) -> str | None:
    if declared is not None:
        return declared
    summary_path = network_dir / "summary.json"
    if not summary_path.exists():
        return None
    with open(summary_path) as f:
        method = json.load(f).get('method')
    return _SUMMARY_KIND.get(method)


def run_test(args: argparse.Namespace) -> int:
    """Execute the test command."""
    from netgsa.core.errors import NetGSAError
    from netgsa.io.loaders import load_binary_matrix, load_expression_matrix, load_network_csv
    from netgsa.io.writers import network_filename, write_enrichment_results
    from netgsa.stats.enrichment import test_pathways

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.config:
        from netgsa.cli.config import load_config, merge_config_with_args, validate_config

        print(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            args = merge_config_with_args(config, args, getattr(args, "argv", sys.argv[1:]))
        except (FileNotFoundError, ValueError) as e:
            print(f"ERROR: Config file error: {e}")
            return 1

    for name in ("input", "labels", "pathways", "networks", "output"):
        if getattr(args, name) is None:
            print(f"ERROR: --{name} is required (via CLI or config file)")
            return 1

    kind = _network_kind(args.networks, args.kind)
    if kind is None:
        print("ERROR: --kind is required when the network directory has no summary.json")
        return 1

    start_time = datetime.now()
    print(f"\n{'=' * 70}")
    print(f"  Pathway test (variance method: {args.method})")
    print(f"{'=' * 70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    try:
        expr = load_expression_matrix(args.input, args.labels)
        pathways = load_binary_matrix(args.pathways, "Pathway matrix")
        networks = {
            condition: load_network_csv(args.networks / network_filename(condition))
            for condition in expr.conditions_present
        }
        print(f"Loaded {expr.n_genes} genes, {pathways.shape[0]} pathways, "
              f"{len(networks)} {kind} networks")

        result = test_pathways(expr, networks, pathways, method=args.method, kind=kind,
                               tolerance=args.tolerance)
    except (NetGSAError, ValueError, FileNotFoundError) as e:
        logger.error(f"Pathway test failed: {e}")
        print(f"ERROR: {e}")
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    write_enrichment_results(result, args.output)

    significant = result.significant(args.alpha)
    print(f"\n{len(result)} pathways tested, {len(result.skipped)} skipped, "
          f"{len(significant)} with q < {args.alpha}")
    for _, row in significant.head(10).iterrows():
        direction = f" ({row['direction']})" if row['direction'] else ""
        print(f"  {row['pathway_id']}: p={row['p_value']:.3g}, q={row['q_value']:.3g}{direction}")
    for message in result.warnings:
        print(f"  WARNING: {message}")

    elapsed = datetime.now() - start_time
    print(f"\nResults written to {args.output} in {elapsed.total_seconds():.1f}s")
    return 0
