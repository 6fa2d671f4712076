"""
netgsa estimate command - Per-condition network estimation.

Usage:
    netgsa estimate --input expr.csv --labels labels.csv --output results/networks \\
        --lambdas 0.05 0.1 0.2 0.4 --zero zero.csv --one one.csv

    netgsa estimate --input expr.csv --labels labels.csv --output results/dag \\
        --method directed --directed-mask mask.csv --order order.csv --lambdas 0.01

Outputs (in --output):
    network_{condition}.csv   precision matrix (undirected) or edge weights (directed)
    edges_{condition}.csv     edge list
    bic_table.csv             BIC per grid point and condition (undirected)
    summary.json              parameters, selected lambdas, warnings
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

import pandas as pd

from netgsa.cli._validators import _n_jobs, _non_negative_float, _positive_float, _positive_int

logger = logging.getLogger(__name__)

DEFAULT_LAMBDAS = [0.05, 0.1, 0.2, 0.4]


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the estimate subcommand."""
    parser = subparsers.add_parser(
        "estimate",
        help="Estimate one network per condition",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")
    parser.add_argument("--input", "-i", type=Path, required=False,
                        help="Expression CSV (genes × samples, log scale)")
    parser.add_argument("--labels", "-l", type=Path, required=False,
                        help="Condition labels CSV (sample id, condition)")
    parser.add_argument("--output", "-o", type=Path, required=False,
                        help="Output directory")

    parser.add_argument("--method", dest="network_method", choices=["undirected", "directed"],
                        default="undirected", help="Network estimator (default: undirected)")
    parser.add_argument("--lambdas", nargs="+", type=_non_negative_float, default=None,
                        help="Undirected: lambda grid selected by BIC (default: 0.05 0.1 0.2 0.4). "
                             "Directed: a single ridge/lasso penalty (default: 0.01)")
    parser.add_argument("--weights", nargs="+", type=_non_negative_float, default=None,
                        help="Known-edge penalty multipliers, crossed with --lambdas (default: 0, i.e. certain)")
    parser.add_argument("--zero", type=Path, default=None,
                        help="Known non-edges: binary genes × genes CSV")
    parser.add_argument("--one", type=Path, default=None,
                        help="Known edges: binary genes × genes CSV")
    parser.add_argument("--directed-mask", type=Path, default=None,
                        help="Allowed directed edges (row -> column): binary genes × genes CSV")
    parser.add_argument("--order", type=Path, default=None,
                        help="Topological gene order: one gene id per line "
                             "(default: expression row order)")
    parser.add_argument("--penalty", choices=["ridge", "lasso"], default="ridge",
                        help="Directed regression penalty (default: ridge)")

    parser.add_argument("--eta", type=_non_negative_float, default=0.0,
                        help="Constant added to the covariance diagonal (default: 0)")
    parser.add_argument("--eps", type=_non_negative_float, default=1e-8,
                        help="Precision entries below this magnitude are zeroed (default: 1e-8)")
    parser.add_argument("--tol", type=_positive_float, default=1e-4,
                        help="Graphical lasso convergence tolerance (default: 1e-4)")
    parser.add_argument("--max-iter", type=_positive_int, default=500,
                        help="Graphical lasso sweep budget (default: 500)")
    parser.add_argument("--n-jobs", type=_n_jobs, default=1,
                        help="Parallel workers across conditions (-1 = all cores)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    parser.set_defaults(func=run_estimate)


def _read_order(path: Path) -> list[str]:
    order = pd.read_csv(path, header=None, dtype=str).iloc[:, 0]
    return order.str.strip().tolist()


def run_estimate(args: argparse.Namespace) -> int:
    """Execute the estimate command."""
    from netgsa.core.errors import NetGSAError
    from netgsa.io.loaders import load_binary_matrix, load_expression_matrix
    from netgsa.io.writers import write_condition_networks
    from netgsa.network.conditions import estimate_condition_networks

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

    for name in ("input", "labels", "output"):
        if getattr(args, name) is None:
            print(f"ERROR: --{name} is required (via CLI or config file)")
            return 1

    directed = args.network_method == "directed"
    lambdas = args.lambdas
    if lambdas is None:
        lambdas = None if directed else DEFAULT_LAMBDAS

    start_time = datetime.now()
    print(f"\n{'=' * 70}")
    print(f"  Network estimation ({args.network_method})")
    print(f"{'=' * 70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    try:
        expr = load_expression_matrix(args.input, args.labels)
        print(f"Loaded {expr.n_genes} genes × {expr.n_samples} samples, "
              f"conditions {expr.condition_sizes()}")

        options = dict(
            method=args.network_method,
            lambdas=lambdas,
            n_jobs=args.n_jobs,
        )
        if directed:
            if args.directed_mask is None:
                print("ERROR: --directed-mask is required with --method directed")
                return 1
            options.update(
                mask=load_binary_matrix(args.directed_mask, "Directed mask"),
                order=_read_order(args.order) if args.order else None,
                penalty=args.penalty,
            )
        else:
            options.update(
                weights=args.weights,
                zero=load_binary_matrix(args.zero, "Zero mask") if args.zero else None,
                one=load_binary_matrix(args.one, "One mask") if args.one else None,
                eta=args.eta,
                eps=args.eps,
                tol=args.tol,
                max_iter=args.max_iter,
            )

        networks = estimate_condition_networks(expr, **options)
    except (NetGSAError, ValueError, FileNotFoundError) as e:
        logger.error(f"Estimation failed: {e}")
        print(f"ERROR: {e}")
        return 1

    parameters = {
        'input': str(args.input),
        'labels': str(args.labels),
        'lambdas': lambdas,
        'weights': args.weights,
        'eta': args.eta,
        'eps': args.eps,
        'tol': args.tol,
        'max_iter': args.max_iter,
        'penalty': args.penalty if directed else None,
    }
    summary = write_condition_networks(networks, args.output, parameters=parameters)

    print("\nPer-condition networks:")
    for condition, entry in summary['conditions'].items():
        if entry['present']:
            print(f"  {condition}: {entry['edges']} edges (lambda={entry['lambda_']})")
        else:
            print(f"  {condition}: FAILED - {entry['error']}")
    for message in networks.warnings:
        print(f"  WARNING: {message}")

    elapsed = datetime.now() - start_time
    print(f"\nResults written to {args.output} in {elapsed.total_seconds():.1f}s")

    if not networks.complete:
        print(f"ERROR: no network for conditions {networks.absent}")
        return 2
    return 0
