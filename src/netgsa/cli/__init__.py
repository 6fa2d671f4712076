"""
netgsa CLI - Network-based gene set analysis from the command line.

Commands:
    netgsa estimate    - Estimate one network per condition (BIC-tuned or directed)
    netgsa test        - Test pathways for differential network-adjusted activity
"""

import argparse
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for netgsa."""
    parser = argparse.ArgumentParser(
        prog="netgsa",
        description="Network-based gene set analysis with constrained network estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  estimate      Estimate one network per condition (BIC-tuned or directed)
  test          Test pathways for differential network-adjusted activity

Examples:
  netgsa estimate --input expr.csv --labels labels.csv --output nets --zero zero.csv
  netgsa test --input expr.csv --labels labels.csv --pathways B.csv --networks nets --output res.csv
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from netgsa.cli import estimate, test
    estimate.register_parser(subparsers)
    test.register_parser(subparsers)

    parsed_args = parser.parse_args(args)
    # Raw tokens let config merging tell explicit flags from defaults
    parsed_args.argv = list(sys.argv[1:] if args is None else args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
