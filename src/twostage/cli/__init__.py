"""
twostage CLI - two-stage per-protein differential abundance.

Commands:
    twostage analyze   - Fit per-protein run summaries and test two conditions

Examples:
    twostage analyze --data features.csv --covariates runs.csv --output results/
    twostage analyze -d features.csv -m runs.csv -c analysis.yaml -o results/
"""

import argparse
import sys
from typing import List, Optional


def build_parser() -> argparse.ArgumentParser:
    """Top-level parser with every subcommand registered."""
    from twostage import __version__
    from twostage.cli import analyze

    parser = argparse.ArgumentParser(
        prog="twostage",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-V", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    analyze.setup_parser(subparsers)
    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Parse ``args`` (default: sys.argv) and run the chosen subcommand."""
    parser = build_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 0
    return parsed.func(parsed)


if __name__ == "__main__":
    sys.exit(main())
