"""
CLI entry point for the CDL analyzer.

Usage:
    python -m nescdl [manifest] [options]

Examples:
    python -m nescdl disnes.toml -v
    python -m nescdl disnes.toml --bank PRG3 --order lifo --workers 4
    python -m nescdl disnes.toml --entry 0xC123 --data-refs -o output/
"""

import argparse
import logging
import sys

from . import config
from .analyzer import Analyzer
from .engine import QueueOrder


def parse_address(text: str) -> int:
    """Accept 0xC000, $C000 or a plain decimal address."""
    s = text.strip()
    try:
        if s.startswith("$"):
            value = int(s[1:], 16)
        else:
            value = int(s, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid address: {text!r}") from None
    if not 0 <= value <= config.ADDRESS_MASK:
        raise argparse.ArgumentTypeError(f"address out of range: {text!r}")
    return value


def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nescdl",
        description="NES CDL analyzer - "
                    "Static code/data discovery for 6502 cartridge banks",
    )

    parser.add_argument(
        "manifest",
        nargs="?",
        default=config.DEFAULT_MANIFEST,
        help=f"Path to the TOML manifest (default: {config.DEFAULT_MANIFEST})",
    )
    parser.add_argument(
        "-b", "--bank",
        dest="banks",
        action="append",
        default=None,
        metavar="NAME",
        help="Analyze with this bank mapped (repeatable; "
             "default: every switchable bank in turn)",
    )
    parser.add_argument(
        "--order",
        choices=[o.value for o in QueueOrder],
        default=QueueOrder.FIFO.value,
        help="Work queue order (default: fifo)",
    )
    parser.add_argument(
        "-j", "--workers",
        type=positive_int,
        default=1,
        help="Number of traversal threads (default: 1)",
    )
    parser.add_argument(
        "--max-steps",
        type=positive_int,
        default=None,
        help="Stop each traversal after this many queue entries",
    )
    parser.add_argument(
        "-e", "--entry",
        dest="entries",
        type=parse_address,
        action="append",
        default=[],
        metavar="ADDR",
        help="Extra entry point besides the interrupt vectors (repeatable)",
    )
    parser.add_argument(
        "--data-refs",
        action="store_true",
        default=None,
        help="Mark bytes read by absolute/zero-page operands as data",
    )
    parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Analyze without writing CDL files",
    )
    parser.add_argument(
        "-o", "--output",
        dest="output_dir",
        default=None,
        help=f"Write {config.SUMMARY_FILENAME} to this directory",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose output with progress information (-vv for debug logs)",
    )
    return parser


def configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        analyzer = Analyzer(
            manifest_path=args.manifest,
            bank_names=args.banks,
            order=QueueOrder(args.order),
            workers=args.workers,
            max_steps=args.max_steps,
            entries=args.entries,
            data_refs=args.data_refs,
            dry_run=args.dry_run,
            output_dir=args.output_dir,
            verbose=args.verbose > 0,
        )
        success = analyzer.run()
        sys.exit(0 if success else 1)

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
