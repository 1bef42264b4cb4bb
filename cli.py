"""
Command-line driver for the ledger engine.

Usage:
    ledger-engine transactions.csv > accounts.csv
    ledger-engine transactions.csv --fail-fast --log-level DEBUG --log-format text

The account report goes to stdout, logs go to stderr.

Environment Variables:
    LEDGER_ENV: settings profile (development, production, testing)
    LEDGER_LOG_LEVEL / LEDGER_LOG_FORMAT: logging defaults
    LEDGER_FAIL_FAST: stop at the first rejected transaction
"""

import argparse
import sys
from typing import Optional, Sequence

import structlog

from config import configure_logging, get_settings
from csv_io import iter_valid_transactions, read_transactions, write_report
from errors import LedgerError
from services import LedgerEngine

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-engine",
        description="Replay a CSV of transactions and print the resulting client accounts.",
    )
    parser.add_argument("input", help="CSV file with type, client, tx, amount columns")
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Stop at the first malformed or rejected transaction",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        default=None,
        help="Log output format (default from settings)",
    )
    return parser


def run(input_path: str, fail_fast: bool = False) -> int:
    """Process `input_path` and write the report to stdout. Returns an exit code."""
    engine = LedgerEngine()
    try:
        with open(input_path, newline="") as stream:
            rows = read_transactions(stream)
            if fail_fast:
                transactions = _stop_on_parse_error(rows)
            else:
                transactions = iter_valid_transactions(rows)
            engine.process(transactions, fail_fast=fail_fast)
    except OSError as e:
        logger.error("Cannot open input file", path=input_path, error=str(e))
        return 1
    except LedgerError as e:
        logger.error("Processing stopped", error_code=e.error_code, error=str(e))
        return 1

    write_report(engine.report(), sys.stdout)
    return 0


def _stop_on_parse_error(rows):
    for line, parsed in rows:
        if isinstance(parsed, LedgerError):
            raise parsed
        yield parsed


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    configure_logging(
        args.log_level or settings.log_level,
        args.log_format or settings.log_format,
    )
    fail_fast = settings.fail_fast if args.fail_fast is None else args.fail_fast
    return run(args.input, fail_fast=fail_fast)


if __name__ == "__main__":
    sys.exit(main())
