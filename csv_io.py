"""CSV adapters: transaction input and account report output."""
import csv
from typing import IO, Iterable, Iterator, Tuple, Union

from pydantic import ValidationError
import structlog

from errors import TransactionParseError
from models import AccountRow, Transaction, TransactionRow

logger = structlog.get_logger()

REPORT_FIELDS = ["client", "available", "held", "total", "locked"]

ParsedRow = Tuple[int, Union[Transaction, TransactionParseError]]


def read_transactions(stream: IO[str]) -> Iterator[ParsedRow]:
    """
    Parse a `type, client, tx, amount` CSV stream.

    Yields `(line_number, transaction)` for good rows and
    `(line_number, TransactionParseError)` for bad ones so a caller can keep
    going past malformed input. Whitespace around fields is ignored and the
    amount column may be left off rows that carry no amount.
    """
    reader = csv.reader(stream, skipinitialspace=True)
    header = next(reader, None)
    if header is None:
        return
    fields = [name.strip().lower() for name in header]

    for row in reader:
        line = reader.line_num
        if not any(cell.strip() for cell in row):
            continue
        if len(row) > len(fields):
            yield line, TransactionParseError(f"Line {line}: too many fields")
            continue
        record = {name: cell.strip() for name, cell in zip(fields, row)}
        yield line, parse_record(record, line)


def parse_record(record: dict, line: int = 0) -> Union[Transaction, TransactionParseError]:
    try:
        return TransactionRow.model_validate(record).to_transaction()
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
            for err in e.errors()
        )
        return TransactionParseError(f"Line {line}: {problems}")
    except TransactionParseError as e:
        return TransactionParseError(f"Line {line}: {e}")


def iter_valid_transactions(rows: Iterable[ParsedRow]) -> Iterator[Transaction]:
    """Drop unparsable rows, logging each one."""
    for line, parsed in rows:
        if isinstance(parsed, TransactionParseError):
            logger.warning("Skipping malformed transaction row", line=line, error=str(parsed))
            continue
        yield parsed


def write_report(rows: Iterable[AccountRow], stream: IO[str]) -> None:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(REPORT_FIELDS)
    for row in rows:
        writer.writerow([
            row.client,
            row.available.format(),
            row.held.format(),
            row.total.format(),
            "true" if row.locked else "false",
        ])
