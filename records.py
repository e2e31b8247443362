"""
CSV decoding of transaction records and rendering of final client states.
"""

import csv
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, TextIO
from pydantic import ValidationError
import structlog

from errors import InputError
from models import FinalClientState, TransactionKind, TransactionRecord

logger = structlog.get_logger()

OUTPUT_HEADER = ["client", "available", "held", "total", "locked"]
REQUIRED_COLUMNS = ("type", "client", "tx")
FOUR_PLACES = Decimal("0.0001")
# Amounts must stay below this magnitude
MAX_AMOUNT = Decimal("1e18")


def read_records(path: str) -> Iterator[TransactionRecord]:
    """
    Decode transaction records from a CSV file with a header row.

    Columns may appear in any order; headers and values are whitespace-trimmed.
    The ``amount`` column is optional for dispute, resolve and chargeback rows.

    Raises:
        InputError: If the file cannot be opened or a row cannot be decoded
    """
    csv_path = Path(path)
    try:
        handle = open(csv_path, "r", encoding="utf-8", newline="")
    except OSError as e:
        raise InputError(f"Cannot read input file {csv_path}: {e.strerror or e}") from e

    with handle:
        reader = csv.reader(handle)
        try:
            header = next(reader, None)
        except csv.Error as e:
            raise InputError(f"Malformed CSV header: {e}", line=1) from e
        except UnicodeDecodeError as e:
            raise InputError(f"Input is not valid UTF-8: {e}", line=1) from e
        if header is None:
            logger.warning("Empty input file", path=str(csv_path))
            return
        columns = _index_columns(header)

        try:
            for row in reader:
                if not any(cell.strip() for cell in row):
                    continue
                yield decode_row(row, columns, reader.line_num)
        except csv.Error as e:
            raise InputError(f"Malformed CSV: {e}", line=reader.line_num) from e
        except UnicodeDecodeError as e:
            raise InputError(f"Input is not valid UTF-8: {e}") from e


def _index_columns(header: list) -> Dict[str, int]:
    columns = {name.strip(): position for position, name in enumerate(header)}
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise InputError(f"Missing required column(s): {', '.join(missing)}", line=1)
    return columns


def decode_row(row: list, columns: Dict[str, int], line: Optional[int] = None) -> TransactionRecord:
    """Decode one CSV row into a record."""

    def field(name: str) -> str:
        position = columns.get(name)
        if position is None or position >= len(row):
            return ""
        return row[position].strip()

    kind = TransactionKind.from_text(field("type"))
    amount = None
    # Amounts on dispute, resolve and chargeback rows are ignored
    if kind.moves_funds:
        amount = _parse_amount(field("amount"), kind, line)

    try:
        return TransactionRecord(
            kind=kind,
            client_id=field("client"),
            transaction_id=field("tx"),
            amount=amount
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise InputError(problems, line=line) from e


def _parse_amount(raw: str, kind: TransactionKind, line: Optional[int]) -> Decimal:
    if not raw:
        raise InputError(f"Missing amount for {kind.value}", line=line)
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise InputError(f"Invalid amount {raw!r}", line=line) from None
    if not amount.is_finite():
        raise InputError(f"Invalid amount {raw!r}", line=line)
    if amount.copy_abs() >= MAX_AMOUNT:
        raise InputError(f"Amount {raw!r} is out of range", line=line)
    return amount


def format_amount(value: Decimal) -> str:
    with localcontext() as context:
        # quantize needs room for every integer digit plus four decimals
        context.prec = max(context.prec, value.adjusted() + 5)
        return str(value.quantize(FOUR_PLACES))


def write_states(states: Iterable[FinalClientState], stream: TextIO) -> None:
    """Render final client states as CSV."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(OUTPUT_HEADER)
    for state in states:
        writer.writerow([
            state.client_id,
            format_amount(state.available),
            format_amount(state.held),
            format_amount(state.total),
            "true" if state.locked else "false",
        ])
