"""
Row Normalizer Module

Converts mapped raw rows into typed candidate transactions. Bad cells never
raise: amounts fall back to zero and types to a sign-based default so the
reviewer can correct them before commit.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence

from .column_mapper import CanonicalField, ColumnMapping
from .models import CandidateTransaction, TransactionType
from .parser import RawRow

DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d-%b-%Y",
    "%b %d, %Y",
    "%d %b %Y",
]

TEXT_SEPARATOR = " - "

# M/D/YY with the century fixed to 20YY
SHORT_YEAR_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")


def parse_amount(amount_str: str | None) -> Decimal:
    """Parse an amount cell into a signed Decimal.

    Currency symbols, thousand separators and whitespace are removed.
    Parentheses, a trailing ``CR``/``-`` or a leading minus mark negatives.
    Anything unparsable becomes zero.
    """
    if not amount_str or not amount_str.strip():
        return Decimal("0")

    cleaned = re.sub(r'[$€£₱,\s]', '', amount_str)

    is_negative = False
    if cleaned.startswith('(') and cleaned.endswith(')'):
        cleaned = cleaned[1:-1]
        is_negative = True
    elif cleaned.upper().endswith('CR'):
        cleaned = cleaned[:-2]
        is_negative = True
    elif cleaned.endswith('-'):
        cleaned = cleaned[:-1]
        is_negative = True

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")

    if not amount.is_finite():
        return Decimal("0")

    return -amount if is_negative else amount


def normalize_date(date_str: str | None) -> str:
    """Normalize a date cell to YYYY-MM-DD; unknown formats are kept verbatim."""
    value = (date_str or "").strip()
    if not value:
        return ""

    iso_match = re.match(r'^(\d{4}-\d{2}-\d{2})', value)
    if iso_match:
        return iso_match.group(1)

    short_match = SHORT_YEAR_DATE.match(value)
    if short_match:
        month, day, year = short_match.groups()
        try:
            dt = datetime(2000 + int(year), int(month), int(day))
        except ValueError:
            return value
        return dt.strftime("%Y-%m-%d")

    for fmt in DATE_FORMATS:
        try:
            dt = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return dt.strftime("%Y-%m-%d")

    return value


def _columns_for(mapping: Sequence[ColumnMapping], field: CanonicalField) -> list[str]:
    return [m.csv_column for m in mapping if m.field is field]


def _scalar_column(mapping: Sequence[ColumnMapping], field: CanonicalField) -> str | None:
    # Last mapped column wins for scalar fields
    columns = _columns_for(mapping, field)
    return columns[-1] if columns else None


def _joined_text(row: RawRow, columns: Sequence[str]) -> str:
    return TEXT_SEPARATOR.join(
        value for value in (row.get(c).strip() for c in columns) if value
    )


def normalize_row(
    row: RawRow,
    mapping: Sequence[ColumnMapping],
) -> CandidateTransaction:
    """Normalize a single raw row.

    The type cell wins when it names a known type; otherwise the type is
    inferred from the amount's sign. The candidate carries the amount's
    magnitude, with direction expressed by its type.
    """
    amount_col = _scalar_column(mapping, CanonicalField.AMOUNT)
    type_col = _scalar_column(mapping, CanonicalField.TYPE)
    date_col = _scalar_column(mapping, CanonicalField.TRANSACTION_DATE)

    amount = parse_amount(row.get(amount_col)) if amount_col else Decimal("0")
    inferred = TransactionType.from_sign(amount)
    txn_type = TransactionType.coerce(row.get(type_col), inferred) if type_col else inferred

    return CandidateTransaction(
        index=row.index,
        type=txn_type,
        amount=abs(amount),
        description=_joined_text(row, _columns_for(mapping, CanonicalField.DESCRIPTION)),
        transaction_date=normalize_date(row.get(date_col)) if date_col else "",
        reference=_joined_text(row, _columns_for(mapping, CanonicalField.REFERENCE)),
    )


def apply_mapping(
    rows: Sequence[RawRow],
    mapping: Sequence[ColumnMapping],
) -> list[CandidateTransaction]:
    """Apply a column mapping to every raw row. Pure and order-preserving."""
    return [normalize_row(row, mapping) for row in rows]
