"""
CSV Parser Module

Turns raw statement text into a header list and row records.
"""

import csv
import logging
from dataclasses import dataclass, field
from io import StringIO

from .exceptions import ParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawRow:
    """One data row keyed by header, with its position in the file."""

    index: int
    cells: dict[str, str]

    def get(self, column: str) -> str:
        return self.cells.get(column, "")


@dataclass
class ParseResult:
    """Result of parsing CSV text."""

    headers: list[str] = field(default_factory=list)
    rows: list[RawRow] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _preprocess_content(content: str) -> str:
    """Strip BOM and normalize line endings."""
    if content.startswith("\ufeff"):
        content = content[1:]

    return content.replace("\r\n", "\n").replace("\r", "\n")


def parse(text: str, delimiter: str = ",") -> ParseResult:
    """Parse CSV text into headers and rows.

    Quoted fields may contain delimiters and doubled quotes. Cells are
    whitespace-trimmed, blank lines are skipped and short rows are padded
    with empty strings.

    Args:
        text: Raw CSV content
        delimiter: Field delimiter

    Returns:
        ParseResult with at least one header and one row

    Raises:
        ParseError: If the content has no headers or no data rows
    """
    content = _preprocess_content(text or "").strip()
    reader = csv.reader(StringIO(content), delimiter=delimiter, skipinitialspace=True)

    headers = [h.strip() for h in next(reader, [])]
    if not any(headers):
        raise ParseError("CSV file appears empty: no header row found")

    duplicates = sorted({h for h in headers if h and headers.count(h) > 1})
    if duplicates:
        logger.warning(f"Duplicate header names, later columns win: {duplicates}")

    result = ParseResult(headers=headers)

    for values in reader:
        if not any(v.strip() for v in values):
            continue

        cells = {
            header: (values[i].strip() if i < len(values) else "")
            for i, header in enumerate(headers)
        }
        result.rows.append(RawRow(index=len(result.rows), cells=cells))

    if not result.rows:
        raise ParseError("CSV file has a header row but no data rows")

    logger.info(f"Parsed {result.row_count} rows with {len(headers)} columns")
    return result
