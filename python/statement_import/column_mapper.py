"""
Column Mapper Module

Maps CSV columns to canonical transaction fields, either from a caller-supplied
mapping or from suggestions made by the classification assistant.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

from .assistant import ClassificationAssistant, extract_json_array
from .parser import RawRow

logger = logging.getLogger(__name__)


class CanonicalField(str, Enum):
    """Targets a CSV column may map to."""

    TYPE = "type"
    AMOUNT = "amount"
    DESCRIPTION = "description"
    TRANSACTION_DATE = "transaction_date"
    REFERENCE = "reference"
    IGNORE = "ignore"


# Fields whose mapped columns are concatenated rather than overridden
TEXT_FIELDS = (CanonicalField.DESCRIPTION, CanonicalField.REFERENCE)
SCALAR_FIELDS = (CanonicalField.TYPE, CanonicalField.AMOUNT, CanonicalField.TRANSACTION_DATE)

FIELD_DESCRIPTIONS = {
    CanonicalField.TYPE: "Transaction type: deposit or withdrawal",
    CanonicalField.AMOUNT: "The monetary amount of the transaction (numeric)",
    CanonicalField.DESCRIPTION: "Description or memo of the transaction",
    CanonicalField.TRANSACTION_DATE: "The date the transaction occurred",
    CanonicalField.REFERENCE: "A reference number, check number, or transaction ID",
}

# Keyword heuristics used when the assistant is unavailable
DEFAULT_KEYWORDS = [
    (CanonicalField.AMOUNT, ["amount", "sum", "total", "value", "debit", "credit"]),
    (CanonicalField.DESCRIPTION, ["description", "memo", "details", "narration", "particulars", "name"]),
    (CanonicalField.TRANSACTION_DATE, ["date", "trans date", "transaction date", "posting date", "value date"]),
    (CanonicalField.REFERENCE, ["reference", "ref", "check", "cheque", "transaction id", "id", "number"]),
    (CanonicalField.TYPE, ["type", "category", "kind", "transaction type"]),
]


@dataclass(frozen=True)
class ColumnMapping:
    """One CSV column and the canonical field it feeds."""

    csv_column: str
    field: CanonicalField

    def to_dict(self) -> dict:
        return {"csv_column": self.csv_column, "field": self.field.value}


def coerce_field(value: object) -> CanonicalField | None:
    if isinstance(value, CanonicalField):
        return value
    try:
        return CanonicalField(str(value).strip().lower())
    except ValueError:
        return None


def explicit_mapping(entries: Mapping[str, str] | Iterable[ColumnMapping]) -> list[ColumnMapping]:
    """Build a mapping from caller input without validation.

    Accepts either a ``{column: field}`` dict or ColumnMapping objects.
    Unknown field names still degrade to ``ignore`` so the result is typed.
    """
    if isinstance(entries, Mapping):
        return [
            ColumnMapping(column, coerce_field(target) or CanonicalField.IGNORE)
            for column, target in entries.items()
        ]
    return list(entries)


def validate_mapping(entries: Sequence[object], headers: Sequence[str]) -> list[ColumnMapping]:
    """Validate assistant-proposed entries against the real headers.

    Every header appears exactly once in the result, in header order. Entries
    naming an unknown column are dropped; entries naming an unknown target,
    and headers the assistant left out, map to ``ignore``.
    """
    proposed: dict[str, CanonicalField] = {}

    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Dropping malformed mapping entry: {entry!r}")
            continue

        column = entry.get("csv_column", entry.get("csvColumn"))
        target = entry.get("field", entry.get("dbColumn"))

        if column not in headers:
            logger.warning(f"Dropping mapping for unknown column: {column!r}")
            continue

        field = coerce_field(target)
        if field is None:
            logger.warning(f"Column {column!r} proposed invalid field {target!r}, using ignore")
            field = CanonicalField.IGNORE

        proposed[column] = field

    return [ColumnMapping(h, proposed.get(h, CanonicalField.IGNORE)) for h in headers]


def default_mapping(headers: Sequence[str]) -> list[ColumnMapping]:
    """Keyword heuristic mapping: first matching header per field."""
    assigned: dict[str, CanonicalField] = {}
    lower_headers = [h.lower() for h in headers]

    for field, keywords in DEFAULT_KEYWORDS:
        for header, lower in zip(headers, lower_headers):
            if header in assigned:
                continue
            if any(kw in lower for kw in keywords):
                assigned[header] = field
                break

    return [ColumnMapping(h, assigned.get(h, CanonicalField.IGNORE)) for h in headers]


def mapping_conflicts(mapping: Sequence[ColumnMapping]) -> dict[CanonicalField, list[str]]:
    """Scalar fields fed by more than one column.

    The normalizer resolves these by taking the last mapped column; callers
    use this to warn the reviewer.
    """
    columns: dict[CanonicalField, list[str]] = {}
    for m in mapping:
        if m.field in SCALAR_FIELDS:
            columns.setdefault(m.field, []).append(m.csv_column)

    return {field: cols for field, cols in columns.items() if len(cols) > 1}


def build_mapping_prompt(
    headers: Sequence[str],
    sample_rows: Sequence[RawRow],
    guidance: str | None = None,
) -> str:
    """Build the prompt asking the assistant to map columns."""
    sample_data = [
        {h: row.get(h) for h in headers}
        for row in sample_rows[:3]
    ]
    targets = "\n".join(
        f'- "{field.value}": {description}'
        for field, description in FIELD_DESCRIPTIONS.items()
    )

    prompt = f"""You are a data mapping assistant. Given CSV column headers and sample data, map each CSV column to the most appropriate database column.

CSV Headers: {json.dumps(headers)}

Sample data (first 3 rows):
{json.dumps(sample_data, indent=2)}

Target database columns:
{targets}

Return ONLY a valid JSON array of mappings. Each mapping should be: {{"csv_column": "<csv header>", "field": "<target column name>"}}
Only map columns that have a clear match. If a CSV column doesn't match any target column, use "field": "ignore".
Do not include any explanation, just the JSON array."""

    if guidance and guidance.strip():
        prompt += f"\n\nAdditional instructions from the user:\n{guidance.strip()}"

    return prompt


def mapping_from_response(response_text: str, headers: Sequence[str]) -> list[ColumnMapping]:
    """Parse and validate a raw assistant reply into a mapping.

    Raises:
        AssistantError: If the reply holds no JSON array
    """
    return validate_mapping(extract_json_array(response_text), headers)


class ColumnMapper:
    """Assisted column mapping."""

    def __init__(self, assistant: ClassificationAssistant):
        self.assistant = assistant

    async def detect(
        self,
        headers: Sequence[str],
        sample_rows: Sequence[RawRow] = (),
        guidance: str | None = None,
    ) -> list[ColumnMapping]:
        """Ask the assistant for a mapping and validate it.

        Raises:
            AssistantError: If the assistant is unavailable or its reply
                contains no mapping array
        """
        prompt = build_mapping_prompt(headers, sample_rows, guidance)
        response_text = await self.assistant.complete(prompt)
        mapping = mapping_from_response(response_text, headers)

        mapped = sum(1 for m in mapping if m.field is not CanonicalField.IGNORE)
        logger.info(f"Assistant mapped {mapped} of {len(headers)} columns")
        return mapping
