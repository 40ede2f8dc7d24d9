"""
Transaction Classifier Module

Asks the classification assistant for a transaction type and tag suggestions
per candidate transaction. Replies are trusted only as far as they line up
with the rows that were sent.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Sequence

from .assistant import ClassificationAssistant, extract_json_array
from .exceptions import AssistantError
from .models import CandidateTransaction, TransactionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tag:
    """A tag from the profile's vocabulary."""

    id: int
    name: str


@dataclass(frozen=True)
class Classification:
    """Suggested type and tags for one row."""

    index: int
    type: TransactionType
    suggested_tags: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "type": self.type.value,
            "suggested_tags": list(self.suggested_tags),
        }


@dataclass
class ClassificationResult:
    """Result of classifying a batch of transactions."""

    classifications: list[Classification] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def by_index(self) -> dict[int, Classification]:
        return {c.index: c for c in self.classifications}


def build_classify_prompt(
    transactions: Sequence[CandidateTransaction],
    existing_tags: Sequence[Tag],
    guidance: str | None = None,
) -> str:
    """Build the prompt asking the assistant to classify transactions."""
    valid_types = ", ".join(t.value for t in TransactionType)
    tag_names = ", ".join(t.name for t in existing_tags) or "(no existing tags - suggest new ones)"

    txn_data = [
        {
            "index": t.index,
            "description": t.description,
            "amount": float(t.amount),
            "currentType": t.type.value,
        }
        for t in transactions
    ]

    prompt = f"""You are a financial transaction classifier. For each transaction below, determine:
1. The most appropriate transaction type from: {valid_types}
2. Suggested tags/categories from existing tags: {tag_names}

Transactions to classify:
{json.dumps(txn_data, indent=2)}

Rules:
- Negative amounts or debits are typically "withdrawal"
- Positive amounts or credits are typically "deposit"
- Suggest 1-3 relevant tags per transaction

Return ONLY a valid JSON array where each item has: {{"index": <number>, "type": "<transaction type>", "suggestedTags": ["tag1", "tag2"]}}
No explanation, just the JSON array."""

    if guidance and guidance.strip():
        prompt += f"\n\nAdditional instructions from the user:\n{guidance.strip()}"

    return prompt


def _entry_index(entry: dict) -> int | None:
    value = entry.get("index")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _entry_tags(entry: dict) -> list[str]:
    tags = entry.get("suggestedTags", entry.get("suggested_tags"))
    if not isinstance(tags, list):
        return []
    return [t.strip() for t in tags if isinstance(t, str) and t.strip()]


def classifications_from_response(
    response_text: str,
    transactions: Sequence[CandidateTransaction],
) -> list[Classification]:
    """Line up an assistant reply with the transactions that were sent.

    Entries for unknown indices are ignored, invalid type strings keep the
    transaction's existing type, and transactions missing from the reply get
    their existing type with no tags.

    Raises:
        AssistantError: If the reply holds no JSON array
    """
    entries = extract_json_array(response_text)
    by_index = {t.index: t for t in transactions}
    replies: dict[int, dict] = {}

    for entry in entries:
        if not isinstance(entry, dict):
            continue
        index = _entry_index(entry)
        if index not in by_index:
            logger.debug(f"Ignoring classification for unknown index {entry.get('index')!r}")
            continue
        replies.setdefault(index, entry)

    results = []
    for txn in transactions:
        entry = replies.get(txn.index)
        if entry is None:
            results.append(Classification(index=txn.index, type=txn.type))
            continue

        results.append(Classification(
            index=txn.index,
            type=TransactionType.coerce(entry.get("type"), txn.type),
            suggested_tags=tuple(dict.fromkeys(_entry_tags(entry))),
        ))

    return results


class TransactionClassifier:
    """Batch classification through the assistant."""

    DEFAULT_BATCH_SIZE = 20

    def __init__(self, assistant: ClassificationAssistant, batch_size: int = DEFAULT_BATCH_SIZE):
        self.assistant = assistant
        self.batch_size = max(1, batch_size)

    async def classify(
        self,
        transactions: Sequence[CandidateTransaction],
        existing_tags: Sequence[Tag] = (),
        guidance: str | None = None,
    ) -> ClassificationResult:
        """Classify transactions in batches.

        A batch whose request fails keeps its rows' existing types with no
        tags; the failure is recorded in ``errors`` and later batches still run.
        """
        result = ClassificationResult()

        for start in range(0, len(transactions), self.batch_size):
            batch = transactions[start:start + self.batch_size]
            prompt = build_classify_prompt(batch, existing_tags, guidance)

            try:
                response_text = await self.assistant.complete(prompt)
                result.classifications.extend(classifications_from_response(response_text, batch))
            except AssistantError as e:
                logger.error(f"Classification failed for rows {start + 1}-{start + len(batch)}: {e}")
                result.errors.append(f"Rows {start + 1}-{start + len(batch)}: {e}")
                result.classifications.extend(
                    Classification(index=t.index, type=t.type) for t in batch
                )

        logger.info(
            f"Classified {len(result.classifications)} transactions "
            f"({len(result.errors)} failed batches)"
        )
        return result

    async def classify_single(
        self,
        transaction: CandidateTransaction,
        existing_tags: Sequence[Tag] = (),
        guidance: str | None = None,
    ) -> Classification:
        """Re-classify one transaction.

        Raises:
            AssistantError: If the assistant is unavailable
        """
        prompt = build_classify_prompt([transaction], existing_tags, guidance)
        response_text = await self.assistant.complete(prompt)
        return classifications_from_response(response_text, [transaction])[0]
