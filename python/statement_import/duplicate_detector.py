"""
Duplicate Transaction Detector Module

Flags review rows whose date and amount already exist among the profile's
persisted transactions. Description and reference are deliberately ignored,
so two different purchases of the same amount on the same day are both
flagged. Flagged rows are excluded from commit but stay visible and can be
re-included by the reviewer.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Sequence

from .models import ReviewRow, duplicate_key
from .stores import TransactionStore

logger = logging.getLogger(__name__)


@dataclass
class DeduplicationResult:
    """Result of a duplicate check over review rows."""

    rows: tuple[ReviewRow, ...] = field(default_factory=tuple)
    duplicate_keys: set[str] = field(default_factory=set)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for r in self.rows if r.duplicate)


def flag_duplicates(rows: Sequence[ReviewRow], duplicate_keys: set[str]) -> tuple[ReviewRow, ...]:
    """Mark rows whose key is in ``duplicate_keys`` as duplicate and excluded."""
    return tuple(
        replace(row, duplicate=True, excluded=True)
        if duplicate_key(row.transaction_date, row.amount) in duplicate_keys
        else row
        for row in rows
    )


class DuplicateDetector:
    """Checks review rows against the transaction store."""

    def __init__(self, store: TransactionStore):
        self.store = store

    async def check_duplicates(
        self,
        profile_id: int,
        candidates: Sequence[tuple[str, Decimal]],
    ) -> set[str]:
        """Return the ``date:amount`` keys among candidates that already exist."""
        if not candidates:
            return set()

        keys = await self.store.find_duplicate_keys(profile_id, candidates)
        logger.info(f"Found {len(keys)} existing date/amount keys for profile {profile_id}")
        return keys

    async def check_rows(self, profile_id: int, rows: Sequence[ReviewRow]) -> DeduplicationResult:
        """Check review rows and return them with duplicates flagged."""
        keys = await self.check_duplicates(
            profile_id,
            [(r.transaction_date, r.amount) for r in rows],
        )
        return DeduplicationResult(rows=flag_duplicates(rows, keys), duplicate_keys=keys)
