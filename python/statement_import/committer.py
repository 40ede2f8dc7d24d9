"""
Transaction Committer Module

Persists reviewed rows one at a time. A failing row is reported and skipped;
the rest of the batch still goes through.
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .models import ReviewRow
from .stores import TagStore, TransactionStore

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Outcome of a commit: how many rows landed and what went wrong."""

    imported: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"imported": self.imported, "errors": list(self.errors)}


class Committer:
    """Writes review rows and their tags to the stores."""

    def __init__(self, transaction_store: TransactionStore, tag_store: TagStore):
        self.transaction_store = transaction_store
        self.tag_store = tag_store

    async def _resolve_tag_ids(
        self,
        profile_id: int,
        tag_names: Sequence[str],
        tag_map: dict[str, int],
    ) -> list[int]:
        """Look up tags case-insensitively, creating the missing ones once."""
        tag_ids = []
        for name in tag_names:
            normalized = name.strip().lower()
            if not normalized:
                continue

            tag_id = tag_map.get(normalized)
            if tag_id is None:
                tag_id = await self.tag_store.create_tag(profile_id, name.strip())
                tag_map[normalized] = tag_id

            if tag_id not in tag_ids:
                tag_ids.append(tag_id)

        return tag_ids

    async def commit(self, profile_id: int, rows: Sequence[ReviewRow]) -> CommitResult:
        """Persist every given row independently.

        Args:
            profile_id: Owning profile
            rows: Rows to persist; callers pass only non-excluded rows

        Returns:
            CommitResult with the imported count and one error per failed row
        """
        result = CommitResult()

        tag_map = {
            tag.name.lower(): tag.id
            for tag in await self.tag_store.list_tags(profile_id)
        }

        for row in rows:
            try:
                transaction_id = await self.transaction_store.create_transaction(
                    profile_id, row.candidate
                )

                tag_ids = await self._resolve_tag_ids(profile_id, row.suggested_tags, tag_map)
                if tag_ids:
                    await self.transaction_store.set_tags_for_transaction(transaction_id, tag_ids)

                result.imported += 1
            except Exception as e:
                logger.error(f"Failed to import row {row.index + 1}: {e}")
                result.errors.append(f"Row {row.index + 1}: {str(e) or type(e).__name__}")

        logger.info(
            f"Imported {result.imported} of {len(rows)} transactions "
            f"for profile {profile_id} ({len(result.errors)} errors)"
        )
        return result
