"""
Transaction Committer Tests

Tests for per-row commit and tag resolution.
"""

import asyncio
import pytest
from decimal import Decimal
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from statement_import.committer import Committer, CommitResult
from statement_import.models import ReviewRow, TransactionType
from statement_import.stores import InMemoryTransactionStore


class FailingTransactionStore(InMemoryTransactionStore):
    """Rejects transactions whose description contains a marker."""

    def __init__(self, marker: str = "FAIL"):
        super().__init__()
        self.marker = marker
        self.attempts = 0

    async def create_transaction(self, profile_id, transaction):
        self.attempts += 1
        if self.marker in transaction.description:
            raise RuntimeError("constraint violated")
        return await super().create_transaction(profile_id, transaction)


def make_row(index, description="Purchase", tags=()) -> ReviewRow:
    return ReviewRow(
        index=index,
        type=TransactionType.WITHDRAWAL,
        amount=Decimal("12.00"),
        description=description,
        transaction_date="2024-03-01",
        suggested_tags=tuple(tags),
    )


class TestCommitResult:
    """Tests for CommitResult."""

    def test_success(self):
        assert CommitResult(imported=2).success is True
        assert CommitResult(imported=1, errors=["Row 2: x"]).success is False

    def test_to_dict(self):
        assert CommitResult(3, ["Row 1: boom"]).to_dict() == {"imported": 3, "errors": ["Row 1: boom"]}


class TestCommitter:
    """Tests for Committer."""

    def test_commit_all(self, transaction_store, tag_store):
        """Test every row is persisted with its fields."""
        committer = Committer(transaction_store, tag_store)

        result = asyncio.run(committer.commit(1, [make_row(0), make_row(1, "Refund")]))

        assert result.imported == 2
        assert result.errors == []
        stored = list(transaction_store.transactions.values())
        assert [t["description"] for t in stored] == ["Purchase", "Refund"]
        assert stored[0]["type"] == "withdrawal"
        assert stored[0]["amount"] == Decimal("12.00")
        assert stored[0]["profile_id"] == 1

    def test_partial_failure(self, tag_store):
        """Test one failing row is reported and the rest still commit."""
        store = FailingTransactionStore()
        committer = Committer(store, tag_store)
        rows = [make_row(0), make_row(1, "FAIL here"), make_row(2)]

        result = asyncio.run(committer.commit(1, rows))

        assert store.attempts == 3
        assert result.imported == 2
        assert result.errors == ["Row 2: constraint violated"]

    def test_tags_resolved_case_insensitively(self, transaction_store, tag_store):
        """Test existing tags are reused regardless of case."""
        existing_id = asyncio.run(tag_store.create_tag(1, "Coffee"))
        committer = Committer(transaction_store, tag_store)

        asyncio.run(committer.commit(1, [make_row(0, tags=["coffee"])]))

        assert list(transaction_store.transaction_tags.values()) == [[existing_id]]
        assert len(asyncio.run(tag_store.list_tags(1))) == 1

    def test_missing_tags_created_once(self, transaction_store, tag_store):
        """Test a new tag used by several rows is created a single time."""
        committer = Committer(transaction_store, tag_store)
        rows = [make_row(0, tags=["Fuel"]), make_row(1, tags=["fuel", "Car"])]

        asyncio.run(committer.commit(1, rows))

        tags = asyncio.run(tag_store.list_tags(1))
        assert [t.name for t in tags] == ["Fuel", "Car"]
        fuel_id = tags[0].id
        assert transaction_store.transaction_tags[1] == [fuel_id]
        assert transaction_store.transaction_tags[2] == [fuel_id, tags[1].id]

    def test_untagged_rows(self, transaction_store, tag_store):
        committer = Committer(transaction_store, tag_store)

        asyncio.run(committer.commit(1, [make_row(0)]))

        assert transaction_store.transaction_tags == {}

    def test_empty_batch(self, transaction_store, tag_store):
        result = asyncio.run(Committer(transaction_store, tag_store).commit(1, []))

        assert result.imported == 0
        assert result.success is True
