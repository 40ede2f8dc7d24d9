"""
Duplicate Detector Tests

Tests for date/amount duplicate keys and flagging review rows.
"""

import asyncio
import pytest
from decimal import Decimal
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from statement_import.duplicate_detector import DuplicateDetector, flag_duplicates
from statement_import.models import (
    CandidateTransaction,
    ReviewRow,
    TransactionType,
    duplicate_key,
    format_amount,
)


def make_row(index, date, amount, description="") -> ReviewRow:
    return ReviewRow(
        index=index,
        type=TransactionType.WITHDRAWAL,
        amount=Decimal(amount),
        description=description,
        transaction_date=date,
    )


def persist(store, profile_id, date, amount, description="Existing"):
    candidate = CandidateTransaction(
        index=0,
        type=TransactionType.WITHDRAWAL,
        amount=Decimal(amount),
        description=description,
        transaction_date=date,
    )
    return asyncio.run(store.create_transaction(profile_id, candidate))


class TestDuplicateKey:
    """Tests for the composite key."""

    @pytest.mark.parametrize("amount,expected", [
        ("10.00", "10"),
        ("10", "10"),
        ("10.50", "10.5"),
        ("0.00", "0"),
        ("1250.00", "1250"),
        ("100", "100"),
    ])
    def test_format_amount(self, amount, expected):
        """Test amounts render without trailing zeros or exponents."""
        assert format_amount(Decimal(amount)) == expected

    def test_key(self):
        assert duplicate_key("2024-02-01", Decimal("10.00")) == "2024-02-01:10"

    def test_description_ignored(self):
        """Test rows differing only in description share a key."""
        a = make_row(0, "2024-02-01", "10.00", "Coffee")
        b = make_row(1, "2024-02-01", "10", "Lunch")

        assert duplicate_key(a.transaction_date, a.amount) == duplicate_key(b.transaction_date, b.amount)


class TestFlagDuplicates:
    """Tests for flag_duplicates()."""

    def test_flags_and_excludes(self):
        rows = (make_row(0, "2024-02-01", "10.00"), make_row(1, "2024-02-02", "10.00"))

        flagged = flag_duplicates(rows, {"2024-02-01:10"})

        assert flagged[0].duplicate is True
        assert flagged[0].excluded is True
        assert flagged[1].duplicate is False
        assert flagged[1].excluded is False

    def test_both_rows_sharing_key_flagged(self):
        """Test every row with a matching key is flagged, whatever its description."""
        rows = (
            make_row(0, "2024-02-01", "10.00", "Coffee"),
            make_row(1, "2024-02-01", "10.00", "Lunch"),
        )

        flagged = flag_duplicates(rows, {"2024-02-01:10"})

        assert all(r.duplicate for r in flagged)


class TestDuplicateDetector:
    """Tests for DuplicateDetector against the in-memory store."""

    def test_existing_transaction_detected(self, transaction_store):
        """Test a persisted transaction with the same date and amount is found."""
        persist(transaction_store, 1, "2024-02-01", "10.00")
        detector = DuplicateDetector(transaction_store)

        keys = asyncio.run(detector.check_duplicates(1, [
            ("2024-02-01", Decimal("10.00")),
            ("2024-02-01", Decimal("11.00")),
        ]))

        assert keys == {"2024-02-01:10"}

    def test_profiles_isolated(self, transaction_store):
        """Test another profile's transactions are not duplicates."""
        persist(transaction_store, 2, "2024-02-01", "10.00")
        detector = DuplicateDetector(transaction_store)

        keys = asyncio.run(detector.check_duplicates(1, [("2024-02-01", Decimal("10"))]))

        assert keys == set()

    def test_empty_candidates(self, transaction_store):
        detector = DuplicateDetector(transaction_store)
        assert asyncio.run(detector.check_duplicates(1, [])) == set()

    def test_check_rows(self, transaction_store):
        """Test check_rows flags matching rows and counts them."""
        persist(transaction_store, 1, "2024-02-01", "10")
        detector = DuplicateDetector(transaction_store)
        rows = (make_row(0, "2024-02-01", "10.00"), make_row(1, "2024-02-03", "5.00"))

        result = asyncio.run(detector.check_rows(1, rows))

        assert result.duplicate_keys == {"2024-02-01:10"}
        assert result.duplicate_count == 1
        assert result.rows[0].excluded is True
        assert result.rows[1].excluded is False
