"""
Transaction Models

Value types shared by every import stage. All of them are frozen; stages
produce changed copies with ``dataclasses.replace`` instead of mutating.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Iterable


class TransactionType(str, Enum):
    """Canonical transaction types."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    PAYMENT = "payment"
    REFUND = "refund"
    FEE = "fee"
    INTEREST = "interest"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: str | None, default: "TransactionType") -> "TransactionType":
        """Map a free-form string onto the enumeration, falling back to default."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return default

    @classmethod
    def from_sign(cls, amount: Decimal) -> "TransactionType":
        return cls.DEPOSIT if amount >= 0 else cls.WITHDRAWAL

    def inverted(self) -> "TransactionType":
        """Swap deposit and withdrawal, e.g. for credit card exports."""
        if self is TransactionType.DEPOSIT:
            return TransactionType.WITHDRAWAL
        if self is TransactionType.WITHDRAWAL:
            return TransactionType.DEPOSIT
        return self


def format_amount(amount: Decimal) -> str:
    """Render an amount without trailing zeros or exponent: 10.00 -> "10"."""
    normalized = Decimal(amount).normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")


def duplicate_key(transaction_date: str, amount: Decimal) -> str:
    """Composite key used to spot re-imported transactions: ``date:amount``."""
    return f"{transaction_date}:{format_amount(amount)}"


def merge_tags(existing: Iterable[str], added: Iterable[str]) -> tuple[str, ...]:
    """Append tags keeping first-seen order and dropping duplicates."""
    merged = list(existing)
    for tag in added:
        if tag and tag not in merged:
            merged.append(tag)
    return tuple(merged)


@dataclass(frozen=True)
class CandidateTransaction:
    """A typed transaction produced from one mapped CSV row."""

    index: int
    type: TransactionType
    amount: Decimal
    description: str = ""
    transaction_date: str = ""
    reference: str = ""

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "type": self.type.value,
            "amount": str(self.amount),
            "description": self.description,
            "transaction_date": self.transaction_date,
            "reference": self.reference,
        }


@dataclass(frozen=True)
class ReviewRow:
    """A candidate transaction staged for review before commit."""

    index: int
    type: TransactionType
    amount: Decimal
    description: str = ""
    transaction_date: str = ""
    reference: str = ""
    suggested_tags: tuple[str, ...] = field(default_factory=tuple)
    excluded: bool = False
    duplicate: bool = False
    rules_applied: bool = False

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateTransaction,
        suggested_tags: Iterable[str] = (),
    ) -> "ReviewRow":
        return cls(
            index=candidate.index,
            type=candidate.type,
            amount=candidate.amount,
            description=candidate.description,
            transaction_date=candidate.transaction_date,
            reference=candidate.reference,
            suggested_tags=merge_tags((), suggested_tags),
        )

    @property
    def candidate(self) -> CandidateTransaction:
        return CandidateTransaction(
            index=self.index,
            type=self.type,
            amount=self.amount,
            description=self.description,
            transaction_date=self.transaction_date,
            reference=self.reference,
        )

    def with_tags(self, tags: Iterable[str]) -> "ReviewRow":
        return replace(self, suggested_tags=merge_tags(self.suggested_tags, tags))

    def to_dict(self) -> dict:
        data = self.candidate.to_dict()
        data.update({
            "suggested_tags": list(self.suggested_tags),
            "excluded": self.excluded,
            "duplicate": self.duplicate,
            "rules_applied": self.rules_applied,
        })
        return data
