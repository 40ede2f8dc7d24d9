"""
Persistence Collaborators

Async interfaces for the stores the import workflow talks to, plus in-memory
implementations used for development and tests. SQL-backed versions live in
``sql_store``.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from .classifier import Tag
from .models import CandidateTransaction, duplicate_key
from .tag_rules import TagRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredTagRule:
    """A tag rule as persisted for a profile."""

    id: int
    profile_id: int
    rule: TagRule

    def to_dict(self) -> dict:
        return {"id": self.id, "profile_id": self.profile_id, **self.rule.to_dict()}


class TransactionStore(ABC):
    """Persisted transactions of a profile."""

    @abstractmethod
    async def create_transaction(self, profile_id: int, transaction: CandidateTransaction) -> int:
        """Insert a transaction and return its id."""

    @abstractmethod
    async def set_tags_for_transaction(self, transaction_id: int, tag_ids: Sequence[int]) -> None:
        """Replace the tags attached to a transaction."""

    @abstractmethod
    async def find_duplicate_keys(
        self,
        profile_id: int,
        candidates: Sequence[tuple[str, Decimal]],
    ) -> set[str]:
        """Return ``date:amount`` keys of candidates that already exist."""


class TagStore(ABC):
    """Tag vocabulary of a profile."""

    @abstractmethod
    async def list_tags(self, profile_id: int) -> list[Tag]:
        """List the profile's tags."""

    @abstractmethod
    async def create_tag(self, profile_id: int, name: str) -> int:
        """Create a tag and return its id."""


class TagRuleStore(ABC):
    """Durable, profile-scoped tag rules."""

    @abstractmethod
    async def list_rules(self, profile_id: int) -> list[StoredTagRule]:
        """List rules in creation order."""

    @abstractmethod
    async def create_rule(self, profile_id: int, rule: TagRule) -> int:
        """Create a rule and return its id."""

    @abstractmethod
    async def update_rule(self, rule_id: int, rule: TagRule) -> bool:
        """Overwrite a rule; False when it does not exist."""

    @abstractmethod
    async def delete_rule(self, rule_id: int) -> bool:
        """Delete a rule; False when it does not exist."""

    @abstractmethod
    async def replace_all(self, profile_id: int, rules: Sequence[TagRule]) -> None:
        """Replace every rule of the profile with the given list."""


class InMemoryTransactionStore(TransactionStore):
    """Transaction store kept in process memory."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.transactions: dict[int, dict] = {}
        self.transaction_tags: dict[int, list[int]] = {}

    async def create_transaction(self, profile_id: int, transaction: CandidateTransaction) -> int:
        transaction_id = next(self._ids)
        self.transactions[transaction_id] = {
            "id": transaction_id,
            "profile_id": profile_id,
            "type": transaction.type.value,
            "amount": transaction.amount,
            "description": transaction.description or None,
            "transaction_date": transaction.transaction_date,
            "reference": transaction.reference or None,
        }
        return transaction_id

    async def set_tags_for_transaction(self, transaction_id: int, tag_ids: Sequence[int]) -> None:
        self.transaction_tags[transaction_id] = list(tag_ids)

    async def find_duplicate_keys(
        self,
        profile_id: int,
        candidates: Sequence[tuple[str, Decimal]],
    ) -> set[str]:
        wanted = {duplicate_key(d, a) for d, a in candidates}
        existing = {
            duplicate_key(t["transaction_date"], t["amount"])
            for t in self.transactions.values()
            if t["profile_id"] == profile_id
        }
        return wanted & existing


class InMemoryTagStore(TagStore):
    """Tag store kept in process memory."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.tags: dict[int, list[Tag]] = {}

    async def list_tags(self, profile_id: int) -> list[Tag]:
        return list(self.tags.get(profile_id, []))

    async def create_tag(self, profile_id: int, name: str) -> int:
        tag = Tag(id=next(self._ids), name=name)
        self.tags.setdefault(profile_id, []).append(tag)
        return tag.id


class InMemoryTagRuleStore(TagRuleStore):
    """Tag rule store kept in process memory."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.rules: dict[int, StoredTagRule] = {}

    async def list_rules(self, profile_id: int) -> list[StoredTagRule]:
        return [r for r in self.rules.values() if r.profile_id == profile_id]

    async def create_rule(self, profile_id: int, rule: TagRule) -> int:
        rule_id = next(self._ids)
        self.rules[rule_id] = StoredTagRule(id=rule_id, profile_id=profile_id, rule=rule)
        return rule_id

    async def update_rule(self, rule_id: int, rule: TagRule) -> bool:
        stored = self.rules.get(rule_id)
        if stored is None:
            return False
        self.rules[rule_id] = StoredTagRule(id=rule_id, profile_id=stored.profile_id, rule=rule)
        return True

    async def delete_rule(self, rule_id: int) -> bool:
        return self.rules.pop(rule_id, None) is not None

    async def replace_all(self, profile_id: int, rules: Sequence[TagRule]) -> None:
        self.rules = {k: v for k, v in self.rules.items() if v.profile_id != profile_id}
        for rule in rules:
            await self.create_rule(profile_id, rule)
        logger.info(f"Saved {len(rules)} tag rules for profile {profile_id}")
