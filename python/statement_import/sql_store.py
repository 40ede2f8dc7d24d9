"""
SQL Store Module

SQLAlchemy Core implementations of the import stores. PostgreSQL (psycopg2) in
production, SQLite for local runs and tests. Queries are blocking, so every
store method hands its work to a thread with ``asyncio.to_thread``.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Sequence

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

from .classifier import Tag
from .models import CandidateTransaction, duplicate_key
from .stores import StoredTagRule, TagRuleStore, TagStore, TransactionStore
from .tag_rules import MatchMode, TagRule

logger = logging.getLogger(__name__)

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("profile_id", Integer, nullable=False, index=True),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(18, 4), nullable=False),
    Column("description", Text),
    Column("transaction_date", String(32), nullable=False),
    Column("reference", String(255)),
    Column("created_at", DateTime, server_default=func.now()),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("profile_id", Integer, nullable=False, index=True),
    Column("name", String(100), nullable=False),
)

transaction_tags = Table(
    "transaction_tags",
    metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

tag_rules = Table(
    "tag_rules",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("profile_id", Integer, nullable=False, index=True),
    Column("match_text", Text, nullable=False),
    Column("match_mode", String(20), nullable=False, default=MatchMode.SUBSTRING.value),
    Column("tag", String(100), nullable=False),
    Column("replacement_description", Text),
    Column("created_at", DateTime, server_default=func.now()),
)


def create_schema(engine: Engine) -> None:
    """Create the import tables if they do not exist."""
    metadata.create_all(engine)


def _rule_values(rule: TagRule) -> dict:
    return {
        "match_text": rule.match_text,
        "match_mode": rule.match_mode.value,
        "tag": rule.tag,
        "replacement_description": rule.replacement_description or None,
    }


def _stored_rule(row) -> StoredTagRule:
    return StoredTagRule(
        id=row.id,
        profile_id=row.profile_id,
        rule=TagRule(
            match_text=row.match_text,
            tag=row.tag,
            match_mode=MatchMode(row.match_mode),
            replacement_description=row.replacement_description or "",
        ),
    )


class SqlTransactionStore(TransactionStore):
    """Transactions table access."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _create(self, profile_id: int, transaction: CandidateTransaction) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(transactions).values(
                    profile_id=profile_id,
                    type=transaction.type.value,
                    amount=transaction.amount,
                    description=transaction.description or None,
                    transaction_date=transaction.transaction_date,
                    reference=transaction.reference or None,
                )
            )
            return result.inserted_primary_key[0]

    async def create_transaction(self, profile_id: int, transaction: CandidateTransaction) -> int:
        return await asyncio.to_thread(self._create, profile_id, transaction)

    def _set_tags(self, transaction_id: int, tag_ids: Sequence[int]) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(transaction_tags).where(transaction_tags.c.transaction_id == transaction_id)
            )
            if tag_ids:
                conn.execute(
                    insert(transaction_tags),
                    [{"transaction_id": transaction_id, "tag_id": t} for t in tag_ids],
                )

    async def set_tags_for_transaction(self, transaction_id: int, tag_ids: Sequence[int]) -> None:
        await asyncio.to_thread(self._set_tags, transaction_id, list(tag_ids))

    def _find_duplicates(
        self,
        profile_id: int,
        candidates: Sequence[tuple[str, Decimal]],
    ) -> set[str]:
        wanted = {duplicate_key(d, a) for d, a in candidates}
        dates = sorted({d for d, _ in candidates})

        query = select(transactions.c.transaction_date, transactions.c.amount).where(
            transactions.c.profile_id == profile_id,
            transactions.c.transaction_date.in_(dates),
        )
        with self.engine.connect() as conn:
            existing = {
                duplicate_key(row.transaction_date, Decimal(row.amount))
                for row in conn.execute(query)
            }

        return wanted & existing

    async def find_duplicate_keys(
        self,
        profile_id: int,
        candidates: Sequence[tuple[str, Decimal]],
    ) -> set[str]:
        if not candidates:
            return set()
        return await asyncio.to_thread(self._find_duplicates, profile_id, list(candidates))


class SqlTagStore(TagStore):
    """Tags table access."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _list(self, profile_id: int) -> list[Tag]:
        query = select(tags.c.id, tags.c.name).where(tags.c.profile_id == profile_id).order_by(tags.c.id)
        with self.engine.connect() as conn:
            return [Tag(id=row.id, name=row.name) for row in conn.execute(query)]

    async def list_tags(self, profile_id: int) -> list[Tag]:
        return await asyncio.to_thread(self._list, profile_id)

    def _create(self, profile_id: int, name: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(insert(tags).values(profile_id=profile_id, name=name))
            tag_id = result.inserted_primary_key[0]
        logger.info(f"Created tag {name!r} ({tag_id}) for profile {profile_id}")
        return tag_id

    async def create_tag(self, profile_id: int, name: str) -> int:
        return await asyncio.to_thread(self._create, profile_id, name)


class SqlTagRuleStore(TagRuleStore):
    """Tag rules table access."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _list(self, profile_id: int) -> list[StoredTagRule]:
        query = select(tag_rules).where(tag_rules.c.profile_id == profile_id).order_by(tag_rules.c.id)
        with self.engine.connect() as conn:
            return [_stored_rule(row) for row in conn.execute(query)]

    async def list_rules(self, profile_id: int) -> list[StoredTagRule]:
        return await asyncio.to_thread(self._list, profile_id)

    def _create(self, profile_id: int, rule: TagRule) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(tag_rules).values(profile_id=profile_id, **_rule_values(rule))
            )
            return result.inserted_primary_key[0]

    async def create_rule(self, profile_id: int, rule: TagRule) -> int:
        return await asyncio.to_thread(self._create, profile_id, rule)

    def _update(self, rule_id: int, rule: TagRule) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(tag_rules).where(tag_rules.c.id == rule_id).values(**_rule_values(rule))
            )
            return result.rowcount > 0

    async def update_rule(self, rule_id: int, rule: TagRule) -> bool:
        return await asyncio.to_thread(self._update, rule_id, rule)

    def _delete(self, rule_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(tag_rules).where(tag_rules.c.id == rule_id))
            return result.rowcount > 0

    async def delete_rule(self, rule_id: int) -> bool:
        return await asyncio.to_thread(self._delete, rule_id)

    def _replace_all(self, profile_id: int, rules: Sequence[TagRule]) -> None:
        # One transaction, so a failed insert leaves the old rules in place
        with self.engine.begin() as conn:
            conn.execute(delete(tag_rules).where(tag_rules.c.profile_id == profile_id))
            if rules:
                conn.execute(
                    insert(tag_rules),
                    [{"profile_id": profile_id, **_rule_values(r)} for r in rules],
                )
        logger.info(f"Saved {len(rules)} tag rules for profile {profile_id}")

    async def replace_all(self, profile_id: int, rules: Sequence[TagRule]) -> None:
        await asyncio.to_thread(self._replace_all, profile_id, list(rules))
