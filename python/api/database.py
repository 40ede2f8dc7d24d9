"""
Database Connection Module

Builds the SQLAlchemy engine and the SQL-backed import stores.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from statement_import.sql_store import (
    SqlTagRuleStore,
    SqlTagStore,
    SqlTransactionStore,
    create_schema,
)
from statement_import.stores import TagRuleStore, TagStore, TransactionStore


@dataclass
class Stores:
    """The persistence collaborators an import session needs."""

    transactions: TransactionStore
    tags: TagStore
    rules: TagRuleStore


def build_engine(database_url: str) -> Engine:
    """Create an engine for the configured database.

    Args:
        database_url: SQLAlchemy URL; PostgreSQL in production, SQLite locally

    Returns:
        Engine with the import tables created
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )

    create_schema(engine)
    return engine


def sql_stores(engine: Engine) -> Stores:
    return Stores(
        transactions=SqlTransactionStore(engine),
        tags=SqlTagStore(engine),
        rules=SqlTagRuleStore(engine),
    )


def get_stores(request: Request) -> Stores:
    """Stores for FastAPI dependency injection."""
    return request.app.state.stores
