"""
Statement Import Module

Staged CSV import of bank statements: parsing, assisted column mapping and
classification, duplicate detection, tag rules, review and commit.
"""

from .assistant import ClassificationAssistant, ClaudeAssistant
from .classifier import Classification, ClassificationResult, Tag, TransactionClassifier
from .column_mapper import CanonicalField, ColumnMapper, ColumnMapping, default_mapping
from .committer import Committer, CommitResult
from .config import ImportSettings
from .duplicate_detector import DeduplicationResult, DuplicateDetector
from .exceptions import (
    AssistantError,
    InvalidTransitionError,
    NothingToCommitError,
    ParseError,
    RowNotFoundError,
    StatementImportError,
)
from .models import CandidateTransaction, ReviewRow, TransactionType
from .normalizer import apply_mapping, normalize_date, parse_amount
from .parser import ParseResult, RawRow, parse
from .session import ImportSession, Stage, can_transition
from .stores import (
    InMemoryTagRuleStore,
    InMemoryTagStore,
    InMemoryTransactionStore,
    StoredTagRule,
    TagRuleStore,
    TagStore,
    TransactionStore,
)
from .tag_rules import ApplyResult, MatchMode, TagRule, apply_rules

__all__ = [
    # Session
    "ImportSession",
    "Stage",
    "can_transition",
    "ImportSettings",
    # Parsing and mapping
    "parse",
    "ParseResult",
    "RawRow",
    "CanonicalField",
    "ColumnMapping",
    "ColumnMapper",
    "default_mapping",
    "apply_mapping",
    "parse_amount",
    "normalize_date",
    # Models
    "CandidateTransaction",
    "ReviewRow",
    "TransactionType",
    # Classification
    "ClassificationAssistant",
    "ClaudeAssistant",
    "TransactionClassifier",
    "Classification",
    "ClassificationResult",
    "Tag",
    # Duplicates and commit
    "DuplicateDetector",
    "DeduplicationResult",
    "Committer",
    "CommitResult",
    # Tag rules
    "TagRule",
    "MatchMode",
    "ApplyResult",
    "apply_rules",
    # Stores
    "TransactionStore",
    "TagStore",
    "TagRuleStore",
    "StoredTagRule",
    "InMemoryTransactionStore",
    "InMemoryTagStore",
    "InMemoryTagRuleStore",
    # Errors
    "StatementImportError",
    "ParseError",
    "InvalidTransitionError",
    "AssistantError",
    "RowNotFoundError",
    "NothingToCommitError",
]
