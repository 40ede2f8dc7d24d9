"""
Import Session Module

Staging state machine for one statement import:

    UPLOAD -> MAPPING -> REVIEW -> COMMITTED

Review rows live only in the session until commit. Every await on a
collaborator captures the session version first; if the session was reset or
re-mapped while the call was in flight, the result is logged and dropped.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Sequence

from .assistant import ClassificationAssistant
from .classifier import (
    ClassificationResult,
    Tag,
    TransactionClassifier,
    classifications_from_response,
)
from .column_mapper import (
    CanonicalField,
    ColumnMapper,
    ColumnMapping,
    default_mapping,
    explicit_mapping,
    mapping_conflicts,
    mapping_from_response,
)
from .committer import Committer, CommitResult
from .config import ImportSettings
from .duplicate_detector import DuplicateDetector
from .exceptions import (
    AssistantError,
    InvalidTransitionError,
    NothingToCommitError,
    RowNotFoundError,
)
from .models import ReviewRow, TransactionType, merge_tags
from .normalizer import apply_mapping, parse_amount
from .parser import ParseResult, RawRow, parse
from .stores import TagRuleStore, TagStore, TransactionStore
from .tag_rules import (
    ApplyResult,
    MatchMode,
    TagRule,
    active_rules,
    affected_count,
    apply_rules,
    match_count,
)

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Workflow stage of an import session."""

    UPLOAD = "upload"
    MAPPING = "mapping"
    REVIEW = "review"
    COMMITTED = "committed"


# Allowed (from -> to) moves; self-loops are the in-stage actions
TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.UPLOAD: frozenset({Stage.UPLOAD, Stage.MAPPING}),
    Stage.MAPPING: frozenset({Stage.UPLOAD, Stage.MAPPING, Stage.REVIEW}),
    Stage.REVIEW: frozenset({Stage.UPLOAD, Stage.MAPPING, Stage.REVIEW, Stage.COMMITTED}),
    Stage.COMMITTED: frozenset({Stage.UPLOAD}),
}

EDITABLE_FIELDS = {
    "type", "amount", "description", "transaction_date", "reference",
    "suggested_tags", "excluded",
}


def can_transition(current: Stage, target: Stage) -> bool:
    return target in TRANSITIONS[current]


class ImportSession:
    """In-memory state of one import, from uploaded text to commit."""

    def __init__(
        self,
        profile_id: int,
        transaction_store: TransactionStore,
        tag_store: TagStore,
        rule_store: TagRuleStore,
        assistant: ClassificationAssistant | None = None,
        settings: ImportSettings | None = None,
    ):
        """Initialize the session.

        Args:
            profile_id: Profile that owns imported transactions and rules
            transaction_store: Persisted transactions (duplicates, commit)
            tag_store: Profile tag vocabulary
            rule_store: Durable tag rules
            assistant: Classification assistant; None disables assisted steps
            settings: Import settings
        """
        self.profile_id = profile_id
        self.settings = settings or ImportSettings()
        self.tag_store = tag_store
        self.rule_store = rule_store
        self.assistant = assistant

        self.mapper = ColumnMapper(assistant) if assistant else None
        self.classifier = (
            TransactionClassifier(assistant, self.settings.classify_batch_size)
            if assistant else None
        )
        self.detector = DuplicateDetector(transaction_store)
        self.committer = Committer(transaction_store, tag_store)

        self.inverse_types = self.settings.inverse_types
        self.tag_rules: tuple[TagRule, ...] = ()
        self.version = 0
        self._clear()

    def _clear(self) -> None:
        self.stage = Stage.UPLOAD
        self.headers: tuple[str, ...] = ()
        self.raw_rows: tuple[RawRow, ...] = ()
        self.mapping: tuple[ColumnMapping, ...] = ()
        self.rows: tuple[ReviewRow, ...] = ()
        self.commit_result: CommitResult | None = None
        self.status_message = ""
        self.error_message = ""

    # ─── Stage handling ─────────────────────────────────────────────

    def _check(self, target: Stage) -> None:
        if not can_transition(self.stage, target):
            raise InvalidTransitionError(self.stage, target)

    def _require(self, stage: Stage, target: Stage | None = None) -> None:
        """Fail unless the session is in ``stage`` and may move to ``target``."""
        target = target or stage
        if self.stage is not stage:
            raise InvalidTransitionError(self.stage, target)
        self._check(target)

    def _move(self, target: Stage) -> None:
        self._check(target)
        if target is not self.stage:
            logger.info(f"Import session for profile {self.profile_id}: {self.stage.value} -> {target.value}")
        self.stage = target

    def _is_stale(self, token: int, action: str) -> bool:
        if token != self.version:
            logger.warning(
                f"Discarding {action} result: session moved from version {token} to {self.version}"
            )
            return True
        return False

    def reset(self) -> None:
        """Discard everything except the tag rules and return to UPLOAD."""
        self._move(Stage.UPLOAD)
        self.version += 1
        self._clear()

    def back_to_mapping(self) -> None:
        """Drop review rows and their annotations to edit the mapping again."""
        self._require(Stage.REVIEW, Stage.MAPPING)
        self._move(Stage.MAPPING)
        self.version += 1
        self.rows = ()
        self.commit_result = None
        self.status_message = ""
        self.error_message = ""

    # ─── Upload ─────────────────────────────────────────────────────

    async def load(
        self,
        text: str,
        detect_mapping: bool = True,
        guidance: str | None = None,
    ) -> ParseResult:
        """Parse uploaded CSV text and move to MAPPING.

        Raises:
            ParseError: If the text has no headers or rows; the session stays in UPLOAD
        """
        self._require(Stage.UPLOAD, Stage.MAPPING)
        result = parse(text)

        self.version += 1
        self.headers = tuple(result.headers)
        self.raw_rows = tuple(result.rows)
        self.mapping = tuple(default_mapping(result.headers))
        self.error_message = ""
        self._move(Stage.MAPPING)

        if detect_mapping:
            await self.detect_mapping(guidance)

        return result

    # ─── Mapping ────────────────────────────────────────────────────

    @property
    def sample_rows(self) -> list[RawRow]:
        return list(self.raw_rows[:self.settings.sample_row_count])

    async def detect_mapping(self, guidance: str | None = None) -> list[ColumnMapping] | None:
        """Ask the assistant for a mapping, falling back to keyword heuristics.

        Returns:
            The new mapping, or None if the session moved on meanwhile
        """
        self._require(Stage.MAPPING)
        token = self.version

        if self.mapper is None:
            mapping = default_mapping(self.headers)
        else:
            self.status_message = "Detecting column mapping..."
            try:
                mapping = await self.mapper.detect(self.headers, self.sample_rows, guidance)
                self.status_message = ""
            except AssistantError as e:
                logger.error(f"Column mapping detection failed: {e}")
                mapping = default_mapping(self.headers)
                self.status_message = f"Mapping assistant unavailable, using keyword mapping: {e}"

        if self._is_stale(token, "mapping detection"):
            return None

        self.mapping = tuple(mapping)
        return mapping

    def set_mapping(self, mapping: Mapping[str, str] | Iterable[ColumnMapping]) -> None:
        """Replace the mapping with a caller-supplied one, trusted as-is."""
        self._require(Stage.MAPPING)
        self.mapping = tuple(explicit_mapping(mapping))

    def update_mapping(self, csv_column: str, field: CanonicalField | str) -> None:
        """Point one column at a different field."""
        self._require(Stage.MAPPING)
        field = CanonicalField(field)
        self.mapping = tuple(
            replace(m, field=field) if m.csv_column == csv_column else m
            for m in self.mapping
        )

    def apply_mapping_response(self, response_text: str) -> list[ColumnMapping]:
        """Use a hand-edited prompt's assistant reply as the mapping.

        Raises:
            AssistantError: If the reply holds no mapping array
        """
        self._require(Stage.MAPPING)
        mapping = mapping_from_response(response_text, self.headers)
        self.mapping = tuple(mapping)
        self.status_message = "Mapping updated from prompt response."
        return mapping

    async def run_prompt(self, prompt: str) -> str:
        """Send a raw prompt to the assistant, for prompt editing."""
        if self.assistant is None:
            raise AssistantError("No classification assistant configured")
        return await self.assistant.complete(prompt)

    async def _list_tags(self) -> list[Tag]:
        try:
            return await self.tag_store.list_tags(self.profile_id)
        except Exception as e:
            logger.warning(f"Could not load tags for profile {self.profile_id}: {e}")
            return []

    async def apply_mapping(
        self,
        classify: bool = True,
        guidance: str | None = None,
    ) -> tuple[ReviewRow, ...] | None:
        """Build review rows from the mapping, then flag duplicates.

        Args:
            classify: Ask the assistant for types and tags first
            guidance: Extra instructions for the assistant

        Returns:
            The review rows, or None if the session moved on meanwhile
        """
        self._require(Stage.MAPPING, Stage.REVIEW)
        token = self.version
        self.error_message = ""

        conflicts = mapping_conflicts(self.mapping)
        warnings = [
            f"{field.value} is mapped from several columns; using {columns[-1]!r}"
            for field, columns in conflicts.items()
        ]
        for warning in warnings:
            logger.warning(warning)

        candidates = apply_mapping(self.raw_rows, self.mapping)

        classified = ClassificationResult()
        if classify and self.classifier is not None:
            self.status_message = "Classifying transactions..."
            tags = await self._list_tags()
            classified = await self.classifier.classify(candidates, tags, guidance)
            warnings.extend(classified.errors)
            if self._is_stale(token, "classification"):
                return None

        by_index = classified.by_index()
        rows = []
        for candidate in candidates:
            cls = by_index.get(candidate.index)
            row = ReviewRow.from_candidate(
                candidate, cls.suggested_tags if cls else ()
            )
            txn_type = cls.type if cls else row.type
            if self.inverse_types:
                txn_type = txn_type.inverted()
            rows.append(replace(row, type=txn_type))

        self.status_message = "Checking for duplicate transactions..."
        try:
            checked = await self.detector.check_rows(self.profile_id, rows)
            flagged = checked.rows
        except Exception as e:
            logger.warning(f"Failed to check duplicates: {e}")
            warnings.append(f"Duplicate check failed: {e}")
            flagged = tuple(rows)

        if self._is_stale(token, "duplicate check"):
            return None

        self.rows = flagged
        self.commit_result = None
        self.status_message = "; ".join(warnings)
        self._move(Stage.REVIEW)
        return self.rows

    # ─── Review ─────────────────────────────────────────────────────

    def get_row(self, index: int) -> ReviewRow:
        for row in self.rows:
            if row.index == index:
                return row
        raise RowNotFoundError(index)

    def _replace_row(self, index: int, new_row: ReviewRow) -> None:
        self.rows = tuple(new_row if r.index == index else r for r in self.rows)

    def update_row(self, index: int, /, **changes) -> ReviewRow:
        """Edit fields of one review row.

        Raises:
            RowNotFoundError: If no row has this index
            ValueError: If a field is not editable
        """
        self._require(Stage.REVIEW)
        row = self.get_row(index)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {sorted(unknown)}")

        if "type" in changes:
            changes["type"] = TransactionType.coerce(changes["type"], row.type)
        if "amount" in changes:
            amount = changes["amount"]
            changes["amount"] = abs(amount if isinstance(amount, Decimal) else parse_amount(str(amount)))
        if "suggested_tags" in changes:
            changes["suggested_tags"] = merge_tags((), changes["suggested_tags"])

        new_row = replace(row, **changes)
        self._replace_row(index, new_row)
        return new_row

    def toggle_exclude(self, index: int) -> ReviewRow:
        row = self.get_row(index)
        return self.update_row(index, excluded=not row.excluded)

    def toggle_exclude_all(self) -> None:
        """Exclude every row, or include every row if all are already excluded."""
        self._require(Stage.REVIEW)
        exclude = not all(r.excluded for r in self.rows)
        self.rows = tuple(replace(r, excluded=exclude) for r in self.rows)

    def toggle_exclude_duplicates(self) -> None:
        """Same as toggle_exclude_all, restricted to duplicate rows."""
        self._require(Stage.REVIEW)
        exclude = not all(r.excluded for r in self.rows if r.duplicate)
        self.rows = tuple(
            replace(r, excluded=exclude) if r.duplicate else r for r in self.rows
        )

    async def reclassify_row(self, index: int, guidance: str | None = None) -> ReviewRow | None:
        """Ask the assistant again about a single row; other rows are untouched.

        Returns:
            The updated row, or None if the session moved on meanwhile

        Raises:
            AssistantError: If the assistant is unavailable
        """
        self._require(Stage.REVIEW)
        row = self.get_row(index)
        if self.classifier is None:
            raise AssistantError("No classification assistant configured")

        token = self.version
        tags = await self._list_tags()
        try:
            cls = await self.classifier.classify_single(row.candidate, tags, guidance)
        except AssistantError as e:
            self.error_message = f"Classification failed: {e}"
            raise

        if self._is_stale(token, "reclassification"):
            return None

        # Edits made while the request was in flight are kept
        current = self.get_row(index)
        new_row = replace(current, type=cls.type, suggested_tags=cls.suggested_tags)
        self._replace_row(index, new_row)
        return new_row

    def apply_classification_response(self, response_text: str) -> int:
        """Merge a hand-edited classification reply into the review rows.

        Rows the reply leaves out, or mentions without tags, keep their tags.

        Returns:
            Number of rows whose type or tags changed

        Raises:
            AssistantError: If the reply holds no classification array
        """
        self._require(Stage.REVIEW)
        classifications = classifications_from_response(
            response_text, [r.candidate for r in self.rows]
        )
        by_index = {c.index: c for c in classifications}

        updated = 0
        rows = []
        for row in self.rows:
            cls = by_index.get(row.index)
            if cls and (cls.type is not row.type or cls.suggested_tags):
                row = replace(
                    row,
                    type=cls.type,
                    suggested_tags=cls.suggested_tags or row.suggested_tags,
                )
                updated += 1
            rows.append(row)

        self.rows = tuple(rows)
        self.status_message = "Classifications updated from prompt response."
        return updated

    @property
    def included_rows(self) -> tuple[ReviewRow, ...]:
        return tuple(r for r in self.rows if not r.excluded)

    @property
    def included_count(self) -> int:
        return len(self.included_rows)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for r in self.rows if r.duplicate)

    @property
    def untagged_count(self) -> int:
        return sum(1 for r in self.included_rows if not r.suggested_tags)

    # ─── Tag rules ──────────────────────────────────────────────────

    async def load_tag_rules(self) -> tuple[TagRule, ...]:
        """Load the profile's saved rules into the session."""
        try:
            stored = await self.rule_store.list_rules(self.profile_id)
        except Exception as e:
            logger.error(f"Failed to load tag rules: {e}")
            self.error_message = f"Failed to load tag rules: {e}"
            return self.tag_rules

        self.tag_rules = tuple(s.rule for s in stored)
        return self.tag_rules

    def set_tag_rules(self, rules: Sequence[TagRule]) -> None:
        self.tag_rules = tuple(rules)

    def add_tag_rule(self, rule: TagRule | None = None) -> TagRule:
        """Add a rule at the top of the list; a blank one by default."""
        rule = rule or TagRule(match_text="", tag="")
        self.tag_rules = (rule,) + self.tag_rules
        return rule

    def update_tag_rule(self, position: int, **changes) -> TagRule:
        if "match_mode" in changes:
            changes["match_mode"] = MatchMode(changes["match_mode"])
        rule = replace(self.tag_rules[position], **changes)
        rules = list(self.tag_rules)
        rules[position] = rule
        self.tag_rules = tuple(rules)
        return rule

    def remove_tag_rule(self, position: int) -> TagRule:
        rules = list(self.tag_rules)
        removed = rules.pop(position)
        self.tag_rules = tuple(rules)
        return removed

    async def apply_tag_rules(self, rules: Sequence[TagRule] | None = None) -> ApplyResult | None:
        """Save the active rules and apply them to rows not yet matched.

        Args:
            rules: New rule list for the session; defaults to the current one

        Returns:
            The apply result, or None if the session moved on meanwhile
        """
        self._require(Stage.REVIEW)
        if rules is not None:
            self.tag_rules = tuple(rules)

        active = active_rules(self.tag_rules)
        if not active:
            return ApplyResult(rows=self.rows)

        token = self.version
        try:
            await self.rule_store.replace_all(self.profile_id, active)
        except Exception as e:
            logger.error(f"Failed to save tag rules: {e}")
            self.error_message = f"Failed to save tag rules: {e}"

        if self._is_stale(token, "tag rule application"):
            return None

        result = apply_rules(self.rows, active)
        self.rows = result.rows
        self.status_message = result.summary
        return result

    def match_count(self, rule: TagRule) -> int:
        """Rows the rule would match, for previewing it. Never changes rows."""
        return match_count(self.rows, rule)

    def affected_count(self, rules: Sequence[TagRule] | None = None) -> int:
        """Rows the next apply pass would change."""
        return affected_count(self.rows, self.tag_rules if rules is None else rules)

    # ─── Commit ─────────────────────────────────────────────────────

    async def commit(self) -> CommitResult:
        """Persist the non-excluded rows and move to COMMITTED.

        Raises:
            NothingToCommitError: If every row is excluded
        """
        self._require(Stage.REVIEW, Stage.COMMITTED)
        to_import = self.included_rows
        if not to_import:
            self.error_message = "No transactions selected for import."
            raise NothingToCommitError(self.error_message)

        token = self.version
        self.status_message = f"Importing {len(to_import)} transactions..."
        try:
            result = await self.committer.commit(self.profile_id, to_import)
        except Exception as e:
            logger.error(f"Import failed: {e}")
            self.status_message = ""
            self.error_message = f"Import failed: {e}"
            raise

        if self._is_stale(token, "commit"):
            return result

        self.commit_result = result
        self.status_message = (
            f"Successfully imported {result.imported} transactions!"
            if result.success else
            f"Imported {result.imported} transactions with {len(result.errors)} errors."
        )
        self._move(Stage.COMMITTED)
        return result

    def to_dict(self) -> dict:
        return {
            "profile_id": self.profile_id,
            "stage": self.stage.value,
            "version": self.version,
            "headers": list(self.headers),
            "row_count": len(self.raw_rows),
            "mapping": [m.to_dict() for m in self.mapping],
            "rows": [r.to_dict() for r in self.rows],
            "tag_rules": [r.to_dict() for r in self.tag_rules],
            "included_count": self.included_count,
            "duplicate_count": self.duplicate_count,
            "untagged_count": self.untagged_count,
            "inverse_types": self.inverse_types,
            "status_message": self.status_message,
            "error_message": self.error_message,
            "commit_result": self.commit_result.to_dict() if self.commit_result else None,
        }
