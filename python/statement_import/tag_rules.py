"""
Tag Rule Engine

Matches transaction descriptions against user-defined tag rules. A matching
rule adds its tag to the row and may rewrite the row's description.

Rules are applied at most once per row: a row that matched during an apply
pass is marked ``rules_applied`` and skipped by every later pass, so running
apply again after editing or adding rules never duplicates tags or repeats
description rewrites. Rows that matched nothing stay eligible.

All functions here are pure. They take tuples of frozen rows and return new
tuples, so previews such as ``match_count`` cannot change session state.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import lru_cache
from typing import Iterable, Sequence

from .models import ReviewRow, merge_tags

logger = logging.getLogger(__name__)


class MatchMode(str, Enum):
    """How a rule's match text is tested against a description."""

    SUBSTRING = "substring"
    FULL_STRING = "full_string"
    REGEX = "regex"


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid regex in tag rule {pattern!r}: {e}")
        return None


@dataclass(frozen=True)
class TagRule:
    """A description-matching rule that suggests a tag."""

    match_text: str
    tag: str
    match_mode: MatchMode = MatchMode.SUBSTRING
    replacement_description: str = ""

    @property
    def is_active(self) -> bool:
        """Rules with blank match text or tag are kept for editing but never applied."""
        return bool(self.match_text.strip() and self.tag.strip())

    def matches(self, description: str) -> bool:
        """Test a description. An invalid regex is a non-match, never an error."""
        if not self.match_text.strip():
            return False

        description = description or ""

        if self.match_mode is MatchMode.SUBSTRING:
            return self.match_text.casefold() in description.casefold()
        if self.match_mode is MatchMode.FULL_STRING:
            return self.match_text.casefold() == description.casefold()
        if self.match_mode is MatchMode.REGEX:
            pattern = _compile(self.match_text)
            return bool(pattern and pattern.search(description))
        return False

    def to_dict(self) -> dict:
        return {
            "match_text": self.match_text,
            "match_mode": self.match_mode.value,
            "tag": self.tag,
            "replacement_description": self.replacement_description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TagRule":
        return cls(
            match_text=data.get("match_text", ""),
            tag=data.get("tag", ""),
            match_mode=MatchMode(data.get("match_mode") or MatchMode.SUBSTRING.value),
            replacement_description=data.get("replacement_description") or "",
        )


@dataclass
class ApplyResult:
    """Result of one apply pass."""

    rows: tuple[ReviewRow, ...] = field(default_factory=tuple)
    rules_used: int = 0
    checked: int = 0
    matched: int = 0

    @property
    def summary(self) -> str:
        return (
            f"Applied {self.rules_used} tag rule(s) to {self.checked} unchecked row(s). "
            f"{self.matched} row(s) matched."
        )


def active_rules(rules: Iterable[TagRule]) -> tuple[TagRule, ...]:
    return tuple(r for r in rules if r.is_active)


def apply_rules_to_row(row: ReviewRow, rules: Sequence[TagRule]) -> ReviewRow:
    """Run every rule over one eligible row, in list order.

    Tags accumulate with set semantics; the last matching rule with a
    replacement description decides the final description. Later rules see
    the description as rewritten by earlier ones.
    """
    tags: list[str] = []
    description = row.description
    matched = False

    for rule in rules:
        if not rule.matches(description):
            continue

        matched = True
        tags.append(rule.tag)
        if rule.replacement_description.strip():
            description = rule.replacement_description

    if not matched:
        return row

    return replace(
        row,
        description=description,
        suggested_tags=merge_tags(row.suggested_tags, tags),
        rules_applied=True,
    )


def apply_rules(rows: Sequence[ReviewRow], rules: Sequence[TagRule]) -> ApplyResult:
    """Apply the active rules to every row not yet processed by a matching pass."""
    rules = active_rules(rules)
    result = ApplyResult(rows=tuple(rows), rules_used=len(rules))
    if not rules:
        return result

    updated = []
    for row in rows:
        if row.rules_applied:
            updated.append(row)
            continue

        result.checked += 1
        new_row = apply_rules_to_row(row, rules)
        if new_row.rules_applied:
            result.matched += 1
        updated.append(new_row)

    result.rows = tuple(updated)
    logger.info(result.summary)
    return result


def match_count(rows: Sequence[ReviewRow], rule: TagRule) -> int:
    """How many rows this rule would match, regardless of ``rules_applied``."""
    if not rule.match_text.strip():
        return 0
    return sum(1 for row in rows if rule.matches(row.description))


def affected_count(rows: Sequence[ReviewRow], rules: Sequence[TagRule]) -> int:
    """How many eligible rows the next apply pass would change."""
    rules = active_rules(rules)
    if not rules:
        return 0
    return sum(
        1 for row in rows
        if not row.rules_applied and any(r.matches(row.description) for r in rules)
    )
