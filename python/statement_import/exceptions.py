"""
Statement Import Exceptions

Errors raised by the import workflow. Data problems inside individual cells or
rules never raise; they are coerced or logged where they occur.
"""


class StatementImportError(Exception):
    """Base class for all import workflow errors."""


class ParseError(StatementImportError):
    """CSV text has no headers or no data rows."""


class InvalidTransitionError(StatementImportError):
    """Requested stage transition is not allowed from the current stage."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move import session from {current.value} to {target.value}")


class AssistantError(StatementImportError):
    """Classification assistant is unavailable or returned an unusable reply."""


class RowNotFoundError(StatementImportError, KeyError):
    """No review row carries the requested index."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No review row with index {index}")

    def __str__(self) -> str:
        return self.args[0]


class NothingToCommitError(StatementImportError):
    """Every review row is excluded."""
