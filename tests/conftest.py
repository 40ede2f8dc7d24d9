"""
Pytest configuration and fixtures for statement import tests.
"""

import json
import sys
from pathlib import Path

import pytest

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from statement_import.assistant import ClassificationAssistant
from statement_import.config import ImportSettings
from statement_import.stores import (
    InMemoryTagRuleStore,
    InMemoryTagStore,
    InMemoryTransactionStore,
)


class FakeAssistant(ClassificationAssistant):
    """Deterministic assistant returning canned replies in order.

    A reply may be an exception instance, which is raised instead. When a
    ``responder`` is given it is called with each prompt instead.
    """

    def __init__(self, replies=None, responder=None):
        self.replies = list(replies or [])
        self.responder = responder
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.responder(prompt) if self.responder else self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def transactions_in_prompt(prompt: str) -> list[dict]:
    """Recover the transaction list embedded in a classification prompt."""
    start = prompt.index("Transactions to classify:\n") + len("Transactions to classify:\n")
    end = prompt.index("\n\nRules:")
    return json.loads(prompt[start:end])


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config_dir() -> Path:
    """Return the config directory path."""
    return PROJECT_ROOT / "config"


@pytest.fixture
def settings() -> ImportSettings:
    """Default settings with the assistant disabled."""
    return ImportSettings(use_assistant=False)


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def tag_store() -> InMemoryTagStore:
    return InMemoryTagStore()


@pytest.fixture
def rule_store() -> InMemoryTagRuleStore:
    return InMemoryTagRuleStore()


@pytest.fixture
def fake_assistant():
    """Factory for FakeAssistant instances."""
    return FakeAssistant


@pytest.fixture
def echo_classifier():
    """Assistant that classifies every transaction it is sent.

    Descriptions containing a keyword get the keyword's tag; everything keeps
    its current type.
    """
    def make(keyword_tags: dict[str, str] | None = None) -> FakeAssistant:
        keyword_tags = keyword_tags or {}

        def respond(prompt: str) -> str:
            replies = []
            for txn in transactions_in_prompt(prompt):
                tags = [
                    tag for keyword, tag in keyword_tags.items()
                    if keyword.lower() in txn["description"].lower()
                ]
                replies.append({
                    "index": txn["index"],
                    "type": txn["currentType"],
                    "suggestedTags": tags,
                })
            return json.dumps(replies)

        return FakeAssistant(responder=respond)

    return make


@pytest.fixture
def sample_csv_content() -> str:
    """Return sample statement CSV content."""
    return """Date,Description,Amount,Reference
2024-02-01,STARBUCKS #123,-10.00,R1
2024-02-02,Payroll ACME,2500.00,R2
2024-02-03,Shell Gas,-45.50,R3
"""


@pytest.fixture
def bank_csv_content() -> str:
    """Return bank-style CSV with quoting, a BOM and split text columns."""
    return (
        "\ufeffPosting Date,Payee,Memo,Amount,Check No\r\n"
        '01/15/2025,"ACME, Inc.",Invoice 12,"1,250.00",1001\r\n'
        '01/16/2025,Electric Co,"Bill ""Jan""",(84.20),\r\n'
        "\r\n"
        "01/17/2025,Coffee Shop,,-4.50\r\n"
    )
