"""
Transaction Classifier Tests

Tests for the Claude assistant wrapper, reply parsing and batch
classification.
"""

import asyncio
import json
import pytest
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

import anthropic

from statement_import.assistant import ClaudeAssistant, extract_json_array, strip_code_fences
from statement_import.classifier import (
    Classification,
    Tag,
    TransactionClassifier,
    build_classify_prompt,
    classifications_from_response,
)
from statement_import.exceptions import AssistantError
from statement_import.models import CandidateTransaction, TransactionType


def make_candidates(count: int) -> list[CandidateTransaction]:
    return [
        CandidateTransaction(
            index=i,
            type=TransactionType.WITHDRAWAL,
            amount=Decimal("10.00"),
            description=f"Purchase {i}",
            transaction_date="2024-01-01",
        )
        for i in range(count)
    ]


class TestClaudeAssistant:
    """Tests for ClaudeAssistant."""

    @pytest.fixture
    def mock_client(self):
        """Create mock async Anthropic client."""
        client = Mock()
        mock_response = Mock()
        mock_response.content = [Mock(text='[{"index": 0, "type": "fee"}]')]
        client.messages.create = AsyncMock(return_value=mock_response)
        return client

    def test_complete(self, mock_client):
        """Test prompt is sent and reply text returned."""
        assistant = ClaudeAssistant(model="test-model", client=mock_client)

        reply = asyncio.run(assistant.complete("classify these"))

        assert reply == '[{"index": 0, "type": "fee"}]'
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"] == [{"role": "user", "content": "classify these"}]

    def test_default_model(self, mock_client):
        """Test default model is used when none is given."""
        assistant = ClaudeAssistant(client=mock_client)
        assert assistant.model == ClaudeAssistant.DEFAULT_MODEL

    def test_builds_async_client(self):
        """Test an AsyncAnthropic client is created from the API key."""
        with patch("statement_import.assistant.anthropic.AsyncAnthropic") as mock_cls:
            ClaudeAssistant(api_key="test-key")

        mock_cls.assert_called_once_with(api_key="test-key")

    def test_api_error_wrapped(self, mock_client):
        """Test API failures surface as AssistantError."""
        error = anthropic.APIConnectionError(request=Mock())
        mock_client.messages.create = AsyncMock(side_effect=error)
        assistant = ClaudeAssistant(client=mock_client)

        with pytest.raises(AssistantError, match="Assistant unavailable"):
            asyncio.run(assistant.complete("hello"))


class TestExtractJsonArray:
    """Tests for reply JSON extraction."""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"
        assert strip_code_fences('```\n[1]\n```') == "[1]"

    def test_bare_array(self):
        assert extract_json_array("[1, 2, 3]") == [1, 2, 3]

    def test_object_with_array(self):
        """Test the first list value of an object is used."""
        assert extract_json_array('{"count": 1, "items": [{"a": 1}]}') == [{"a": 1}]

    def test_object_without_array(self):
        with pytest.raises(AssistantError):
            extract_json_array('{"a": 1}')

    def test_empty_reply(self):
        with pytest.raises(AssistantError):
            extract_json_array("")


class TestClassifyPrompt:
    """Tests for the classification prompt."""

    def test_prompt_contents(self):
        """Test types, tags and transactions appear in the prompt."""
        prompt = build_classify_prompt(make_candidates(2), [Tag(1, "Coffee"), Tag(2, "Fuel")])

        assert "deposit, withdrawal, transfer, payment, refund, fee, interest, other" in prompt
        assert "Coffee, Fuel" in prompt
        assert '"description": "Purchase 1"' in prompt
        assert '"currentType": "withdrawal"' in prompt

    def test_no_tags(self):
        """Test the prompt invites new tags when the profile has none."""
        prompt = build_classify_prompt(make_candidates(1), [])
        assert "no existing tags" in prompt

    def test_guidance(self):
        prompt = build_classify_prompt(make_candidates(1), [], "Payroll is a deposit")
        assert prompt.endswith("Payroll is a deposit")


class TestClassificationsFromResponse:
    """Tests for lining up replies with transactions."""

    def test_valid_reply(self):
        """Test types and tags are taken from the reply."""
        reply = json.dumps([
            {"index": 0, "type": "fee", "suggestedTags": ["Bank", "Fees"]},
            {"index": 1, "type": "deposit", "suggestedTags": []},
        ])

        result = classifications_from_response(reply, make_candidates(2))

        assert result[0] == Classification(0, TransactionType.FEE, ("Bank", "Fees"))
        assert result[1] == Classification(1, TransactionType.DEPOSIT, ())

    def test_invalid_type_keeps_existing(self):
        """Test an unknown type string keeps the transaction's type."""
        reply = '[{"index": 0, "type": "groceries", "suggestedTags": ["Food"]}]'

        result = classifications_from_response(reply, make_candidates(1))

        assert result[0].type is TransactionType.WITHDRAWAL
        assert result[0].suggested_tags == ("Food",)

    def test_unknown_index_ignored(self):
        """Test entries for indices that were not sent are dropped."""
        reply = '[{"index": 7, "type": "fee"}, {"index": "0", "type": "refund"}]'

        result = classifications_from_response(reply, make_candidates(1))

        assert len(result) == 1
        assert result[0].type is TransactionType.REFUND

    def test_missing_rows_keep_type(self):
        """Test rows absent from the reply keep their type with no tags."""
        reply = '[{"index": 1, "type": "fee"}]'

        result = classifications_from_response(reply, make_candidates(2))

        assert result[0] == Classification(0, TransactionType.WITHDRAWAL, ())
        assert result[1].type is TransactionType.FEE

    def test_duplicate_tags_collapsed(self):
        reply = '[{"index": 0, "type": "fee", "suggestedTags": ["Bank", "Bank", " ", 5]}]'

        result = classifications_from_response(reply, make_candidates(1))

        assert result[0].suggested_tags == ("Bank",)


class TestTransactionClassifier:
    """Tests for batch classification."""

    def test_batches(self, echo_classifier):
        """Test transactions are sent in batches of the configured size."""
        assistant = echo_classifier({"Purchase": "Shopping"})
        classifier = TransactionClassifier(assistant, batch_size=20)

        result = asyncio.run(classifier.classify(make_candidates(45)))

        assert len(assistant.prompts) == 3
        assert len(result.classifications) == 45
        assert result.errors == []
        assert all(c.suggested_tags == ("Shopping",) for c in result.classifications)

    def test_failed_batch_passes_rows_through(self, fake_assistant):
        """Test a failed batch keeps types, records an error and later batches run."""
        assistant = fake_assistant([
            AssistantError("rate limited"),
            '[{"index": 2, "type": "fee", "suggestedTags": ["Bank"]}]',
        ])
        classifier = TransactionClassifier(assistant, batch_size=2)

        result = asyncio.run(classifier.classify(make_candidates(3)))

        by_index = result.by_index()
        assert by_index[0] == Classification(0, TransactionType.WITHDRAWAL, ())
        assert by_index[1] == Classification(1, TransactionType.WITHDRAWAL, ())
        assert by_index[2].type is TransactionType.FEE
        assert result.errors == ["Rows 1-2: rate limited"]

    def test_unparsable_reply_is_batch_failure(self, fake_assistant):
        """Test a reply without JSON counts as a failed batch."""
        classifier = TransactionClassifier(fake_assistant(["no idea"]))

        result = asyncio.run(classifier.classify(make_candidates(2)))

        assert len(result.errors) == 1
        assert [c.type for c in result.classifications] == [TransactionType.WITHDRAWAL] * 2

    def test_existing_tags_in_prompt(self, fake_assistant):
        assistant = fake_assistant(["[]"])
        classifier = TransactionClassifier(assistant)

        asyncio.run(classifier.classify(make_candidates(1), [Tag(1, "Groceries")]))

        assert "Groceries" in assistant.prompts[0]

    def test_classify_single(self, fake_assistant):
        """Test single-row classification."""
        assistant = fake_assistant(['[{"index": 4, "type": "interest", "suggestedTags": ["Savings"]}]'])
        txn = make_candidates(5)[4]

        result = asyncio.run(TransactionClassifier(assistant).classify_single(txn))

        assert result == Classification(4, TransactionType.INTEREST, ("Savings",))

    def test_classify_single_failure_raises(self, fake_assistant):
        """Test single-row classification propagates assistant failures."""
        assistant = fake_assistant([AssistantError("down")])

        with pytest.raises(AssistantError):
            asyncio.run(TransactionClassifier(assistant).classify_single(make_candidates(1)[0]))

    def test_empty_input(self, fake_assistant):
        assistant = fake_assistant([])
        result = asyncio.run(TransactionClassifier(assistant).classify([]))

        assert result.classifications == []
        assert assistant.prompts == []
