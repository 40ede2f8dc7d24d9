"""
Classification Assistant Module

The external model that suggests column mappings and transaction
classifications. The import pipeline only sees the ``ClassificationAssistant``
interface; ``ClaudeAssistant`` is the production implementation.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import anthropic

from .exceptions import AssistantError

logger = logging.getLogger(__name__)


class ClassificationAssistant(ABC):
    """Prompt-in, text-out collaborator."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send a prompt and return the raw reply text.

        Raises:
            AssistantError: If the assistant cannot be reached
        """


class ClaudeAssistant(ClassificationAssistant):
    """Assistant backed by the Anthropic Messages API."""

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        client: Any = None,
    ):
        """Initialize the assistant.

        Args:
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY)
            model: Claude model to use
            max_tokens: Reply token limit
            client: Preconfigured async client, mainly for tests
        """
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(self, prompt: str) -> str:
        logger.debug(f"Assistant prompt: {prompt}")

        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error(f"Claude request failed: {e}")
            raise AssistantError(f"Assistant unavailable: {e}") from e

        response_text = "".join(
            getattr(block, "text", "") for block in message.content
        )
        logger.debug(f"Assistant response: {response_text}")
        return response_text


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = re.sub(r'^```json\s*', '', cleaned)
    cleaned = re.sub(r'^```\s*', '', cleaned)
    cleaned = re.sub(r'\s*```$', '', cleaned)
    return cleaned


def extract_json_array(text: str) -> list:
    """Pull a JSON array out of an assistant reply.

    Accepts a bare array, an array embedded in surrounding prose, or an
    object holding an array under any key.

    Raises:
        AssistantError: If no array can be recovered
    """
    cleaned = strip_code_fences(text or "")

    array_match = re.search(r'\[[\s\S]*\]', cleaned)
    if array_match:
        try:
            parsed = json.loads(array_match.group(0))
            if isinstance(parsed, list):
                return parsed
        except json.JSONDecodeError:
            pass

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AssistantError(f"Assistant reply is not valid JSON: {e}") from e

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for value in parsed.values():
            if isinstance(value, list):
                return value

    raise AssistantError("Assistant reply does not contain a JSON array")
