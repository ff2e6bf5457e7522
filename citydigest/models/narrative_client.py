"""Async OpenAI narrative client for "why it matters" text and digest intros."""

import asyncio
import json
import re
import time
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..errors import NarrativeError
from ..logging import get_logger, log_narrative_request
from ..utils import retry_async, truncate_text
from .items import ScoredItem

logger = get_logger(__name__)

# Cost control: explanations are generated for at most this many items per batch
MAX_BATCH_ITEMS = 5
SUMMARY_CHARS = 300


class ChatMessage(BaseModel):
    """Chat message for LLM interaction."""
    role: str
    content: str


class NarrativeResponse(BaseModel):
    """LLM response wrapper."""
    content: str
    model: str
    usage: dict[str, Any] | None = None
    response_time: float | None = None


class NarrativeGenerator(Protocol):
    """Contract for whatever produces narrative text for curated items."""

    call_count: int

    async def generate_why_care(self, items: Sequence[ScoredItem]) -> list[str]:
        """One short explanation per item, order-preserving."""
        ...

    async def generate_digest(self, items: Sequence[ScoredItem]) -> str:
        """Narrative introduction for a digest built from the items."""
        ...


def item_brief(item: ScoredItem) -> dict[str, str]:
    """Title and short summary handed to the narrative model."""
    return {
        "title": item.title,
        "summary": truncate_text(item.fields.body or "", SUMMARY_CHARS),
        "category": item.category.value,
    }


def parse_explanations(content: str, expected: int) -> list[str]:
    """Parse a JSON array of strings, padded or truncated to ``expected``.

    Args:
        content: Raw model output, optionally wrapped in a code fence
        expected: Number of items the explanations belong to

    Returns:
        Exactly ``expected`` strings; missing entries are empty

    Raises:
        NarrativeError: If the output holds no JSON array
    """
    match = re.search(r"\[.*\]", content, re.DOTALL)
    if not match:
        raise NarrativeError("Narrative response contained no JSON array")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise NarrativeError(f"Invalid JSON in narrative response: {e}") from e

    explanations = [str(entry).strip() if entry is not None else "" for entry in parsed]
    explanations = explanations[:expected]
    explanations.extend([""] * (expected - len(explanations)))
    return explanations


class NarrativeClient:
    """OpenAI chat-completions client for narrative text."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """Initialize narrative client.

        Args:
            settings: Application settings
            client: Preconfigured OpenAI client
        """
        self.settings = settings or get_settings()
        self.model = self.settings.narrative_model
        self.call_count = 0

        if client is not None:
            self._client = client
        elif self.settings.openai_api_key:
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
            logger.info("OpenAI client initialized", model=self.model)
        else:
            raise NarrativeError("OPENAI_API_KEY is required for narrative generation")

    async def _make_request(
        self,
        messages: list[ChatMessage],
        purpose: str,
        item_count: int
    ) -> NarrativeResponse:
        """Make a single chat completion request."""
        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=self.settings.narrative_temperature,
                max_tokens=self.settings.narrative_max_tokens,
                timeout=self.settings.narrative_timeout_seconds,
            )
        except APIError as e:
            raise NarrativeError(f"OpenAI API error for model {self.model}: {e}") from e

        response_time = time.time() - start_time
        content = response.choices[0].message.content
        if not content:
            raise NarrativeError("Empty response content from OpenAI")

        logger.info(
            "Narrative generated",
            **log_narrative_request(
                self.model,
                purpose,
                item_count,
                response_time,
                response.usage.total_tokens if response.usage else None,
            )
        )

        return NarrativeResponse(
            content=content,
            model=self.model,
            usage={
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens
            } if response.usage else None,
            response_time=response_time,
        )

    async def chat(
        self,
        messages: list[ChatMessage],
        purpose: str = "digest",
        item_count: int = 0
    ) -> NarrativeResponse:
        """Send chat messages with retry.

        Raises:
            NarrativeError: If every attempt fails
        """
        self.call_count += 1
        return await retry_async(
            lambda: self._make_request(messages, purpose, item_count),
            max_retries=self.settings.narrative_retry_attempts,
            backoff_factor=2.0,
            exceptions=(NarrativeError, httpx.RequestError, httpx.TimeoutException),
        )

    async def generate_why_care(self, items: Sequence[ScoredItem]) -> list[str]:
        """Explain why each item matters to a New Yorker.

        Args:
            items: Curated items; only the first five are sent

        Returns:
            One explanation per input item, empty beyond the batch limit
        """
        if not items:
            return []

        batch = list(items)[:MAX_BATCH_ITEMS]
        prompt = self._create_why_care_prompt(batch)
        response = await self.chat([
            ChatMessage(role="system", content="You write short, concrete notes for a daily New York City digest."),
            ChatMessage(role="user", content=prompt),
        ], purpose="why_care", item_count=len(batch))

        explanations = parse_explanations(response.content, len(batch))
        return explanations + [""] * (len(items) - len(batch))

    async def generate_digest(self, items: Sequence[ScoredItem]) -> str:
        """Write a short digest introduction covering the selected items."""
        if not items:
            return ""

        briefs = [item_brief(item) for item in items]
        prompt = (
            "Write a two-sentence introduction for today's NYC digest. "
            "Lead with the most urgent item and do not invent facts.\n\n"
            f"Items:\n{json.dumps(briefs, indent=2)}"
        )
        response = await self.chat(
            [ChatMessage(role="user", content=prompt)], purpose="digest", item_count=len(items)
        )
        return response.content.strip()

    @staticmethod
    def _create_why_care_prompt(items: Sequence[ScoredItem]) -> str:
        briefs = [item_brief(item) for item in items]
        return f"""For each item below, write one sentence (max 25 words) explaining why a New Yorker should care today.

Return only a JSON array of {len(briefs)} strings in the same order as the items.

Items:
{json.dumps(briefs, indent=2)}"""


class MockNarrativeClient:
    """Deterministic narrative client for tests and offline runs."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.call_count = 0

    async def generate_why_care(self, items: Sequence[ScoredItem]) -> list[str]:
        self.call_count += 1
        await asyncio.sleep(0)
        if self.fail:
            raise NarrativeError("Mock narrative failure")
        return [
            f"Matters for {item.category.value}: {truncate_text(item.title, 60)}" if index < MAX_BATCH_ITEMS else ""
            for index, item in enumerate(items)
        ]

    async def generate_digest(self, items: Sequence[ScoredItem]) -> str:
        self.call_count += 1
        await asyncio.sleep(0)
        if self.fail:
            raise NarrativeError("Mock narrative failure")
        if not items:
            return ""
        return f"Today's digest leads with {items[0].title} and {len(items) - 1} more stories."


def create_narrative_client(mock: bool = False, settings: Settings | None = None) -> NarrativeGenerator:
    """Factory function to create a narrative client.

    Args:
        mock: Whether to use the mock client
        settings: Application settings

    Returns:
        Narrative generator instance
    """
    if mock:
        return MockNarrativeClient()
    return NarrativeClient(settings)
