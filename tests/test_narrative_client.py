"""Tests for the narrative client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from citydigest.config import Settings
from citydigest.errors import NarrativeError
from citydigest.models.items import ContentCategory
from citydigest.models.narrative_client import (
    MockNarrativeClient,
    NarrativeClient,
    create_narrative_client,
    item_brief,
    parse_explanations,
)


def completion(content):
    """Shape of an OpenAI chat completion response."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40, total_tokens=160),
    )


def openai_client(*responses):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(responses))
    return client


@pytest.fixture
def items(make_scored, unique_title):
    return [make_scored(unique_title(), 90 - i, ContentCategory.LOCAL) for i in range(7)]


class TestParseExplanations:
    """Test parsing of model output."""

    def test_code_fence_and_padding(self):
        content = '```json\n["First reason", "Second reason"]\n```'
        assert parse_explanations(content, 3) == ["First reason", "Second reason", ""]

    def test_truncates_extra_entries(self):
        assert parse_explanations('["a", "b", "c"]', 2) == ["a", "b"]

    def test_null_entries_become_empty(self):
        assert parse_explanations('[" padded ", null]', 2) == ["padded", ""]

    def test_missing_array(self):
        with pytest.raises(NarrativeError, match="no JSON array"):
            parse_explanations("I cannot help with that.", 2)

    def test_invalid_json(self):
        with pytest.raises(NarrativeError, match="Invalid JSON"):
            parse_explanations("[not, json]", 2)


class TestNarrativeClient:
    """Test the OpenAI-backed client with a mocked API."""

    def test_requires_api_key(self):
        with pytest.raises(NarrativeError, match="OPENAI_API_KEY"):
            NarrativeClient(Settings(openai_api_key=None))

    @pytest.mark.asyncio
    async def test_why_care_batches_first_five(self, items):
        api = openai_client(completion('["one", "two", "three", "four", "five"]'))
        client = NarrativeClient(Settings(openai_api_key="key"), client=api)

        explanations = await client.generate_why_care(items)

        assert explanations == ["one", "two", "three", "four", "five", "", ""]
        assert client.call_count == 1
        kwargs = api.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert items[0].title in kwargs["messages"][1]["content"]
        assert items[5].title not in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_why_care_empty(self):
        api = openai_client()
        client = NarrativeClient(Settings(openai_api_key="key"), client=api)

        assert await client.generate_why_care([]) == []
        api.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_digest(self, items):
        api = openai_client(completion("  Trains are late and rents are up.  "))
        client = NarrativeClient(Settings(openai_api_key="key"), client=api)

        assert await client.generate_digest(items[:2]) == "Trains are late and rents are up."
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_content_raises(self, items):
        api = openai_client(completion(""))
        client = NarrativeClient(Settings(openai_api_key="key", narrative_retry_attempts=0), client=api)

        with pytest.raises(NarrativeError, match="Empty response"):
            await client.generate_digest(items)

    @pytest.mark.asyncio
    async def test_retries_on_narrative_error(self, items, monkeypatch):
        monkeypatch.setattr("citydigest.utils.asyncio.sleep", AsyncMock())
        api = openai_client(completion(""), completion("Recovered intro."))
        client = NarrativeClient(Settings(openai_api_key="key", narrative_retry_attempts=1), client=api)

        assert await client.generate_digest(items) == "Recovered intro."
        assert api.chat.completions.create.await_count == 2
        assert client.call_count == 1


def test_item_brief_truncates_summary(make_scored):
    scored = make_scored("Long read", 70, ContentCategory.CIVIC, summary="x" * 500)

    brief = item_brief(scored)

    assert brief["category"] == "civic"
    assert len(brief["summary"]) == 300
    assert brief["summary"].endswith("...")


class TestMockNarrativeClient:
    """Test the offline client."""

    @pytest.mark.asyncio
    async def test_why_care(self, items):
        client = MockNarrativeClient()

        explanations = await client.generate_why_care(items)

        assert len(explanations) == 7
        assert all(explanations[:5])
        assert explanations[5:] == ["", ""]

    @pytest.mark.asyncio
    async def test_digest(self, items):
        client = MockNarrativeClient()

        assert (await client.generate_digest(items)).startswith("Today's digest leads with")
        assert await client.generate_digest([]) == ""
        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_failure(self, items):
        with pytest.raises(NarrativeError):
            await MockNarrativeClient(fail=True).generate_digest(items)


def test_factory():
    assert isinstance(create_narrative_client(mock=True), MockNarrativeClient)
    assert isinstance(create_narrative_client(settings=Settings(openai_api_key="key")), NarrativeClient)
