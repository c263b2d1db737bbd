# agora/conftest.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agora.core.metrics import METRICS
from agora.features.community.summary import SummaryCompletion
from agora.features.community.validators import ContentRuleset, ContentValidator
from agora.models.community import ChatMessage, ChatRecord, CommunityPost, SourceKind


class StaticSummaryClient:
    """Returns a fixed completion and remembers the prompts it was sent."""

    def __init__(self, text: str, tokens_used: int = 42):
        self.text = text
        self.tokens_used = tokens_used
        self.calls = []

    async def complete(self, *, system_prompt, prompt, max_tokens):
        self.calls.append({"system_prompt": system_prompt, "prompt": prompt, "max_tokens": max_tokens})
        return SummaryCompletion(text=self.text, tokens_used=self.tokens_used)


class FailingSummaryClient:
    """Simulates an unreachable collaborator."""

    def __init__(self, exc: Exception = None):
        self.exc = exc or ConnectionError("collaborator unreachable")
        self.calls = 0

    async def complete(self, *, system_prompt, prompt, max_tokens):
        self.calls += 1
        raise self.exc


class HangingSummaryClient:
    """Never answers; only a timeout or cancel signal ends the call."""

    def __init__(self):
        self.cancelled = False

    async def complete(self, *, system_prompt, prompt, max_tokens):
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def now():
    return datetime(2025, 10, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def validator():
    """Validator over the default ruleset, independent of local .env overrides."""
    return ContentValidator(ContentRuleset())


@pytest.fixture
def summary_client_factory():
    return StaticSummaryClient


@pytest.fixture
def failing_client():
    return FailingSummaryClient()


@pytest.fixture
def hanging_client():
    return HangingSummaryClient()


@pytest.fixture
def chat_record(now):
    return ChatRecord(
        user_id="user_8f3a",
        user_email="dana.private@example.com",
        created_at=now - timedelta(days=1),
        conversation_id="conv_1",
        persona_id="marcus",
        virtue="courage",
        messages=(
            ChatMessage(id="m1", role="user", content="I keep avoiding the hard conversation with my team.", author_name="Dana Whitfield"),
            ChatMessage(id="m2", role="assistant", content="What is within your control here? Your words and your intent.", author_name="Marcus Aurelius"),
            ChatMessage(id="m3", role="user", content="Only how I show up. Not how they react.", author_name="Dana Whitfield"),
        ),
    )


@pytest.fixture
def make_post(now):
    """Factory for persisted posts; keyword overrides win."""

    def _make(post_id: str = "p1", **overrides):
        fields = dict(
            id=post_id,
            author_id=f"author_{post_id}",
            author_display_name="stoic_reader",
            source_kind=SourceKind.REFLECTION,
            body="Today I chose patience.",
            created_at=now - timedelta(hours=1),
        )
        fields.update(overrides)
        return CommunityPost(**fields)

    return _make
