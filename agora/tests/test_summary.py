"""
Summary Generator Tests

Verify:
1. Successful summaries respect max_length and report truncation
2. Every collaborator failure, including one raised before the await, comes back
   as a structured SummaryResult
3. Transcripts failing content screening are never sent out
4. Verbatim echoes of the transcript are refused
5. Cancellation and timeouts end the outbound call
6. unwrap() maps failures onto the error taxonomy
"""

import asyncio

import pytest

from agora.core.errors import SummaryRejected, SummaryUnavailable
from agora.features.community.personas import DEFAULT_PERSONAS, StaticPersonaDirectory
from agora.features.community.summary import (
    GroqSummaryClient,
    SummaryGenerator,
    build_summary_prompt,
    build_system_prompt,
    echoes_transcript,
)
from agora.models.community import SummaryFailureKind, SummaryRequest, SummaryResult

TRANSCRIPT = (
    "Seeker: I lost my temper with a colleague today and I keep replaying it.\n\n"
    "Marcus Aurelius: The replaying is a second injury you choose. What was yours to govern?"
)


def _request(**overrides):
    fields = dict(persona_id="marcus", transcript_excerpt=TRANSCRIPT, max_length=280)
    fields.update(overrides)
    return SummaryRequest(**fields)


class RaisingSummaryClient:
    """Fails before returning an awaitable."""

    def complete(self, *, system_prompt, prompt, max_tokens):
        raise RuntimeError("client misconfigured")


class BlockingSummaryClient:
    """A synchronous client that returns a plain value instead of an awaitable."""

    def complete(self, *, system_prompt, prompt, max_tokens):
        return "not awaitable"


class TestSummarySuccess:
    """Happy path."""

    @pytest.mark.asyncio
    async def test_summary_returned(self, validator, summary_client_factory):
        client = summary_client_factory("Anger passes; the choice of how to carry it remains with you.", tokens_used=17)
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request())
        assert result.ok
        assert result.failure is None
        assert result.response.persona_id == "marcus"
        assert result.response.tokens_used == 17
        assert not result.response.truncated
        assert client.calls[0]["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_long_summary_truncated(self, validator, summary_client_factory):
        client = summary_client_factory("Virtue is practiced in small moments. " * 20)
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request(max_length=100))
        assert result.ok
        assert len(result.response.summary_text) <= 100
        assert result.response.truncated

    @pytest.mark.asyncio
    async def test_output_is_sanitized(self, validator, summary_client_factory):
        client = summary_client_factory("<b>Govern</b> what is yours, release the rest.")
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request())
        assert result.response.summary_text == "Govern what is yours, release the rest."

    @pytest.mark.asyncio
    async def test_persona_voice_in_prompts(self, validator, summary_client_factory):
        client = summary_client_factory("What is yours to govern is your response.")
        await SummaryGenerator(client=client, validator=validator).summarize(_request(persona_id="Lao"))
        call = client.calls[0]
        assert call["system_prompt"].startswith("You are Laozi, Taoist Navigator.")
        assert "at most 280 characters" in call["prompt"]
        assert "replaying it" in call["prompt"]

    @pytest.mark.asyncio
    async def test_summarize_many_keeps_order(self, validator, summary_client_factory):
        client = summary_client_factory("Steady the mind before the hand moves.")
        generator = SummaryGenerator(client=client, validator=validator)
        results = await generator.summarize_many([
            _request(persona_id="marcus"),
            _request(persona_id="nobody"),
            _request(persona_id="plato"),
        ])
        assert [r.ok for r in results] == [True, False, True]
        assert results[2].response.persona_id == "plato"


class TestSummaryFailures:
    """Failures are returned, never raised."""

    @pytest.mark.asyncio
    async def test_unknown_persona(self, validator, summary_client_factory):
        client = summary_client_factory("unused")
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request(persona_id="socrates"))
        assert result.failure.kind == SummaryFailureKind.UNAVAILABLE
        assert result.failure.reason_code == "persona_not_found"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_no_client_configured(self, validator):
        result = await SummaryGenerator(validator=validator).summarize(_request())
        assert result.failure.reason_code == "summarizer_not_configured"

    @pytest.mark.asyncio
    async def test_client_exception(self, validator, failing_client):
        result = await SummaryGenerator(client=failing_client, validator=validator).summarize(_request())
        assert result.failure.reason_code == "summarizer_error"
        assert failing_client.calls == 1

    @pytest.mark.asyncio
    async def test_client_unavailable_code_is_kept(self, validator, failing_client):
        failing_client.exc = SummaryUnavailable("rate limited", code="rate_limited")
        result = await SummaryGenerator(client=failing_client, validator=validator).summarize(_request())
        assert result.failure.reason_code == "rate_limited"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client_cls", [RaisingSummaryClient, BlockingSummaryClient])
    async def test_client_failing_before_await(self, validator, client_cls):
        result = await SummaryGenerator(client=client_cls(), validator=validator).summarize(_request())
        assert not result.ok
        assert result.failure.reason_code == "summarizer_error"

    @pytest.mark.asyncio
    async def test_transcript_screening_rejects_before_sending(self, validator, summary_client_factory):
        client = summary_client_factory("unused")
        result = await SummaryGenerator(client=client, validator=validator).summarize(
            _request(transcript_excerpt="Seeker: email me at dana@example.com")
        )
        assert result.failure.kind == SummaryFailureKind.REJECTED
        assert result.failure.reason_code == "transcript_rejected"
        assert [r.code for r in result.failure.reasons] == ["pii_email"]
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_empty_output(self, validator, summary_client_factory):
        client = summary_client_factory("  <p></p> ")
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request())
        assert result.failure.reason_code == "empty_summary"

    @pytest.mark.asyncio
    async def test_verbatim_echo_refused(self, validator, summary_client_factory):
        client = summary_client_factory(
            "As you said: I lost my temper with a colleague today and I keep replaying it. Let it go."
        )
        result = await SummaryGenerator(client=client, validator=validator).summarize(_request())
        assert result.failure.reason_code == "verbatim_echo"

    @pytest.mark.asyncio
    async def test_timeout(self, validator, hanging_client):
        generator = SummaryGenerator(client=hanging_client, validator=validator, timeout_seconds=0.05)
        result = await generator.summarize(_request())
        assert result.failure.reason_code == "timeout"
        await asyncio.sleep(0.01)
        assert hanging_client.cancelled

    @pytest.mark.asyncio
    async def test_cancel_event(self, validator, hanging_client):
        generator = SummaryGenerator(client=hanging_client, validator=validator)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, cancel.set)
        result = await asyncio.wait_for(generator.summarize(_request(), cancel_event=cancel), timeout=2)
        assert result.failure.reason_code == "cancelled"

    @pytest.mark.asyncio
    async def test_groq_client_without_key(self, validator):
        generator = SummaryGenerator(client=GroqSummaryClient(api_key=""), validator=validator)
        result = await generator.summarize(_request())
        assert result.failure.reason_code == "summarizer_not_configured"


class TestSummaryResult:
    """unwrap() maps failures onto the error taxonomy."""

    def test_unwrap_rejected(self):
        with pytest.raises(SummaryRejected) as exc:
            SummaryResult.rejected(()).unwrap()
        assert exc.value.status_code == 422

    def test_unwrap_unavailable(self):
        with pytest.raises(SummaryUnavailable) as exc:
            SummaryResult.unavailable("timeout").unwrap()
        assert exc.value.code == "summary_unavailable"
        assert "timeout" in exc.value.message


class TestPromptHelpers:
    """Prompt construction and echo detection."""

    def test_system_prompt_forbids_personal_details(self):
        prompt = build_system_prompt(DEFAULT_PERSONAS["epictetus"])
        assert "Epictetus" in prompt
        assert "never mention names" in prompt

    def test_summary_prompt_embeds_transcript(self):
        prompt = build_summary_prompt(DEFAULT_PERSONAS["simone"], "Seeker: hello", 120)
        assert "Seeker: hello" in prompt
        assert "at most 120 characters" in prompt

    def test_echo_detection_ignores_case_and_spacing(self):
        transcript = "The obstacle is the way, and what stands in the way becomes the way forward for us."
        summary = "THE OBSTACLE is   the way, and what stands in the way becomes the way forward."
        assert echoes_transcript(summary, transcript)

    def test_paraphrase_is_not_an_echo(self):
        assert not echoes_transcript("Obstacles reveal the path.", TRANSCRIPT)

    def test_persona_lookup_is_case_insensitive(self):
        directory = StaticPersonaDirectory()
        assert directory.get_persona_profile("MARCUS").display_name == "Marcus Aurelius"
        assert directory.get_persona_profile("zeno") is None
