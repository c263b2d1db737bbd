"""Persona-voiced summaries of coach conversations.

`SummaryGenerator.summarize` is the single outbound call in the pipeline. It
never raises for collaborator trouble: every failure comes back as a
`SummaryResult` carrying a `SummaryFailure`, so the formatter can fall back to
an excerpt in one explicit step. The transcript lives only for the duration
of the call.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import groq

from agora.core.config import settings
from agora.core.errors import SummaryUnavailable
from agora.core.logging import log_event
from agora.core.tracing import start_span
from agora.features.community.personas import PersonaDirectory, StaticPersonaDirectory
from agora.features.community.text import truncate_content
from agora.features.community.validators import ContentValidator, sanitize_text
from agora.models.community import (
    ContentKind,
    PersonaProfile,
    SummaryRequest,
    SummaryResponse,
    SummaryResult,
)

ROUTE = "community/summary"

# Summaries sharing a run this long with the transcript are treated as echoes.
VERBATIM_WINDOW_CHARS = 60


@dataclass(frozen=True)
class SummaryCompletion:
    text: str
    tokens_used: int = 0


class SummaryClient(Protocol):
    """Outbound summarization collaborator."""

    async def complete(self, *, system_prompt: str, prompt: str, max_tokens: int) -> SummaryCompletion:
        ...


class GroqSummaryClient:
    """Summarization over the Groq chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.model = model or settings.SUMMARY_MODEL
        self.temperature = settings.SUMMARY_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or settings.SUMMARY_TIMEOUT_SECONDS
        self._client = groq.AsyncGroq(api_key=self.api_key, timeout=self.timeout) if self.api_key else None

    async def complete(self, *, system_prompt: str, prompt: str, max_tokens: int) -> SummaryCompletion:
        if self._client is None:
            raise SummaryUnavailable("GROQ_API_KEY is not configured", code="summarizer_not_configured")
        try:
            completion = await self._client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
        except groq.APIError as exc:
            raise SummaryUnavailable(
                f"Summarizer request failed: {type(exc).__name__}",
                code="summarizer_error",
            ) from exc

        text = ""
        if completion.choices:
            text = completion.choices[0].message.content or ""
        tokens = completion.usage.total_tokens if completion.usage else 0
        return SummaryCompletion(text=text, tokens_used=tokens)


def build_system_prompt(persona: PersonaProfile) -> str:
    return (
        f"You are {persona.display_name}, {persona.title}. {persona.voice_guidelines} "
        "Never repeat the seeker's words verbatim and never mention names, emails, "
        "or other personal details."
    )


def build_summary_prompt(persona: PersonaProfile, transcript_excerpt: str, max_length: int) -> str:
    return (
        "A seeker had an insightful conversation with you and wants to share the key "
        "wisdom with their community.\n\n"
        f"Conversation:\n{transcript_excerpt}\n\n"
        f"Create a brief summary (2-3 sentences, at most {max_length} characters) that "
        "captures the core philosophical insight from this exchange. Write in your "
        f"authentic voice as {persona.display_name}. Focus on the universal wisdom, not "
        "specific personal details of the seeker.\n\nSummary:"
    )


def _normalize_for_echo(text: str) -> str:
    return " ".join(text.split()).casefold()


def echoes_transcript(summary: str, transcript: str, window: int = VERBATIM_WINDOW_CHARS) -> bool:
    """True when `summary` repeats a `window`-long run of the transcript."""
    summary_norm = _normalize_for_echo(summary)
    transcript_norm = _normalize_for_echo(transcript)
    if len(summary_norm) < window:
        # short summaries only count when they are a sizeable quote
        return len(summary_norm) >= window // 2 and summary_norm in transcript_norm
    return any(
        summary_norm[i:i + window] in transcript_norm
        for i in range(0, len(summary_norm) - window + 1)
    )


class SummaryGenerator:
    """Requests a persona-voiced summary from a `SummaryClient`."""

    def __init__(
        self,
        client: Optional[SummaryClient] = None,
        personas: Optional[PersonaDirectory] = None,
        validator: Optional[ContentValidator] = None,
        logger: Optional[logging.Logger] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.client = client
        self.personas = personas or StaticPersonaDirectory()
        self.validator = validator or ContentValidator()
        self.logger = logger or logging.getLogger("agora.community")
        self.timeout_seconds = timeout_seconds or settings.SUMMARY_TIMEOUT_SECONDS

    async def summarize(
        self,
        request: SummaryRequest,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> SummaryResult:
        """Summarize a transcript excerpt in the persona's voice.

        Failure modes (returned, not raised):
        - rejected: the transcript fails content screening before it is sent
        - unavailable: unknown persona, no client, collaborator error, empty or
          echoing output, timeout, or `cancel_event` set mid-call
        """
        with start_span("community.summarize", {"persona_id": request.persona_id}):
            persona = self.personas.get_persona_profile(request.persona_id)
            if persona is None:
                return self._unavailable(request, "persona_not_found")

            screening = self.validator.validate_content(request.transcript_excerpt, ContentKind.TRANSCRIPT)
            if not screening.ok:
                log_event(
                    "info",
                    "community.summary_rejected",
                    route=ROUTE,
                    event_type="summary_rejected",
                    error_code="transcript_rejected",
                    extra={"persona_id": request.persona_id, "reasons": ",".join(screening.reason_codes())},
                    logger=self.logger,
                )
                return SummaryResult.rejected(screening.reasons)

            if self.client is None:
                return self._unavailable(request, "summarizer_not_configured")

            transcript = screening.sanitized_text or ""

            def call():
                return self.client.complete(
                    system_prompt=build_system_prompt(persona),
                    prompt=build_summary_prompt(persona, transcript, request.max_length),
                    max_tokens=request.max_tokens,
                )

            completion, failure = await self._await_with_cancel(
                call, cancel_event, timeout or self.timeout_seconds
            )
            if failure:
                return self._unavailable(request, failure)

            text = sanitize_text(completion.text)
            if not text:
                return self._unavailable(request, "empty_summary")
            if echoes_transcript(text, transcript):
                return self._unavailable(request, "verbatim_echo")

            text, truncated = truncate_content(text, request.max_length)
            return SummaryResult.success(SummaryResponse(
                persona_id=persona.persona_id,
                summary_text=text,
                tokens_used=completion.tokens_used,
                truncated=truncated,
            ))

    async def summarize_many(self, requests: Sequence[SummaryRequest]) -> list[SummaryResult]:
        """Summarize independent requests concurrently; order matches input."""
        return list(await asyncio.gather(*(self.summarize(r) for r in requests)))

    async def _await_with_cancel(
        self,
        call,
        cancel_event: Optional[asyncio.Event],
        timeout: float,
    ) -> tuple[Optional[SummaryCompletion], Optional[str]]:
        """Run the outbound call against a timeout and an optional cancel signal.

        `call` is a zero-argument factory for the client's awaitable, so a
        client that raises before awaiting is reported like any other error.

        Returns:
            Tuple of (completion, failure_reason); exactly one is set.
        """
        try:
            task = asyncio.ensure_future(call())
        except SummaryUnavailable as exc:
            return None, exc.code
        except Exception as exc:
            return None, self._client_error(exc)
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task not in done:
            task.cancel()
            if cancel_event is not None and cancel_event.is_set():
                return None, "cancelled"
            return None, "timeout"

        try:
            return task.result(), None
        except SummaryUnavailable as exc:
            return None, exc.code
        except Exception as exc:
            return None, self._client_error(exc)

    def _client_error(self, exc: Exception) -> str:
        log_event(
            "warning",
            "community.summary_client_error",
            route=ROUTE,
            event_type="summary_client_error",
            error_code="summarizer_error",
            extra={"exception": type(exc).__name__},
            logger=self.logger,
        )
        return "summarizer_error"

    def _unavailable(self, request: SummaryRequest, reason: str) -> SummaryResult:
        log_event(
            "warning",
            "community.summary_unavailable",
            route=ROUTE,
            event_type="summary_unavailable",
            error_code=reason,
            extra={"persona_id": request.persona_id},
            logger=self.logger,
        )
        return SummaryResult.unavailable(reason)
