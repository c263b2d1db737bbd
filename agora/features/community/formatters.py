"""Turn private source records into anonymized, shareable posts.

One formatter per source kind. Each formatter reads only the fields the user
marked shareable, redacts private identifiers, runs the text through the
content validator and stamps kind/virtue metadata. Chat summaries call the
summary generator and fall back to an excerpt when no summary comes back.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from agora.core.config import settings
from agora.core.errors import ContentRejected, StructuralInputError
from agora.core.logging import log_event
from agora.core.metrics import summary_fallbacks_total
from agora.features.community.personas import PersonaDirectory, StaticPersonaDirectory
from agora.features.community.summary import SummaryGenerator
from agora.features.community.text import redact_identifiers, truncate_content
from agora.features.community.validators import ContentValidator, sanitize_text
from agora.models.community import (
    AchievementType,
    ChatMessage,
    ChatRecord,
    ChatShareMetadata,
    ContentKind,
    FormatChatExcerptInput,
    FormatChatSummaryInput,
    FormatPracticeInput,
    FormatReflectionInput,
    FormattedPost,
    MessageRole,
    PracticeShareMetadata,
    ReflectionShareMetadata,
    ShareInput,
    ShareMethod,
    SourceKind,
    SummaryRequest,
    utc_now,
)

ROUTE = "community/formatters"

FIELD_LABELS = {
    "intention": "Intention",
    "challenges": "Challenges",
    "insights": "Insights",
    "wins": "Wins",
    "gratitude": "Gratitude",
    "lessons": "Lessons Learned",
}

EXCERPT_USER_LABEL = "Me"
TRANSCRIPT_USER_LABEL = "Seeker"
FALLBACK_COACH_NAME = "Coach"

_share_input_adapter = TypeAdapter(ShareInput)


def format_field_label(field: str) -> str:
    return FIELD_LABELS.get(field, field.replace("_", " ").title())


def _scrub(text: str, identifiers) -> str:
    """Sanitize, then redact. Markup and spacing can no longer hide an identifier."""
    return redact_identifiers(sanitize_text(text), identifiers)


def _coerce(model_cls, data: Any):
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        raise StructuralInputError(
            f"Malformed {model_cls.__name__}: {exc.error_count()} invalid field(s)"
        ) from exc


class PostFormatter:
    """Formats reflections, chats and practice achievements into `FormattedPost`s."""

    def __init__(
        self,
        validator: Optional[ContentValidator] = None,
        summary_generator: Optional[SummaryGenerator] = None,
        personas: Optional[PersonaDirectory] = None,
        logger: Optional[logging.Logger] = None,
        excerpt_max_chars: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.validator = validator or ContentValidator()
        self.summary_generator = summary_generator
        self.personas = personas or StaticPersonaDirectory()
        self.logger = logger or logging.getLogger("agora.community")
        self.excerpt_max_chars = excerpt_max_chars or settings.EXCERPT_MAX_CHARS
        self.clock = clock

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def format_share(
        self,
        data: Union[BaseModel, dict],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FormattedPost:
        """Format any share input, dispatching on its `kind` tag."""
        if isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            share = _share_input_adapter.validate_python(data)
        except ValidationError as exc:
            raise StructuralInputError(f"Malformed share input: {exc.error_count()} invalid field(s)") from exc

        if isinstance(share, FormatChatSummaryInput):
            return await self.format_chat_summary(share, cancel_event=cancel_event)
        handlers = {
            FormatReflectionInput: self.format_reflection,
            FormatChatExcerptInput: self.format_chat_excerpt,
            FormatPracticeInput: self.format_practice,
        }
        return handlers[type(share)](share)

    # ------------------------------------------------------------------
    # Reflections
    # ------------------------------------------------------------------

    def format_reflection(self, data: Union[FormatReflectionInput, dict]) -> FormattedPost:
        data = _coerce(FormatReflectionInput, data)
        record = data.record
        fields = tuple(dict.fromkeys(data.fields_to_share))
        if not fields:
            raise StructuralInputError("fields_to_share must name at least one field")

        shared = [f for f in fields if (record.content.get(f) or "").strip()]
        parts = [f"{format_field_label(f)}: {record.content[f].strip()}" for f in shared]
        text = _scrub("\n\n".join(parts), [record.user_id, record.user_email])
        body = self._validated(text, ContentKind.POST, SourceKind.REFLECTION)

        return self._emit(FormattedPost(
            source_kind=SourceKind.REFLECTION,
            body=body,
            excerpt_of=record.id,
            virtue_tag=record.virtue_focus if data.include_virtue else None,
            author_display_name=data.author_display_name,
            metadata=ReflectionShareMetadata(
                reflection_type=record.reflection_type,
                fields_shared=tuple(shared),
            ),
            original_date=record.created_at.date(),
            created_at=self.clock(),
        ))

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def format_chat_excerpt(self, data: Union[FormatChatExcerptInput, dict]) -> FormattedPost:
        data = _coerce(FormatChatExcerptInput, data)
        if not data.message_ids:
            raise StructuralInputError("message_ids must select at least one message")
        messages = self._select_messages(data.record, data.message_ids)
        return self._excerpt_post(data.record, messages, data.author_display_name)

    async def format_chat_summary(
        self,
        data: Union[FormatChatSummaryInput, dict],
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> FormattedPost:
        """Share a persona-voiced summary, or an excerpt when no summary is available.

        The fallback is one explicit step on a failed `SummaryResult`. The
        summarizer sees at most the transcript length limit of the
        conversation. Content rejections of the excerpt itself still raise
        `ContentRejected`.
        """
        data = _coerce(FormatChatSummaryInput, data)
        record = data.record
        messages = self._select_messages(record, data.message_ids)
        coach_name = self._coach_name(record.persona_id)
        identifiers = self._private_identifiers(record, data.author_display_name, coach_name)

        if self.summary_generator is None:
            return self._fallback(record, messages, data.author_display_name, "summarizer_not_configured")

        transcript = _scrub(self._render_dialogue(messages, TRANSCRIPT_USER_LABEL, coach_name), identifiers)
        # long conversations are summarized from their opening window
        transcript, _ = truncate_content(transcript, self.validator.ruleset.transcript_max_chars)
        request = SummaryRequest(
            persona_id=record.persona_id,
            transcript_excerpt=transcript,
            max_length=data.max_length or settings.SUMMARY_MAX_CHARS,
        )
        result = await self.summary_generator.summarize(request, cancel_event=cancel_event, timeout=timeout)
        if not result.ok:
            return self._fallback(record, messages, data.author_display_name, result.failure.reason_code)

        summary_text = _scrub(result.response.summary_text, identifiers)
        summary_text, _ = truncate_content(summary_text, request.max_length)
        validation = self.validator.validate_content(summary_text, ContentKind.POST)
        if not validation.ok:
            return self._fallback(record, messages, data.author_display_name, "summary_output_rejected")

        return self._emit(FormattedPost(
            source_kind=SourceKind.CHAT_SUMMARY,
            body=validation.sanitized_text,
            excerpt_of=record.conversation_id,
            virtue_tag=record.virtue,
            persona_id=record.persona_id,
            author_display_name=data.author_display_name,
            metadata=ChatShareMetadata(
                share_method=ShareMethod.AI_SUMMARY,
                coach_name=coach_name,
                message_count=len(messages),
            ),
            original_date=record.created_at.date(),
            created_at=self.clock(),
        ))

    def _fallback(
        self,
        record: ChatRecord,
        messages: Sequence[ChatMessage],
        author_display_name: str,
        reason: str,
    ) -> FormattedPost:
        summary_fallbacks_total.inc({"failure": reason})
        log_event(
            "warning",
            "community.summary_fallback",
            route=ROUTE,
            event_type="summary_fallback",
            error_code=reason,
            extra={"persona_id": record.persona_id, "message_count": len(messages)},
            logger=self.logger,
        )
        return self._excerpt_post(record, messages, author_display_name, fallback_reason=reason)

    def _excerpt_post(
        self,
        record: ChatRecord,
        messages: Sequence[ChatMessage],
        author_display_name: str,
        fallback_reason: Optional[str] = None,
    ) -> FormattedPost:
        coach_name = self._coach_name(record.persona_id)
        text = _scrub(
            self._render_dialogue(messages, EXCERPT_USER_LABEL, coach_name),
            self._private_identifiers(record, author_display_name, coach_name),
        )
        screening = self.validator.screen_content(text)
        if not screening.ok:
            self._rejected(screening, SourceKind.CHAT_EXCERPT)
        text, _ = truncate_content(screening.sanitized_text, self.excerpt_max_chars)
        body = self._validated(text, ContentKind.POST, SourceKind.CHAT_EXCERPT)

        return self._emit(FormattedPost(
            source_kind=SourceKind.CHAT_EXCERPT,
            body=body,
            excerpt_of=record.conversation_id,
            virtue_tag=record.virtue,
            persona_id=record.persona_id,
            author_display_name=author_display_name,
            metadata=ChatShareMetadata(
                share_method=ShareMethod.EXCERPT,
                coach_name=coach_name,
                message_count=len(messages),
                summary_fallback=fallback_reason is not None,
                fallback_reason=fallback_reason,
            ),
            original_date=record.created_at.date(),
            created_at=self.clock(),
        ))

    def _select_messages(self, record: ChatRecord, message_ids: Optional[Sequence[str]]) -> list[ChatMessage]:
        if message_ids is None:
            selected = list(record.messages)
        else:
            wanted = set(message_ids)
            known = {m.id for m in record.messages}
            missing = wanted - known
            if missing:
                raise StructuralInputError(f"{len(missing)} selected message(s) not found in conversation")
            selected = [m for m in record.messages if m.id in wanted]
        if not selected:
            raise StructuralInputError("Conversation has no messages to share")
        return selected

    def _coach_name(self, persona_id: str) -> str:
        persona = self.personas.get_persona_profile(persona_id)
        return persona.display_name if persona else FALLBACK_COACH_NAME

    @staticmethod
    def _render_dialogue(messages: Sequence[ChatMessage], user_label: str, coach_name: str) -> str:
        lines = []
        for msg in messages:
            role = user_label if msg.role == MessageRole.USER else coach_name
            lines.append(f"{role}: {msg.content.strip()}")
        return "\n\n".join(lines)

    @staticmethod
    def _private_identifiers(record: ChatRecord, author_display_name: str, coach_name: str) -> list[str]:
        public = {author_display_name.casefold(), coach_name.casefold()}
        names = [
            m.author_name for m in record.messages
            if m.author_name and m.author_name.casefold() not in public
        ]
        return [record.user_id, record.user_email, *names]

    # ------------------------------------------------------------------
    # Practice achievements
    # ------------------------------------------------------------------

    def format_practice(self, data: Union[FormatPracticeInput, dict]) -> FormattedPost:
        data = _coerce(FormatPracticeInput, data)
        record = data.record
        name = record.practice_name.strip()

        if record.achievement_type == AchievementType.MILESTONE:
            text = f"🎯 Milestone Reached: {name}"
            if record.streak_days:
                text += f"\n\n{record.streak_days}-day streak! 🔥"
        elif record.achievement_type == AchievementType.STREAK:
            if record.streak_days:
                text = f"🔥 Streak Achievement: {record.streak_days} days of {name}!"
            else:
                text = f"🔥 Streak Achievement: {name}!"
        else:
            text = f"✨ Breakthrough: {name}"

        if data.include_note and record.note and record.note.strip():
            text += f"\n\n{record.note.strip()}"

        text = _scrub(text, [record.user_id, record.user_email])
        body = self._validated(text, ContentKind.POST, SourceKind.PRACTICE)

        return self._emit(FormattedPost(
            source_kind=SourceKind.PRACTICE,
            body=body,
            excerpt_of=record.practice_id,
            virtue_tag=record.virtue if data.include_virtue else None,
            author_display_name=data.author_display_name,
            metadata=PracticeShareMetadata(
                practice_name=name,
                achievement_type=record.achievement_type,
                streak_days=record.streak_days,
            ),
            original_date=record.created_at.date(),
            created_at=self.clock(),
        ))

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _validated(self, text: str, kind: ContentKind, source_kind: SourceKind) -> str:
        validation = self.validator.validate_content(text, kind)
        if not validation.ok:
            self._rejected(validation, source_kind)
        return validation.sanitized_text

    def _rejected(self, validation, source_kind: SourceKind) -> None:
        log_event(
            "info",
            "community.content_rejected",
            route=ROUTE,
            event_type="content_rejected",
            error_code=validation.reasons[0].code,
            extra={"source_kind": source_kind.value, "reasons": ",".join(validation.reason_codes())},
            logger=self.logger,
        )
        raise ContentRejected("Content cannot be shared", reasons=validation.reasons)

    def _emit(self, post: FormattedPost) -> FormattedPost:
        log_event(
            "info",
            "community.post_formatted",
            route=ROUTE,
            event_type="post_formatted",
            extra={"source_kind": post.source_kind.value, "body_chars": len(post.body)},
            logger=self.logger,
        )
        return post
