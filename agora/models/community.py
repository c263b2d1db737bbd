"""
Community domain models.

Private source records (reflections, coach chats, practice logs) come in from
the data layer; formatted posts go out to storage; persisted posts come back
in for feed ranking. All models are frozen.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agora.core.config import settings
from agora.core.errors import SummaryRejected, SummaryUnavailable


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps from the data layer are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Enums
# ============================================================================

class SourceKind(str, Enum):
    REFLECTION = "reflection"
    CHAT_EXCERPT = "chat_excerpt"
    CHAT_SUMMARY = "chat_summary"
    PRACTICE = "practice"


class ContentKind(str, Enum):
    POST = "post"
    COMMENT = "comment"
    TRANSCRIPT = "transcript"


class ReflectionType(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"


class AchievementType(str, Enum):
    MILESTONE = "milestone"
    STREAK = "streak"
    BREAKTHROUGH = "breakthrough"


class ShareMethod(str, Enum):
    EXCERPT = "excerpt"
    AI_SUMMARY = "ai_summary"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FeedMode(str, Enum):
    FOR_YOU = "for_you"
    RECENT = "recent"


class SummaryFailureKind(str, Enum):
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


# ============================================================================
# Validation results
# ============================================================================

class ValidationIssue(_Frozen):
    """One failed rule. `message` never quotes the offending text."""
    code: str
    message: str


class ContentValidation(_Frozen):
    ok: bool
    reasons: tuple[ValidationIssue, ...] = ()
    sanitized_text: Optional[str] = None  # present only when ok

    def reason_codes(self) -> list[str]:
        return [r.code for r in self.reasons]


class DisplayNameValidation(_Frozen):
    ok: bool
    reasons: tuple[ValidationIssue, ...] = ()
    normalized_name: Optional[str] = None

    def reason_codes(self) -> list[str]:
        return [r.code for r in self.reasons]


# ============================================================================
# Raw source records (borrowed from the data layer, never persisted here)
# ============================================================================

class _SourceRecord(_Frozen):
    user_id: str = Field(..., min_length=1)
    user_email: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)


class ReflectionRecord(_SourceRecord):
    id: str = Field(..., min_length=1)
    reflection_type: ReflectionType
    content: Dict[str, str] = Field(default_factory=dict)  # field name -> text
    virtue_focus: Optional[str] = None


class ChatMessage(_Frozen):
    id: str = Field(..., min_length=1)
    role: MessageRole
    content: str
    author_name: Optional[str] = None  # private; never copied into a post


class ChatRecord(_SourceRecord):
    conversation_id: str = Field(..., min_length=1)
    persona_id: str = Field(..., min_length=1)
    messages: tuple[ChatMessage, ...] = ()
    virtue: Optional[str] = None


class PracticeRecord(_SourceRecord):
    practice_id: str = Field(..., min_length=1)
    practice_name: str = Field(..., min_length=1)
    achievement_type: AchievementType
    streak_days: Optional[int] = Field(None, ge=0)
    note: Optional[str] = None
    virtue: Optional[str] = None


# ============================================================================
# Formatter inputs (closed tagged variant on `kind`)
# ============================================================================

class FormatReflectionInput(_Frozen):
    kind: Literal["reflection"] = "reflection"
    record: ReflectionRecord
    author_display_name: str
    fields_to_share: tuple[str, ...]
    include_virtue: bool = True


class FormatChatExcerptInput(_Frozen):
    kind: Literal["chat_excerpt"] = "chat_excerpt"
    record: ChatRecord
    author_display_name: str
    message_ids: tuple[str, ...]


class FormatChatSummaryInput(_Frozen):
    kind: Literal["chat_summary"] = "chat_summary"
    record: ChatRecord
    author_display_name: str
    message_ids: Optional[tuple[str, ...]] = None  # None = whole conversation
    max_length: Optional[int] = Field(None, gt=0)


class FormatPracticeInput(_Frozen):
    kind: Literal["practice"] = "practice"
    record: PracticeRecord
    author_display_name: str
    include_note: bool = True
    include_virtue: bool = True


ShareInput = Annotated[
    Union[FormatReflectionInput, FormatChatExcerptInput, FormatChatSummaryInput, FormatPracticeInput],
    Field(discriminator="kind"),
]


# ============================================================================
# Share metadata (safe, non-identifying details kept next to the body)
# ============================================================================

class ReflectionShareMetadata(_Frozen):
    kind: Literal["reflection"] = "reflection"
    reflection_type: ReflectionType
    fields_shared: tuple[str, ...]


class ChatShareMetadata(_Frozen):
    kind: Literal["chat"] = "chat"
    share_method: ShareMethod
    coach_name: str
    message_count: int
    summary_fallback: bool = False  # summary requested, excerpt delivered
    fallback_reason: Optional[str] = None


class PracticeShareMetadata(_Frozen):
    kind: Literal["practice"] = "practice"
    practice_name: str
    achievement_type: AchievementType
    streak_days: Optional[int] = None


ShareMetadata = Annotated[
    Union[ReflectionShareMetadata, ChatShareMetadata, PracticeShareMetadata],
    Field(discriminator="kind"),
]


# ============================================================================
# Posts
# ============================================================================

class FormattedPost(_Frozen):
    """Anonymized, shareable transform of one private source record."""
    source_kind: SourceKind
    body: str
    excerpt_of: Optional[str] = None  # moderation traceability only
    virtue_tag: Optional[str] = None
    persona_id: Optional[str] = None
    author_display_name: Optional[str] = None
    metadata: Optional[ShareMetadata] = None
    original_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def share_method(self) -> Optional[ShareMethod]:
        if isinstance(self.metadata, ChatShareMetadata):
            return self.metadata.share_method
        return None


class CommunityPost(FormattedPost):
    """Persisted, feed-eligible post. Owned by the storage layer."""
    id: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    author_display_name: str
    excerpt_of: Optional[str] = Field(None, exclude=True)
    reaction_counts: Dict[str, int] = Field(default_factory=dict)

    def total_reactions(self) -> int:
        return sum(max(0, count) for count in self.reaction_counts.values())


class PostScore(_Frozen):
    post_id: str
    score: float
    components: Dict[str, float] = Field(default_factory=dict)


class CommunityPostWithReaction(CommunityPost):
    """Per-request view of a post for one viewer."""
    viewer_reaction: Optional[str] = None
    score: Optional[PostScore] = None

    @property
    def user_has_reacted(self) -> bool:
        return self.viewer_reaction is not None


class UserContext(_Frozen):
    """Viewer-specific ranking inputs, built fresh per feed request."""
    viewer_id: str = Field(..., min_length=1)
    muted_author_ids: frozenset[str] = frozenset()
    preferred_virtues: tuple[str, ...] = ()
    preferred_personas: tuple[str, ...] = ()
    recency_bias_seconds: float = Field(default_factory=lambda: settings.FEED_RECENCY_BIAS_SECONDS, gt=0)
    reactions: Dict[str, str] = Field(default_factory=dict)  # post_id -> viewer's reaction kind


class FeedFilters(_Frozen):
    virtue: Optional[str] = None
    persona_id: Optional[str] = None
    source_kind: Optional[SourceKind] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class FeedPage(_Frozen):
    posts: tuple[CommunityPostWithReaction, ...]
    total: int
    offset: int
    limit: int
    has_more: bool


# ============================================================================
# Summaries
# ============================================================================

class PersonaProfile(_Frozen):
    persona_id: str
    display_name: str
    title: str
    voice_guidelines: str


class SummaryRequest(_Frozen):
    persona_id: str = Field(..., min_length=1)
    transcript_excerpt: str
    max_length: int = Field(default_factory=lambda: settings.SUMMARY_MAX_CHARS, gt=0)
    max_tokens: int = Field(default_factory=lambda: settings.SUMMARY_MAX_TOKENS, gt=0)


class SummaryResponse(_Frozen):
    persona_id: str
    summary_text: str
    tokens_used: int = 0
    truncated: bool = False


class SummaryFailure(_Frozen):
    kind: SummaryFailureKind
    reason_code: str
    reasons: tuple[ValidationIssue, ...] = ()


class SummaryResult(_Frozen):
    """Either a response or a structured failure; never both."""
    response: Optional[SummaryResponse] = None
    failure: Optional[SummaryFailure] = None

    @property
    def ok(self) -> bool:
        return self.response is not None

    @classmethod
    def success(cls, response: SummaryResponse) -> "SummaryResult":
        return cls(response=response)

    @classmethod
    def unavailable(cls, reason_code: str) -> "SummaryResult":
        return cls(failure=SummaryFailure(kind=SummaryFailureKind.UNAVAILABLE, reason_code=reason_code))

    @classmethod
    def rejected(cls, reasons: tuple[ValidationIssue, ...]) -> "SummaryResult":
        return cls(failure=SummaryFailure(
            kind=SummaryFailureKind.REJECTED,
            reason_code="transcript_rejected",
            reasons=reasons,
        ))

    def unwrap(self) -> SummaryResponse:
        if self.response is not None:
            return self.response
        failure = self.failure
        if failure is not None and failure.kind == SummaryFailureKind.REJECTED:
            raise SummaryRejected("Transcript failed content screening")
        raise SummaryUnavailable(f"Summary unavailable: {failure.reason_code if failure else 'unknown'}")
