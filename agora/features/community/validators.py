"""Content rules for community posts, comments, transcripts and display names.

Validation is a pure function of the input text and a `ContentRuleset`.
Every failing rule contributes a `ValidationIssue`; issues name the rule class
(e.g. "pii_email") and never echo the matched text.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from agora.core.config import Settings, settings
from agora.core.logging import log_event
from agora.core.metrics import validation_rejections_total
from agora.models.community import (
    AchievementType,
    ContentKind,
    ContentValidation,
    DisplayNameValidation,
    ReflectionType,
    ShareMethod,
    SourceKind,
    ValidationIssue,
)

ROUTE = "community/validators"

DEFAULT_PII_PATTERNS: dict[str, str] = {
    "pii_email": r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}",
    "pii_phone": r"(?<!\d)(?:\+?\d{1,3}[\s.\-]?)?(?:\(\d{3}\)|\d{3})[\s.\-]?\d{3}[\s.\-]?\d{4}(?!\d)",
}

DEFAULT_DENYLIST: tuple[str, ...] = (
    "fuck",
    "fucking",
    "shit",
    "bitch",
    "cunt",
    "asshole",
    "bastard",
    "motherfucker",
    "dickhead",
    "kys",
)

DISPLAY_NAME_ALLOWED = re.compile(r"^[A-Za-z0-9\s\-_]+$")

_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_SCHEME_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)
_ANGLE_RE = re.compile(r"[<>]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_SPACE_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


class ContentRuleset(BaseModel):
    """Static rule table passed explicitly to the validator."""
    post_min_chars: int = 1
    post_max_chars: int = 2000
    comment_max_chars: int = 500
    transcript_max_chars: int = 20000
    display_name_min_chars: int = 2
    display_name_max_chars: int = 40
    pii_patterns: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_PII_PATTERNS))
    denylist: tuple[str, ...] = DEFAULT_DENYLIST

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "ContentRuleset":
        cfg = cfg or settings
        denylist = tuple(dict.fromkeys(DEFAULT_DENYLIST + tuple(cfg.profanity_extra_words())))
        return cls(
            post_min_chars=cfg.POST_MIN_CHARS,
            post_max_chars=cfg.POST_MAX_CHARS,
            comment_max_chars=cfg.COMMENT_MAX_CHARS,
            transcript_max_chars=cfg.TRANSCRIPT_MAX_CHARS,
            display_name_min_chars=cfg.DISPLAY_NAME_MIN_CHARS,
            display_name_max_chars=cfg.DISPLAY_NAME_MAX_CHARS,
            denylist=denylist,
        )

    def max_chars_for(self, kind: ContentKind) -> int:
        if kind == ContentKind.COMMENT:
            return self.comment_max_chars
        if kind == ContentKind.TRANSCRIPT:
            return self.transcript_max_chars
        return self.post_max_chars


def sanitize_text(text: str) -> str:
    """Strip markup and script-sensitive sequences; result is plain text.

    Repeats until stable, so sanitize_text(sanitize_text(x)) == sanitize_text(x).
    """
    current = text
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return current
        current = cleaned


def _sanitize_once(text: str) -> str:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _SCRIPT_SCHEME_RE.sub("", cleaned)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    cleaned = _ANGLE_RE.sub("", cleaned)
    cleaned = _CONTROL_RE.sub("", cleaned)
    cleaned = _INLINE_SPACE_RE.sub(" ", cleaned)
    cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def normalize_display_name(name: str) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(name.split()).casefold()


class ContentValidator:
    """Validates inbound text against a ruleset. Stateless apart from compiled patterns."""

    def __init__(self, ruleset: Optional[ContentRuleset] = None, logger: Optional[logging.Logger] = None):
        self.ruleset = ruleset or ContentRuleset.from_settings()
        self.logger = logger or logging.getLogger("agora.community")
        self._pii = [
            (code, re.compile(pattern, re.IGNORECASE))
            for code, pattern in self.ruleset.pii_patterns.items()
        ]
        self._denylist = [
            re.compile(rf"(?<![a-z0-9]){re.escape(word.lower())}(?![a-z0-9])")
            for word in self.ruleset.denylist
            if word
        ]

    def validate_content(self, text: Any, kind: ContentKind = ContentKind.POST) -> ContentValidation:
        """Validate free text for a post, comment or transcript.

        Rules run in order (length, disallowed patterns); every failing rule is
        reported. Non-text input yields a single structural reason.
        """
        try:
            kind = ContentKind(kind)
        except ValueError:
            return self._reject(
                ContentValidation,
                "unknown",
                [ValidationIssue(code="malformed_input", message="Unknown content kind")],
            )
        if not isinstance(text, str):
            return self._reject(
                ContentValidation,
                kind.value,
                [ValidationIssue(code="malformed_input", message="Content must be text")],
            )

        sanitized = sanitize_text(text)
        issues: list[ValidationIssue] = []

        max_chars = self.ruleset.max_chars_for(kind)
        if len(sanitized) < self.ruleset.post_min_chars:
            issues.append(ValidationIssue(code="too_short", message="Content cannot be empty"))
        elif len(sanitized) > max_chars:
            issues.append(ValidationIssue(
                code="too_long",
                message=f"Content is too long (max {max_chars} characters)",
            ))

        issues.extend(self._scan_disallowed(sanitized))

        if issues:
            return self._reject(ContentValidation, kind.value, issues)
        return ContentValidation(ok=True, sanitized_text=sanitized)

    def screen_content(self, text: Any) -> ContentValidation:
        """Check text for PII and denylisted language only, with no length limit.

        Used on source text that is cut down to size afterwards, so the length
        rules apply to the shortened result instead.
        """
        if not isinstance(text, str):
            return self._reject(
                ContentValidation,
                "screen",
                [ValidationIssue(code="malformed_input", message="Content must be text")],
            )
        sanitized = sanitize_text(text)
        issues = self._scan_disallowed(sanitized)
        if issues:
            return self._reject(ContentValidation, "screen", issues)
        return ContentValidation(ok=True, sanitized_text=sanitized)

    def validate_display_name(self, name: Any) -> DisplayNameValidation:
        if not isinstance(name, str):
            return self._reject(
                DisplayNameValidation,
                "display_name",
                [ValidationIssue(code="malformed_input", message="Display name is required")],
            )

        normalized = normalize_display_name(name)
        issues: list[ValidationIssue] = []

        min_chars = self.ruleset.display_name_min_chars
        max_chars = self.ruleset.display_name_max_chars
        if len(normalized) < min_chars:
            issues.append(ValidationIssue(
                code="too_short",
                message=f"Display name must be at least {min_chars} characters",
            ))
        elif len(normalized) > max_chars:
            issues.append(ValidationIssue(
                code="too_long",
                message=f"Display name must be no more than {max_chars} characters",
            ))

        if normalized and not DISPLAY_NAME_ALLOWED.match(normalized):
            issues.append(ValidationIssue(
                code="invalid_characters",
                message="Display name can only contain letters, numbers, spaces, dashes, and underscores",
            ))

        issues.extend(self._scan_disallowed(normalized))

        if issues:
            return self._reject(DisplayNameValidation, "display_name", issues, normalized_name=normalized)
        return DisplayNameValidation(ok=True, normalized_name=normalized)

    def _scan_disallowed(self, text: str) -> list[ValidationIssue]:
        issues = []
        for code, pattern in self._pii:
            if pattern.search(text):
                issues.append(ValidationIssue(
                    code=code,
                    message="Content contains personal contact information",
                ))
        lowered = text.lower()
        if any(pattern.search(lowered) for pattern in self._denylist):
            issues.append(ValidationIssue(code="profanity", message="Content contains inappropriate language"))
        return issues

    def _reject(self, result_cls, subject: str, issues: list[ValidationIssue], **fields):
        codes = [issue.code for issue in issues]
        for code in codes:
            validation_rejections_total.inc({"reason": code})
        log_event(
            "info",
            "community.validation_rejected",
            route=ROUTE,
            event_type="validation_rejected",
            error_code=codes[0],
            extra={"subject": subject, "reasons": ",".join(codes)},
            logger=self.logger,
        )
        return result_cls(ok=False, reasons=tuple(issues), **fields)


# ============================================================================
# Share metadata validation (records coming back from storage or clients)
# ============================================================================

def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def validate_reflection_metadata(metadata: Any) -> bool:
    if not isinstance(metadata, dict):
        return False
    if metadata.get("reflection_type") not in {t.value for t in ReflectionType}:
        return False
    fields_shared = metadata.get("fields_shared")
    if not isinstance(fields_shared, (list, tuple)) or not fields_shared:
        return False
    return True


def validate_chat_metadata(metadata: Any) -> bool:
    if not isinstance(metadata, dict):
        return False
    if metadata.get("share_method") not in {m.value for m in ShareMethod}:
        return False
    if not _is_nonempty_str(metadata.get("coach_name")):
        return False
    count = metadata.get("message_count")
    return isinstance(count, int) and not isinstance(count, bool) and count >= 0


def validate_practice_metadata(metadata: Any) -> bool:
    if not isinstance(metadata, dict):
        return False
    if not _is_nonempty_str(metadata.get("practice_name")):
        return False
    if metadata.get("achievement_type") not in {a.value for a in AchievementType}:
        return False
    streak = metadata.get("streak_days")
    if streak is not None and (not isinstance(streak, int) or isinstance(streak, bool) or streak < 0):
        return False
    return True


def validate_share_metadata(source_kind: Any, metadata: Any) -> tuple[bool, Optional[str]]:
    """Check share metadata shape for a source kind.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        kind = SourceKind(source_kind)
    except ValueError:
        return False, "Invalid source kind"

    if kind == SourceKind.REFLECTION:
        valid = validate_reflection_metadata(metadata)
    elif kind in (SourceKind.CHAT_EXCERPT, SourceKind.CHAT_SUMMARY):
        valid = validate_chat_metadata(metadata)
    else:
        valid = validate_practice_metadata(metadata)

    if not valid:
        return False, "Invalid share metadata"
    return True, None
