"""Text helpers shared by the formatter and the summary generator."""

import re
from typing import Iterable, Optional

TRUNCATION_MARKER = "..."
REDACTION_MARKER = "[redacted]"


def truncate_content(content: str, max_length: int = 200, marker: str = TRUNCATION_MARKER) -> tuple[str, bool]:
    """Cut `content` to at most `max_length` characters, marker included.

    Prefers a word boundary when one sits in the last fifth of the window.

    Returns:
        Tuple of (text, was_truncated)
    """
    if len(content) <= max_length:
        return content, False
    if max_length <= len(marker):
        return marker[:max_length], True

    window = content[: max_length - len(marker)]
    cut = window.rfind(" ")
    if cut >= int(len(window) * 0.8):
        window = window[:cut]
    return window.rstrip() + marker, True


def redact_identifiers(text: str, identifiers: Iterable[Optional[str]]) -> str:
    """Replace private identifiers (ids, emails, participant names) in `text`.

    Matching is case-insensitive and any run of whitespace matches the
    spaces inside an identifier. Run it on sanitized text, since markup can
    split an identifier. Longer identifiers are replaced first so a name
    contained in an email does not leave the email half-redacted.
    """
    candidates = sorted(
        {ident.strip() for ident in identifiers if ident and len(ident.strip()) >= 2},
        key=len,
        reverse=True,
    )
    redacted = text
    for ident in candidates:
        body = r"\s+".join(re.escape(token) for token in ident.split())
        pattern = re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)
        redacted = pattern.sub(REDACTION_MARKER, redacted)
    return redacted
