"""Display labels and relative times for rendering community posts."""

from datetime import datetime
from typing import Optional, Union

from agora.models.community import ensure_aware

POST_TYPE_LABELS = {
    "reflection": "Reflection",
    "chat_excerpt": "Wisdom",
    "chat_summary": "Wisdom",
    "practice": "Achievement",
}

REFLECTION_TYPE_LABELS = {
    "morning": "Morning",
    "midday": "Midday",
    "evening": "Evening",
}

ACHIEVEMENT_TYPE_LABELS = {
    "milestone": "Milestone",
    "streak": "Streak",
    "breakthrough": "Breakthrough",
}

SHARE_METHOD_LABELS = {
    "excerpt": "Excerpt",
    "ai_summary": "AI Summary",
}

VIRTUE_EMOJI = {
    "wisdom": "🦉",
    "justice": "⚖️",
    "courage": "🦁",
    "temperance": "🧘",
    "compassion": "💙",
    "resilience": "🌳",
}
DEFAULT_VIRTUE_EMOJI = "✨"

CONTENT_TYPE_EMOJI = {
    "reflection": "📝",
    "chat_excerpt": "💬",
    "chat_summary": "💬",
    "practice": "🎯",
}
DEFAULT_CONTENT_TYPE_EMOJI = "📌"


def _key(value) -> str:
    return getattr(value, "value", value)


def get_post_type_label(source_kind) -> str:
    key = _key(source_kind)
    return POST_TYPE_LABELS.get(key, key)


def get_reflection_type_label(reflection_type) -> str:
    key = _key(reflection_type)
    return REFLECTION_TYPE_LABELS.get(key, key)


def get_achievement_type_label(achievement_type) -> str:
    key = _key(achievement_type)
    return ACHIEVEMENT_TYPE_LABELS.get(key, key)


def get_share_method_label(share_method) -> str:
    if not share_method:
        return ""
    key = _key(share_method)
    return SHARE_METHOD_LABELS.get(key, key)


def get_virtue_emoji(virtue: Optional[str] = None) -> str:
    if not virtue:
        return ""
    return VIRTUE_EMOJI.get(virtue.lower(), DEFAULT_VIRTUE_EMOJI)


def get_content_type_emoji(source_kind) -> str:
    return CONTENT_TYPE_EMOJI.get(_key(source_kind), DEFAULT_CONTENT_TYPE_EMOJI)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count > 1 else ''} ago"


def format_relative_time(created_at: Union[datetime, str], now: datetime) -> str:
    """Human relative time ("just now", "3 hours ago", "2 weeks ago").

    Times after `now` render as "just now".
    """
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)
    seconds = int((ensure_aware(now) - ensure_aware(created_at)).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if seconds < 60:
        return "just now"
    if minutes < 60:
        return _plural(minutes, "minute")
    if hours < 24:
        return _plural(hours, "hour")
    if days < 7:
        return _plural(days, "day")
    if days < 30:
        return _plural(days // 7, "week")
    return _plural(days // 30, "month")
