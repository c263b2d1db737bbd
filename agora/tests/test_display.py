"""Tests for display labels and relative times."""

from datetime import timedelta

import pytest

from agora.features.community.display import (
    format_relative_time,
    get_achievement_type_label,
    get_content_type_emoji,
    get_post_type_label,
    get_reflection_type_label,
    get_share_method_label,
    get_virtue_emoji,
)
from agora.models.community import AchievementType, ShareMethod, SourceKind


class TestLabels:
    """Label lookups fall back to the raw value."""

    def test_post_type_labels(self):
        assert get_post_type_label(SourceKind.REFLECTION) == "Reflection"
        assert get_post_type_label("chat_summary") == "Wisdom"
        assert get_post_type_label(SourceKind.PRACTICE) == "Achievement"
        assert get_post_type_label("poll") == "poll"

    def test_share_method_labels(self):
        assert get_share_method_label(ShareMethod.AI_SUMMARY) == "AI Summary"
        assert get_share_method_label("excerpt") == "Excerpt"
        assert get_share_method_label(None) == ""

    def test_type_labels(self):
        assert get_reflection_type_label("evening") == "Evening"
        assert get_achievement_type_label(AchievementType.BREAKTHROUGH) == "Breakthrough"

    def test_emoji(self):
        assert get_virtue_emoji("Courage") == "🦁"
        assert get_virtue_emoji("patience") == "✨"
        assert get_virtue_emoji(None) == ""
        assert get_content_type_emoji(SourceKind.CHAT_EXCERPT) == "💬"
        assert get_content_type_emoji("unknown") == "📌"


class TestRelativeTime:
    """Relative time buckets."""

    @pytest.mark.parametrize(
        "delta, expected",
        [
            (timedelta(seconds=30), "just now"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(minutes=45), "45 minutes ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(hours=23), "23 hours ago"),
            (timedelta(days=2), "2 days ago"),
            (timedelta(days=14), "2 weeks ago"),
            (timedelta(days=65), "2 months ago"),
        ],
    )
    def test_buckets(self, now, delta, expected):
        assert format_relative_time(now - delta, now) == expected

    def test_future_is_just_now(self, now):
        assert format_relative_time(now + timedelta(hours=1), now) == "just now"

    def test_iso_string_input(self, now):
        assert format_relative_time("2025-10-04T09:00:00+00:00", now) == "3 hours ago"

    def test_naive_input_is_utc(self, now):
        assert format_relative_time((now - timedelta(days=1)).replace(tzinfo=None), now) == "1 day ago"
