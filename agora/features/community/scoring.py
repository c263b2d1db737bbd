"""
Feed Scoring Engine

Pure, deterministic ranking of persisted community posts for one viewer.
No external calls, no randomness, no hidden state: a score is a function of
(post, viewer, now) only.

Scoring philosophy:
- Recency contributes 0..0.45 (exponential decay, per-viewer bias)
- Engagement contributes 0..0.30 (log-saturating in total reactions)
- Affinity contributes 0..0.25 (rank of the post's virtue in the viewer's
  preferences; a preferred persona earns a smaller share of the same factor)
- Final score lies in 0..1

Ordering is total: score desc, created_at desc, post id asc.
A malformed candidate is skipped and counted; it never aborts the batch.
"""

import logging
import math
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError

from agora.core.config import settings
from agora.core.errors import StructuralInputError
from agora.core.logging import log_event
from agora.core.metrics import feed_posts_skipped_total
from agora.core.tracing import start_span
from agora.models.community import (
    CommunityPost,
    CommunityPostWithReaction,
    FeedFilters,
    FeedMode,
    FeedPage,
    PostScore,
    UserContext,
    ensure_aware,
)

ROUTE = "community/scoring"


class FeedScoringEngine:
    """Pure deterministic post scoring."""

    # Scoring weights (sum to 1.0)
    RECENCY_WEIGHT = 0.45
    ENGAGEMENT_WEIGHT = 0.30
    AFFINITY_WEIGHT = 0.25

    # Share of the affinity factor a persona match alone can earn
    PERSONA_AFFINITY_SHARE = 0.6

    @staticmethod
    def score_post(
        post: CommunityPost,
        viewer: UserContext,
        now: datetime,
        engagement_cap: Optional[int] = None,
    ) -> PostScore:
        """
        Score one post for one viewer.

        Args:
            post: Persisted post
            viewer: Viewer context (preferences, recency bias)
            now: Reference time; posts "from the future" are treated as brand new
            engagement_cap: Reaction count at which engagement saturates

        Returns:
            PostScore whose components hold each factor's weighted contribution
        """
        cap = engagement_cap or settings.FEED_ENGAGEMENT_CAP
        recency = FeedScoringEngine._score_recency(post.created_at, now, viewer.recency_bias_seconds)
        engagement = FeedScoringEngine._score_engagement(post.total_reactions(), cap)
        affinity = FeedScoringEngine._score_affinity(
            post.virtue_tag,
            viewer.preferred_virtues,
            post.persona_id,
            viewer.preferred_personas,
        )

        components = {
            "recency": FeedScoringEngine.RECENCY_WEIGHT * recency,
            "engagement": FeedScoringEngine.ENGAGEMENT_WEIGHT * engagement,
            "affinity": FeedScoringEngine.AFFINITY_WEIGHT * affinity,
        }
        return PostScore(post_id=post.id, score=sum(components.values()), components=components)

    @staticmethod
    def _score_recency(created_at: datetime, now: datetime, bias_seconds: float) -> float:
        """exp(-age / bias), 0..1. Negative ages clamp to zero."""
        age = (ensure_aware(now) - ensure_aware(created_at)).total_seconds()
        return math.exp(-max(0.0, age) / bias_seconds)

    @staticmethod
    def _score_engagement(total_reactions: int, cap: int) -> float:
        """log(1 + n) / log(1 + cap), saturating at 1."""
        total = max(0, total_reactions)
        cap = max(1, cap)
        return min(1.0, math.log1p(total) / math.log1p(cap))

    @staticmethod
    def _score_affinity(
        virtue_tag: Optional[str],
        preferred_virtues: Sequence[str],
        persona_id: Optional[str] = None,
        preferred_personas: Sequence[str] = (),
    ) -> float:
        """
        Best of the virtue match and the discounted persona match.

        A virtue match scores its preference rank; a persona match scores its
        rank times PERSONA_AFFINITY_SHARE. The factor never exceeds 1.
        """
        virtue = FeedScoringEngine._preference_rank(virtue_tag, preferred_virtues)
        persona = FeedScoringEngine._preference_rank(persona_id, preferred_personas)
        return max(virtue, FeedScoringEngine.PERSONA_AFFINITY_SHARE * persona)

    @staticmethod
    def _preference_rank(value: Optional[str], preferred: Sequence[str]) -> float:
        """1 - rank / n for a preferred value, 0 otherwise. Case-insensitive."""
        if not value:
            return 0.0
        preferences = list(dict.fromkeys(p.casefold() for p in preferred if p))
        key = value.casefold()
        if key not in preferences:
            return 0.0
        return 1.0 - preferences.index(key) / len(preferences)


def _sort_key(post: CommunityPost, score: PostScore):
    return (-score.score, -post.created_at.timestamp(), post.id)


def _recent_key(post: CommunityPost, score: PostScore):
    return (-post.created_at.timestamp(), post.id)


class FeedRanker:
    """Orders candidate posts for a viewer and slices the result for display."""

    def __init__(self, logger: Optional[logging.Logger] = None, engagement_cap: Optional[int] = None):
        self.logger = logger or logging.getLogger("agora.community")
        self.engagement_cap = engagement_cap or settings.FEED_ENGAGEMENT_CAP

    def rank_feed(
        self,
        candidates: Iterable[Any],
        viewer: UserContext,
        now: datetime,
        mode: FeedMode = FeedMode.FOR_YOU,
        filters: Optional[FeedFilters] = None,
    ) -> list[CommunityPostWithReaction]:
        """Rank candidates for `viewer` at `now`.

        Muted authors are dropped, optional filters applied, every survivor
        scored. `for_you` orders by score; `recent` orders by creation time.
        Neither `candidates` nor `viewer` is mutated.
        """
        now = ensure_aware(now)
        mode = FeedMode(mode)
        candidates = list(candidates)

        with start_span("community.rank_feed", {"candidates": len(candidates), "mode": mode.value}):
            posts = self._coerce_candidates(candidates)
            posts = [p for p in posts if p.author_id not in viewer.muted_author_ids]
            if filters is not None:
                posts = apply_filters(posts, filters)

            scored = [
                (post, FeedScoringEngine.score_post(post, viewer, now, self.engagement_cap))
                for post in posts
            ]
            key = _sort_key if mode == FeedMode.FOR_YOU else _recent_key
            scored.sort(key=lambda pair: key(*pair))

            ranked = [self._with_reaction(post, score, viewer) for post, score in scored]

        log_event(
            "info",
            "community.feed_ranked",
            route=ROUTE,
            user_id=viewer.viewer_id,
            event_type="feed_ranked",
            extra={"mode": mode.value, "candidates": len(candidates), "ranked": len(ranked)},
            logger=self.logger,
        )
        return ranked

    def _coerce_candidates(self, candidates: Sequence[Any]) -> list[CommunityPost]:
        posts: list[CommunityPost] = []
        seen_ids: set[str] = set()
        for index, candidate in enumerate(candidates):
            if isinstance(candidate, CommunityPost):
                post = candidate
            else:
                try:
                    post = CommunityPost.model_validate(candidate)
                except ValidationError as exc:
                    self._skip(index, "malformed_post", exc.error_count())
                    continue
            if post.id in seen_ids:
                self._skip(index, "duplicate_post", 0)
                continue
            seen_ids.add(post.id)
            posts.append(post)
        return posts

    def _skip(self, index: int, reason: str, error_count: int):
        feed_posts_skipped_total.inc()
        log_event(
            "warning",
            "community.feed_post_skipped",
            route=ROUTE,
            event_type="feed_post_skipped",
            error_code=reason,
            extra={"index": index, "errors": error_count},
            logger=self.logger,
        )

    @staticmethod
    def _with_reaction(post: CommunityPost, score: PostScore, viewer: UserContext) -> CommunityPostWithReaction:
        # dict(post) keeps excerpt_of, which model_dump would drop
        data = dict(post)
        data["viewer_reaction"] = viewer.reactions.get(post.id)
        data["score"] = score
        return CommunityPostWithReaction.model_validate(data)


# ============================================================================
# Filtering, pagination, widgets
# ============================================================================

def apply_filters(posts: Iterable[CommunityPost], filters: FeedFilters) -> list[CommunityPost]:
    """Keep posts matching every set filter. Date bounds are inclusive."""
    filtered = list(posts)

    if filters.virtue:
        virtue = filters.virtue.casefold()
        filtered = [p for p in filtered if p.virtue_tag and p.virtue_tag.casefold() == virtue]

    if filters.persona_id:
        filtered = [p for p in filtered if p.persona_id == filters.persona_id]

    if filters.source_kind:
        filtered = [p for p in filtered if p.source_kind == filters.source_kind]

    if filters.date_from:
        start = ensure_aware(filters.date_from)
        filtered = [p for p in filtered if p.created_at >= start]

    if filters.date_to:
        end = ensure_aware(filters.date_to)
        filtered = [p for p in filtered if p.created_at <= end]

    return filtered


def paginate_feed(ranked: Sequence[CommunityPostWithReaction], offset: int = 0, limit: int = 20) -> FeedPage:
    if offset < 0:
        raise StructuralInputError("offset must be >= 0")
    if limit < 1:
        raise StructuralInputError("limit must be >= 1")
    page = tuple(ranked[offset:offset + limit])
    return FeedPage(
        posts=page,
        total=len(ranked),
        offset=offset,
        limit=limit,
        has_more=offset + len(page) < len(ranked),
    )


def select_widget_posts(
    ranked: Sequence[CommunityPostWithReaction],
    count: int = 5,
    min_kinds: int = 3,
) -> list[CommunityPostWithReaction]:
    """Top `count` posts, swapping in lower-ranked posts of unseen kinds.

    A swap only evicts the lowest-ranked post whose source kind is already
    represented more than once, so no kind is ever dropped. Output keeps
    rank order.
    """
    if count < 1:
        return []
    selected = list(ranked[:count])

    for post in ranked[count:]:
        kinds = [p.source_kind for p in selected]
        if len(set(kinds)) >= min_kinds:
            break
        if post.source_kind in kinds:
            continue
        for i in range(len(selected) - 1, -1, -1):
            if kinds.count(selected[i].source_kind) > 1:
                del selected[i]
                selected.append(post)
                break
        else:
            break

    return selected


_default_ranker = FeedRanker()


def rank_feed(
    candidates: Iterable[Any],
    viewer: UserContext,
    now: datetime,
    mode: FeedMode = FeedMode.FOR_YOU,
    filters: Optional[FeedFilters] = None,
) -> list[CommunityPostWithReaction]:
    return _default_ranker.rank_feed(candidates, viewer, now, mode=mode, filters=filters)
