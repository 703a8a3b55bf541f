"""
Research feed normalization, filtering and ranking.

Feed records arrive in several legacy shapes. :func:`normalize` maps each
onto a canonical :class:`FeedPost`; :func:`filter_posts` and
:func:`sort_posts` are pure views over the normalized list.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, get_args

from learnonline_advisor.coalesce import chain, coalesce
from learnonline_advisor.types import (
    AdvisorConfig,
    FeedPost,
    FeedStats,
    FilterMode,
    SortMode,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = AdvisorConfig()

FILTER_MODES: tuple[str, ...] = get_args(FilterMode)
SORT_MODES: tuple[str, ...] = get_args(SortMode)

# Popularity weights: likes, comments, collaborations
LIKE_WEIGHT = 2
COMMENT_WEIGHT = 1
COLLABORATION_WEIGHT = 3

_ID = chain("id")
_TITLE = chain("title")
_SUMMARY = chain("summary", "description", "body")
_CATEGORY = chain("category")
_AUTHOR_NAME = chain("author.name", "authorName", "owner", "createdBy")
_AUTHOR_ROLE = chain("author.role", "author.title", "authorRole", "role")
_TIMESTAMP = chain("timestamp", "date", "publishedAt", "createdAt")
_IMAGE = chain("image", "coverImage", "heroImage")
_LINK = chain("link", "url", "cta")
_LIKES = chain("stats.likes", "likes")
_COMMENTS = chain("stats.comments", "comments")
_COLLABORATIONS = chain("stats.collaborations", "stats.collabs", "collaborations", "partners")


def _count(value: Any) -> int:
    """Coerce an engagement counter to a non-negative integer."""
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _flag(value: Any) -> bool:
    """Read a boolean flag the gateway may send as a bool, number or string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if isinstance(value, (int, float)):
        return value != 0
    return False


def extract_tags(record: Any, limit: int = 6) -> list[str]:
    """Tags from a list, a comma-separated string or a ``keywords`` list.

    Blank entries are dropped, duplicates removed in first-seen order, and
    the result is capped at ``limit``.
    """
    if not isinstance(record, dict):
        return []
    raw = record.get("tags")
    if isinstance(raw, list):
        candidates: Iterable[Any] = raw
    elif isinstance(raw, str):
        candidates = raw.split(",")
    elif isinstance(record.get("keywords"), list):
        candidates = record["keywords"]
    else:
        return []

    tags: list[str] = []
    for tag in candidates:
        if tag is None:
            continue
        text = str(tag).strip()
        if text and text not in tags:
            tags.append(text)
    return tags[:limit]


def normalize_post(record: Any, index: int, config: AdvisorConfig = DEFAULT_CONFIG) -> FeedPost:
    """Map one raw feed record onto the canonical shape."""
    category = coalesce(record, _CATEGORY, "Insight")
    flags = record if isinstance(record, dict) else {}
    is_collaboration = _flag(flags.get("isCollaboration")) or (
        isinstance(category, str) and category.lower() == "collaboration"
    )
    image = coalesce(record, _IMAGE)
    link = coalesce(record, _LINK)

    return FeedPost(
        id=str(coalesce(record, _ID, f"research-{index}")),
        order=index,
        title=str(coalesce(record, _TITLE, "Research update")),
        summary=str(
            coalesce(record, _SUMMARY, "An exciting research update from our community.")
        ),
        category=str(category),
        author_name=str(coalesce(record, _AUTHOR_NAME, "Researcher")),
        author_role=str(coalesce(record, _AUTHOR_ROLE, "")),
        timestamp=str(coalesce(record, _TIMESTAMP, "Recently")),
        image=str(image) if image else None,
        link=str(link) if link else None,
        tags=extract_tags(record, config.max_tags),
        stats=FeedStats(
            likes=_count(coalesce(record, _LIKES, 0)),
            comments=_count(coalesce(record, _COMMENTS, 0)),
            collaborations=_count(coalesce(record, _COLLABORATIONS, 0)),
        ),
        is_collaboration=is_collaboration,
        is_mine=_flag(flags.get("isMine")),
        trending=_flag(flags.get("trending")),
    )


def normalize(raw_feed: Any, config: AdvisorConfig = DEFAULT_CONFIG) -> list[FeedPost]:
    """Normalize a raw feed. A missing or non-list feed yields an empty list."""
    if not isinstance(raw_feed, list):
        return []
    return [normalize_post(record, i, config) for i, record in enumerate(raw_feed)]


def is_trending(post: FeedPost, config: AdvisorConfig = DEFAULT_CONFIG) -> bool:
    """Flagged trending, or liked at least ``trending_likes_threshold`` times."""
    return post.trending or post.stats.likes >= config.trending_likes_threshold


def filter_posts(
    posts: list[FeedPost], mode: str = "all", config: AdvisorConfig = DEFAULT_CONFIG
) -> list[FeedPost]:
    """Filter posts by ``all``, ``collaboration``, ``mine`` or ``trending``."""
    if mode not in FILTER_MODES:
        raise ValueError(f"Unknown feed filter {mode!r} (expected one of {FILTER_MODES})")
    if mode == "collaboration":
        return [p for p in posts if p.is_collaboration]
    if mode == "mine":
        return [p for p in posts if p.is_mine]
    if mode == "trending":
        return [p for p in posts if is_trending(p, config)]
    return list(posts)


def popularity_score(post: FeedPost) -> int:
    return (
        post.stats.likes * LIKE_WEIGHT
        + post.stats.comments * COMMENT_WEIGHT
        + post.stats.collaborations * COLLABORATION_WEIGHT
    )


def sort_posts(posts: list[FeedPost], mode: str = "recent") -> list[FeedPost]:
    """Order posts by source recency or by popularity.

    Equal popularity scores keep their source order.
    """
    if mode not in SORT_MODES:
        raise ValueError(f"Unknown feed sort {mode!r} (expected one of {SORT_MODES})")
    if mode == "popular":
        return sorted(posts, key=lambda p: (-popularity_score(p), p.order))
    return sorted(posts, key=lambda p: p.order)


def feed_summary(posts: list[FeedPost], config: AdvisorConfig = DEFAULT_CONFIG) -> dict[str, int]:
    """Counts shown alongside the feed filters."""
    return {
        "total": len(posts),
        "collaboration": sum(1 for p in posts if p.is_collaboration),
        "mine": sum(1 for p in posts if p.is_mine),
        "trending": sum(1 for p in posts if is_trending(p, config)),
    }
