"""Quality filters that reduce thousands of raw comments to a bounded, high-signal set.

Both variants derive their bar from the thread itself (median/percentile of the
valid comments) so a 20-upvote thread and a 20k-upvote thread are judged on
their own scale, with fixed floors so near-zero engagement still has a bar.

- Reddit: one substance path (length + median-relative score), capped at 50.
- YouTube: spam predicates, then a substance path and an engagement path for
  short comments, plus well-liked replies; capped at 150.

``percentage_kept`` is always relative to *valid* comments, not the raw total.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from threadsense.models.schemas import Comment, ExtractionStats, FilteredComments

logger = structlog.get_logger(__name__)

# === Reddit ===
REDDIT_MAX_COMMENTS = 50
REDDIT_MIN_BODY_CHARS = 10  # trimmed body must be strictly longer
REDDIT_SUBSTANCE_CHARS = 50
REDDIT_SCORE_FLOOR = 3
REDDIT_MEDIAN_FACTOR = 0.5
REDDIT_REMOVED_BODIES = frozenset({"[deleted]", "[removed]"})
MODERATION_BOT_MARKER = "automoderator"

# === YouTube ===
YOUTUBE_MAX_COMMENTS = 150
YOUTUBE_MIN_TEXT_CHARS = 10
YOUTUBE_SUBSTANCE_CHARS = 50
YOUTUBE_SHORT_MIN_CHARS = 20
YOUTUBE_LIKES_FLOOR = 1
YOUTUBE_HIGH_LIKES_FLOOR = 5
YOUTUBE_HIGH_LIKES_PERCENTILE = 75
YOUTUBE_REPLIES_FLOOR = 2
YOUTUBE_REPLIES_FACTOR = 1.5

SpamPredicate = Callable[[str], bool]


def js_round(value: float) -> int:
    """Round half up, matching the upstream dashboards (Python's round() is banker's)."""
    return math.floor(value + 0.5)


def text_length(text: str) -> int:
    """Length in UTF-16 code units, so an astral emoji counts as two characters."""
    return len(text.encode("utf-16-le")) // 2


def _median_desc(values_desc: Sequence[int]) -> int:
    """Middle element of an already descending list (upper-middle for even sizes)."""
    return values_desc[len(values_desc) // 2]


def _median(values: Sequence[int]) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def percentile(values: Sequence[int], p: float) -> int:
    """Nearest-rank percentile; 0 for an empty input."""
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil((p / 100) * len(ordered)) - 1
    return ordered[max(0, index)]


def _stats(total: int, valid: int, kept: list[Comment]) -> ExtractionStats:
    if not kept:
        average = 0
    else:
        average = js_round(sum(c.score for c in kept) / len(kept))
    percentage = js_round((len(kept) / valid) * 100) if valid else 0
    return ExtractionStats(
        total=total,
        valid=valid,
        extracted=len(kept),
        percentage_kept=percentage,
        average_score=average,
    )


def _top_by_score(comments: list[Comment], cap: int) -> list[Comment]:
    # sorted() is stable, so equal scores keep their original order
    return sorted(comments, key=lambda c: c.score, reverse=True)[:cap]


# ---------------------------------------------------------------------------
# Reddit
# ---------------------------------------------------------------------------


def is_valid_reddit_comment(comment: Comment) -> bool:
    body = comment.body or ""
    if not body or body in REDDIT_REMOVED_BODIES:
        return False
    if not comment.author or comment.author == "[deleted]":
        return False
    return text_length(body.strip()) > REDDIT_MIN_BODY_CHARS


def reddit_score_threshold(valid_scores_desc: Sequence[int]) -> int:
    """Half the median score, never below the floor."""
    median_score = _median_desc(valid_scores_desc)
    return max(math.floor(median_score * REDDIT_MEDIAN_FACTOR), REDDIT_SCORE_FLOOR)


def filter_reddit_comments(comments: Sequence[Comment]) -> FilteredComments:
    """Keep substantive, above-threshold, non-bot comments, highest score first."""
    valid = [c for c in comments if is_valid_reddit_comment(c)]
    logger.info("comment_filter.reddit.valid", total=len(comments), valid=len(valid))

    if not valid:
        return FilteredComments(extraction_stats=_stats(len(comments), 0, []))

    scores = sorted((c.score for c in valid), reverse=True)
    threshold = reddit_score_threshold(scores)
    logger.info(
        "comment_filter.reddit.thresholds",
        score=threshold,
        top_score=scores[0],
        median_score=_median_desc(scores),
    )

    kept = [
        c
        for c in valid
        if c.score >= threshold
        and text_length(c.body) >= REDDIT_SUBSTANCE_CHARS
        and MODERATION_BOT_MARKER not in c.author.lower()
    ]
    kept = _top_by_score(kept, REDDIT_MAX_COMMENTS)
    stats = _stats(len(comments), len(valid), kept)
    logger.info(
        "comment_filter.reddit.done",
        extracted=stats.extracted,
        percentage_kept=stats.percentage_kept,
    )
    return FilteredComments(valuable_comments=kept, extraction_stats=stats)


# ---------------------------------------------------------------------------
# YouTube
# ---------------------------------------------------------------------------

_EMOJI_JOINERS = frozenset({"\u200d", "\ufe0f", "\ufe0e", "\u20e3"})


def is_emoji_only(text: str) -> bool:
    """True when every visible character is a pictograph, modifier or joiner."""
    seen_symbol = False
    for ch in text:
        if ch.isspace() or ch in _EMOJI_JOINERS:
            continue
        if unicodedata.category(ch) in ("So", "Sk"):
            seen_symbol = True
            continue
        return False
    return seen_symbol


def _regex_predicate(pattern: str, flags: int = 0) -> SpamPredicate:
    compiled = re.compile(pattern, flags)
    return lambda text: compiled.search(text) is not None


# Append to this list to reject new spam shapes; the filter only iterates it.
SPAM_PREDICATES: list[SpamPredicate] = [
    _regex_predicate(r"^first!?$", re.IGNORECASE),
    _regex_predicate(r"^(sub|subscribe).*(back|me)", re.IGNORECASE),
    _regex_predicate(r"check.*(my|out).*(channel|video)", re.IGNORECASE),
    is_emoji_only,
    _regex_predicate(r"^(nice|cool|great|awesome|wow|lol|lmao)\.?$", re.IGNORECASE),
    _regex_predicate(r"^\d+:\d+"),
    _regex_predicate(r"who'?s? (here|watching).*20\d{2}", re.IGNORECASE),
]


def is_spam(text: str, predicates: Sequence[SpamPredicate] | None = None) -> bool:
    checks = SPAM_PREDICATES if predicates is None else predicates
    return any(check(text) for check in checks)


def is_valid_youtube_comment(
    comment: Comment, predicates: Sequence[SpamPredicate] | None = None
) -> bool:
    if not comment.body:
        return False
    text = comment.body.strip()
    if text_length(text) < YOUTUBE_MIN_TEXT_CHARS:
        return False
    return not is_spam(text, predicates)


@dataclass(frozen=True)
class YouTubeThresholds:
    likes: int
    high_likes: int
    replies: int


def youtube_thresholds(valid: Sequence[Comment]) -> YouTubeThresholds:
    """Dynamic bars for a non-empty list of valid comments."""
    like_counts = sorted((c.score for c in valid), reverse=True)
    median_likes = _median_desc(like_counts)
    median_replies = _median([c.reply_count for c in valid if not c.is_reply])
    return YouTubeThresholds(
        likes=max(math.floor(median_likes * 0.5), YOUTUBE_LIKES_FLOOR),
        high_likes=max(
            percentile(like_counts, YOUTUBE_HIGH_LIKES_PERCENTILE), YOUTUBE_HIGH_LIKES_FLOOR
        ),
        replies=max(math.ceil(median_replies * YOUTUBE_REPLIES_FACTOR), YOUTUBE_REPLIES_FLOOR),
    )


def _accept_youtube(comment: Comment, thresholds: YouTubeThresholds) -> bool:
    length = text_length(comment.body)

    # Substance
    if length >= YOUTUBE_SUBSTANCE_CHARS and comment.score >= thresholds.likes:
        return True

    # Engagement: short but sparked discussion or drew many likes
    if YOUTUBE_SHORT_MIN_CHARS <= length < YOUTUBE_SUBSTANCE_CHARS:
        if comment.reply_count >= thresholds.replies or comment.score >= thresholds.high_likes:
            return True

    # Well-liked replies carry conversational context
    return comment.is_reply and comment.score >= thresholds.high_likes


def filter_youtube_comments(
    comments: Sequence[Comment], predicates: Sequence[SpamPredicate] | None = None
) -> FilteredComments:
    """Drop spam, then keep comments passing the substance or engagement path."""
    valid = [c for c in comments if is_valid_youtube_comment(c, predicates)]
    logger.info("comment_filter.youtube.valid", total=len(comments), valid=len(valid))

    if not valid:
        return FilteredComments(extraction_stats=_stats(len(comments), 0, []))

    thresholds = youtube_thresholds(valid)
    logger.info(
        "comment_filter.youtube.thresholds",
        likes=thresholds.likes,
        high_likes=thresholds.high_likes,
        replies=thresholds.replies,
    )

    kept = _top_by_score([c for c in valid if _accept_youtube(c, thresholds)], YOUTUBE_MAX_COMMENTS)
    stats = _stats(len(comments), len(valid), kept)
    logger.info(
        "comment_filter.youtube.done",
        extracted=stats.extracted,
        percentage_kept=stats.percentage_kept,
    )
    return FilteredComments(valuable_comments=kept, extraction_stats=stats)
