"""YouTube video + comment extraction over the Data API v3.

Every billed call is recorded on the quota tracker (videos.list and each
commentThreads page cost 1 unit, search.list costs 100). Public entry points
return result objects and never raise.
"""

import asyncio
import re
from datetime import datetime

import httpx
import structlog

from threadsense.core.config import settings
from threadsense.core.errors import (
    ExtractionError,
    InvalidUrlError,
    NotFoundError,
    PartialCommentsError,
    UpstreamForbiddenError,
    UpstreamRateLimitError,
)
from threadsense.core.metrics import api_call_duration_seconds, api_calls_total
from threadsense.core.quota import LIST_UNIT_COST, SEARCH_UNIT_COST, QuotaTracker, youtube_quota
from threadsense.models.schemas import (
    Comment,
    ExtractionResult,
    ExtractOutcome,
    PostMeta,
    VideoMeta,
    VideoSearchResult,
    VideoSummary,
)
from threadsense.services.comment_filter import filter_youtube_comments
from threadsense.tools.common import as_int, error_reason, http_client

logger = structlog.get_logger(__name__)

_VIDEO_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtube\.com/watch\?.+&v=)([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/embed/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/v/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/live/([a-zA-Z0-9_-]{11})"),
)
_PAGE_SIZE = 100
_DESCRIPTION_PREVIEW_CHARS = 500
_QUOTA_EXCEEDED_MESSAGE = "YouTube API quota exceeded - try again tomorrow"


def extract_video_id(url: str) -> str | None:
    """Extract the 11-character video id from watch, short, embed and live URLs."""
    raw = str(url or "")
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(raw)
        if match:
            return match.group(1)
    return None


def is_youtube_url(url: str) -> bool:
    return bool(url) and re.search(r"(?:youtube\.com|youtu\.be)", url) is not None


def _ensure_configured() -> str:
    if not settings.YOUTUBE_ENABLED:
        raise ExtractionError("YouTube integration is disabled")
    if not settings.YOUTUBE_API_KEY:
        raise ExtractionError("YouTube API key not configured")
    return settings.YOUTUBE_API_KEY


def _to_epoch(value: object) -> float | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


async def _get(
    http: httpx.AsyncClient, endpoint: str, params: dict, *, api_name: str
) -> httpx.Response:
    url = f"{settings.YOUTUBE_API_BASE_URL.rstrip('/')}/{endpoint}"
    try:
        with api_call_duration_seconds.labels(api_name=api_name).time():
            response = await http.get(url, params=params, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        api_calls_total.labels(api_name=api_name, status="error").inc()
        raise ExtractionError(f"YouTube request failed: {exc}") from exc
    status = "success" if response.is_success else str(response.status_code)
    api_calls_total.labels(api_name=api_name, status=status).inc()
    return response


def _raise_for_video_status(response: httpx.Response, *, comments: bool) -> None:
    if response.is_success:
        return
    status_code = response.status_code
    reason = error_reason(response)
    logger.warning("social_youtube.http_error", status_code=status_code, reason=reason)
    if reason == "quotaExceeded" or status_code == 429:
        raise UpstreamRateLimitError(_QUOTA_EXCEEDED_MESSAGE)
    if status_code == 403:
        if comments and reason == "commentsDisabled":
            raise UpstreamForbiddenError("Comments are disabled for this video")
        if comments:
            raise UpstreamForbiddenError("YouTube API access forbidden")
        raise UpstreamForbiddenError("YouTube API access forbidden - check API key")
    if status_code == 404:
        raise NotFoundError("Video not found")
    raise ExtractionError(f"YouTube API error {status_code}", code=status_code)


async def fetch_video_metadata(
    video_id: str,
    *,
    client: httpx.AsyncClient | None = None,
    quota: QuotaTracker | None = None,
) -> VideoMeta:
    api_key = _ensure_configured()
    tracker = quota or youtube_quota
    async with http_client(client, settings.YOUTUBE_TIMEOUT_SECONDS) as http:
        response = await _get(
            http,
            "videos",
            {"part": "snippet,statistics", "id": video_id, "key": api_key},
            api_name="youtube_videos",
        )
    tracker.record_usage(LIST_UNIT_COST, "videos")
    _raise_for_video_status(response, comments=False)

    items = response.json().get("items") or []
    if not items:
        raise NotFoundError("Video not found or is private")
    video = items[0]
    snippet = video.get("snippet") or {}
    statistics = video.get("statistics") or {}
    return VideoMeta(
        id=str(video.get("id") or video_id),
        title=str(snippet.get("title") or ""),
        description=str(snippet.get("description") or ""),
        channel_id=str(snippet.get("channelId") or ""),
        channel_title=str(snippet.get("channelTitle") or ""),
        published_at=str(snippet.get("publishedAt") or ""),
        view_count=as_int(statistics.get("viewCount")),
        like_count=as_int(statistics.get("likeCount")),
        comment_count=as_int(statistics.get("commentCount")),
    )


def _comment_from_snippet(
    comment_id: str,
    snippet: dict,
    *,
    reply_count: int,
    is_reply: bool,
    parent_id: str | None,
) -> Comment:
    channel = snippet.get("authorChannelId")
    return Comment(
        id=comment_id,
        author=str(snippet.get("authorDisplayName") or ""),
        author_channel_id=channel.get("value") if isinstance(channel, dict) else None,
        body=str(snippet.get("textDisplay") or ""),
        score=as_int(snippet.get("likeCount")),
        reply_count=reply_count,
        created_utc=_to_epoch(snippet.get("publishedAt")),
        depth=1 if is_reply else 0,
        is_reply=is_reply,
        parent_id=parent_id,
    )


async def fetch_video_comments(
    video_id: str,
    *,
    max_comments: int | None = None,
    include_replies: bool = True,
    max_replies_per_comment: int | None = None,
    client: httpx.AsyncClient | None = None,
    quota: QuotaTracker | None = None,
) -> list[Comment]:
    """Page through comment threads, interleaving each top-level comment with its replies."""
    api_key = _ensure_configured()
    tracker = quota or youtube_quota
    limit = max_comments or settings.YOUTUBE_MAX_COMMENTS
    replies_cap = max_replies_per_comment or settings.YOUTUBE_MAX_REPLIES_PER_COMMENT

    comments: list[Comment] = []
    page_token: str | None = None
    logger.info("social_youtube.comments.start", video_id=video_id, max_comments=limit)

    async with http_client(client, settings.YOUTUBE_TIMEOUT_SECONDS) as http:
        while len(comments) < limit:
            params: dict[str, str | int] = {
                "part": "snippet,replies",
                "videoId": video_id,
                "maxResults": min(_PAGE_SIZE, limit - len(comments)),
                "order": "relevance",
                "textFormat": "plainText",
                "key": api_key,
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                response = await _get(http, "commentThreads", params, api_name="youtube_comments")
                tracker.record_usage(LIST_UNIT_COST, "comment_threads")
                _raise_for_video_status(response, comments=True)
            except ExtractionError as exc:
                if not comments:
                    raise
                logger.warning(
                    "social_youtube.comments.partial",
                    video_id=video_id,
                    kept=len(comments),
                    error=exc.message,
                )
                raise PartialCommentsError(exc.message, comments=comments, code=exc.code) from exc
            payload = response.json()

            threads = payload.get("items") or []
            if not threads:
                break

            for thread in threads:
                thread_snippet = thread.get("snippet") or {}
                top = thread_snippet.get("topLevelComment") or {}
                top_id = str(top.get("id") or "")
                comments.append(
                    _comment_from_snippet(
                        top_id,
                        top.get("snippet") or {},
                        reply_count=as_int(thread_snippet.get("totalReplyCount")),
                        is_reply=False,
                        parent_id=None,
                    )
                )

                replies = (thread.get("replies") or {}).get("comments") or []
                if include_replies:
                    for reply in replies[:replies_cap]:
                        comments.append(
                            _comment_from_snippet(
                                str(reply.get("id") or ""),
                                reply.get("snippet") or {},
                                reply_count=0,
                                is_reply=True,
                                parent_id=top_id,
                            )
                        )

                if len(comments) >= limit:
                    break

            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            await asyncio.sleep(settings.YOUTUBE_PAGE_DELAY_SECONDS)

    logger.info(
        "social_youtube.comments.fetched",
        video_id=video_id,
        count=len(comments),
        top_level=sum(1 for c in comments if not c.is_reply),
    )
    return comments


def video_as_post(video: VideoMeta) -> PostMeta:
    """Map a video onto the post shape that prompt builders read for both sources."""
    return PostMeta(
        id=video.id,
        title=video.title,
        selftext=video.description[:_DESCRIPTION_PREVIEW_CHARS],
        author=video.channel_title,
        subreddit=f"YouTube: {video.channel_title}",
        score=video.like_count,
        num_comments=video.comment_count,
        created_utc=_to_epoch(video.published_at),
        permalink=f"https://youtube.com/watch?v={video.id}",
        view_count=video.view_count,
        channel_id=video.channel_id,
        channel_title=video.channel_title,
    )


async def extract_youtube_data(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    quota: QuotaTracker | None = None,
) -> ExtractOutcome:
    """Fetch a video, its comments, and keep the valuable ones.

    Fails only when the video itself cannot be fetched. A comment fetch failure
    still returns the video with ``comments_error`` set, keeping whatever pages
    arrived before the failure.
    """
    logger.info("social_youtube.extract.start", url=url)
    try:
        _ensure_configured()
        video_id = extract_video_id(url)
        if not video_id:
            raise InvalidUrlError("Invalid YouTube URL - could not extract video ID")
        if not (quota or youtube_quota).can_afford_extraction():
            raise UpstreamRateLimitError(_QUOTA_EXCEEDED_MESSAGE)
        video = await fetch_video_metadata(video_id, client=client, quota=quota)
    except ExtractionError as exc:
        logger.warning("social_youtube.extract.failed", url=url, error=exc.message, code=exc.code)
        return ExtractOutcome(success=False, error=exc.message, code=exc.code)
    except Exception as exc:
        logger.exception("social_youtube.extract.unexpected_error", url=url)
        return ExtractOutcome(success=False, error=f"Failed to fetch video metadata: {exc}")

    post = video_as_post(video)
    if video.comment_count == 0:
        logger.info("social_youtube.extract.no_comments", video_id=video.id)
        return ExtractOutcome(
            success=True,
            data=ExtractionResult(source="youtube", post=post, video=video),
        )

    comments_error: str | None = None
    try:
        comments = await fetch_video_comments(video.id, client=client, quota=quota)
    except PartialCommentsError as exc:
        comments, comments_error = exc.comments, exc.message
    except ExtractionError as exc:
        logger.warning("social_youtube.comments.failed", video_id=video.id, error=exc.message)
        comments, comments_error = [], exc.message
    except Exception as exc:
        logger.exception("social_youtube.comments.unexpected_error", video_id=video.id)
        comments, comments_error = [], f"Failed to fetch comments: {exc}"

    filtered = filter_youtube_comments(comments)
    stats = filtered.extraction_stats
    logger.info("social_youtube.extract.success", video_id=video.id, extracted=stats.extracted)
    return ExtractOutcome(
        success=True,
        data=ExtractionResult(
            source="youtube",
            post=post,
            video=video,
            valuable_comments=filtered.valuable_comments,
            extraction_stats=stats,
            comments_error=comments_error,
        ),
    )


async def search_videos(
    query: str,
    *,
    max_results: int = 10,
    published_after: str | None = None,
    client: httpx.AsyncClient | None = None,
    quota: QuotaTracker | None = None,
) -> VideoSearchResult:
    """Search videos by keyword (101 units), dropping videos with comments disabled."""
    cleaned_query = str(query or "").strip()
    if not cleaned_query:
        return VideoSearchResult(success=True, query=cleaned_query)

    tracker = quota or youtube_quota
    bounded_max = max(1, min(max_results, settings.YOUTUBE_SEARCH_MAX_RESULTS))
    cache_key = f"{cleaned_query.lower()}:{bounded_max}:{published_after or ''}"
    cached = tracker.get_cached_search(cache_key)
    if cached is not None:
        logger.info("social_youtube.search.cache_hit", query_preview=cleaned_query[:80])
        return cached.model_copy(update={"cached": True})

    try:
        api_key = _ensure_configured()
        if not tracker.can_afford_search():
            raise UpstreamRateLimitError(_QUOTA_EXCEEDED_MESSAGE)

        logger.info(
            "social_youtube.search.start", query_preview=cleaned_query[:80], max_results=bounded_max
        )
        params: dict[str, str | int] = {
            "part": "snippet",
            "q": cleaned_query,
            "type": "video",
            "maxResults": bounded_max,
            "order": "relevance",
            "safeSearch": "none",
            "key": api_key,
        }
        if published_after:
            params["publishedAfter"] = published_after

        async with http_client(client, settings.YOUTUBE_TIMEOUT_SECONDS) as http:
            response = await _get(http, "search", params, api_name="youtube_search")
            tracker.record_usage(SEARCH_UNIT_COST, "search")
            _raise_for_video_status(response, comments=False)
            payload = response.json()
            items = [
                item
                for item in payload.get("items") or []
                if isinstance(item.get("id"), dict) and item["id"].get("videoId")
            ]
            if not items:
                return VideoSearchResult(success=True, query=cleaned_query)

            video_ids = ",".join(item["id"]["videoId"] for item in items)
            stats_response = await _get(
                http,
                "videos",
                {"part": "statistics", "id": video_ids, "key": api_key},
                api_name="youtube_videos",
            )
            tracker.record_usage(LIST_UNIT_COST, "videos")
            _raise_for_video_status(stats_response, comments=False)
            stats_by_id = {
                row.get("id"): row.get("statistics") or {}
                for row in stats_response.json().get("items") or []
            }
    except ExtractionError as exc:
        logger.warning(
            "social_youtube.search.failed", query_preview=cleaned_query[:80], error=exc.message
        )
        return VideoSearchResult(success=False, query=cleaned_query, error=exc.message)
    except Exception as exc:
        logger.exception("social_youtube.search.unexpected_error", query_preview=cleaned_query[:80])
        return VideoSearchResult(
            success=False, query=cleaned_query, error=f"YouTube search failed: {exc}"
        )

    videos: list[VideoSummary] = []
    for item in items:
        video_id = item["id"]["videoId"]
        snippet = item.get("snippet") or {}
        stats = stats_by_id.get(video_id, {})
        videos.append(
            VideoSummary(
                id=video_id,
                title=str(snippet.get("title") or ""),
                description=str(snippet.get("description") or ""),
                channel_id=str(snippet.get("channelId") or ""),
                channel_title=str(snippet.get("channelTitle") or ""),
                published_at=str(snippet.get("publishedAt") or ""),
                thumbnail_url=((snippet.get("thumbnails") or {}).get("medium") or {}).get("url"),
                view_count=as_int(stats.get("viewCount")),
                like_count=as_int(stats.get("likeCount")),
                comment_count=as_int(stats.get("commentCount")),
                url=f"https://www.youtube.com/watch?v={video_id}",
            )
        )

    with_comments = [v for v in videos if v.comment_count > 0]
    result = VideoSearchResult(
        success=True,
        videos=with_comments,
        total_results=as_int((payload.get("pageInfo") or {}).get("totalResults")) or len(videos),
        query=cleaned_query,
    )
    tracker.set_cached_search(cache_key, result)
    logger.info(
        "social_youtube.search.success",
        query_preview=cleaned_query[:80],
        found=len(videos),
        with_comments=len(with_comments),
    )
    return result
