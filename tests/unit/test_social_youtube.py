"""Unit tests for YouTube extraction, comment paging and search."""

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from threadsense.core.config import settings
from threadsense.core.quota import QuotaTracker
from threadsense.models.schemas import VideoMeta
from threadsense.tools.social_youtube import (
    extract_video_id,
    extract_youtube_data,
    search_videos,
    video_as_post,
)

VIDEO_ID = "dQw4w9WgXcQ"
VIDEO_URL = f"https://www.youtube.com/watch?v={VIDEO_ID}"
LONG_TEXT = "This walkthrough finally explained the part every other tutorial skips over."


@pytest.fixture
def youtube_enabled() -> Iterator[None]:
    with (
        patch.object(settings, "YOUTUBE_ENABLED", True),
        patch.object(settings, "YOUTUBE_API_KEY", "test-key"),
        patch("threadsense.tools.social_youtube.asyncio.sleep", new=AsyncMock()),
    ):
        yield


def _quota() -> QuotaTracker:
    return QuotaTracker(daily_limit=10_000, today=lambda: "2026-03-01")


def _video_payload(comment_count: int = 3) -> dict:
    return {
        "items": [
            {
                "id": VIDEO_ID,
                "snippet": {
                    "title": "Async Python in 20 minutes",
                    "description": "d" * 800,
                    "channelId": "UC123",
                    "channelTitle": "PyChannel",
                    "publishedAt": "2024-05-01T12:00:00Z",
                },
                "statistics": {
                    "viewCount": "1500",
                    "likeCount": "120",
                    "commentCount": str(comment_count),
                },
            }
        ]
    }


def _thread(cid: str, text: str, likes: int, replies: list[dict] | None = None) -> dict:
    return {
        "snippet": {
            "topLevelComment": {
                "id": cid,
                "snippet": {
                    "authorDisplayName": "viewer",
                    "authorChannelId": {"value": "UCviewer"},
                    "textDisplay": text,
                    "likeCount": likes,
                    "publishedAt": "2024-05-02T08:00:00Z",
                },
            },
            "totalReplyCount": len(replies or []),
        },
        "replies": {"comments": replies or []},
    }


def _reply(cid: str, text: str, likes: int) -> dict:
    return {
        "id": cid,
        "snippet": {"authorDisplayName": "replier", "textDisplay": text, "likeCount": likes},
    }


class _Api:
    """Routes YouTube endpoints to scripted responses and records requests."""

    def __init__(self, routes: dict[str, list[httpx.Response]]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        return self.routes[endpoint].pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def hits(self, endpoint: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/" + endpoint))


@pytest.mark.parametrize(
    "url",
    [
        VIDEO_URL,
        f"https://youtu.be/{VIDEO_ID}",
        f"https://www.youtube.com/embed/{VIDEO_ID}",
        f"https://www.youtube.com/shorts/{VIDEO_ID}",
        f"https://www.youtube.com/live/{VIDEO_ID}",
        f"https://www.youtube.com/watch?feature=share&v={VIDEO_ID}",
    ],
)
def test_extract_video_id_variants(url: str) -> None:
    assert extract_video_id(url) == VIDEO_ID


def test_extract_video_id_rejects_other_urls() -> None:
    assert extract_video_id("https://www.youtube.com/channel/UC123") is None


@pytest.mark.asyncio
async def test_extraction_pages_comments_and_normalizes_post(youtube_enabled) -> None:
    api = _Api(
        {
            "videos": [httpx.Response(200, json=_video_payload(comment_count=4))],
            "commentThreads": [
                httpx.Response(
                    200,
                    json={
                        "items": [
                            _thread("c1", LONG_TEXT, 40, [_reply("r1", LONG_TEXT, 12)]),
                            _thread("c2", "first!", 500),
                        ],
                        "nextPageToken": "page2",
                    },
                ),
                httpx.Response(200, json={"items": [_thread("c3", LONG_TEXT, 3)]}),
            ],
        }
    )
    quota = _quota()

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=quota)

    assert outcome.success
    data = outcome.data
    assert data.source == "youtube"
    assert data.post.subreddit == "YouTube: PyChannel"
    assert data.post.score == 120
    assert data.post.permalink == f"https://youtube.com/watch?v={VIDEO_ID}"
    assert len(data.post.selftext) == 500
    assert data.extraction_stats.total == 4
    assert "c2" not in {c.id for c in data.valuable_comments}
    assert api.hits("commentThreads") == 2
    assert api.requests[-1].url.params["pageToken"] == "page2"
    assert quota.status().used == 3


@pytest.mark.asyncio
async def test_zero_comment_video_skips_comment_fetch(youtube_enabled) -> None:
    api = _Api({"videos": [httpx.Response(200, json=_video_payload(comment_count=0))]})

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=_quota())

    assert outcome.success
    assert outcome.data.valuable_comments == []
    assert api.hits("commentThreads") == 0


@pytest.mark.asyncio
async def test_comments_disabled_keeps_video_metadata(youtube_enabled) -> None:
    """A comment fetch failure is reported alongside the video, not as a failed extraction."""
    api = _Api(
        {
            "videos": [httpx.Response(200, json=_video_payload())],
            "commentThreads": [
                httpx.Response(403, json={"error": {"errors": [{"reason": "commentsDisabled"}]}})
            ],
        }
    )

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=_quota())

    assert outcome.success
    assert outcome.data.video.title == "Async Python in 20 minutes"
    assert outcome.data.valuable_comments == []
    assert outcome.data.comments_error == "Comments are disabled for this video"


@pytest.mark.asyncio
async def test_later_page_failure_keeps_comments_already_fetched(youtube_enabled) -> None:
    """Page 1 arrives, page 2 hits the daily quota: page 1 is still filtered and returned."""
    api = _Api(
        {
            "videos": [httpx.Response(200, json=_video_payload())],
            "commentThreads": [
                httpx.Response(
                    200,
                    json={
                        "items": [
                            _thread("c1", LONG_TEXT, 10),
                            _thread("c2", LONG_TEXT, 20),
                            _thread("c3", LONG_TEXT, 30),
                        ],
                        "nextPageToken": "page2",
                    },
                ),
                httpx.Response(403, json={"error": {"errors": [{"reason": "quotaExceeded"}]}}),
            ],
        }
    )
    quota = _quota()

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=quota)

    assert outcome.success
    data = outcome.data
    assert data.extraction_stats.total == 3
    assert [c.id for c in data.valuable_comments] == ["c3", "c2", "c1"]
    assert data.comments_error == "YouTube API quota exceeded - try again tomorrow"
    assert api.hits("commentThreads") == 2
    assert quota.status().used == 3


@pytest.mark.asyncio
async def test_extraction_refused_when_quota_cannot_afford(youtube_enabled) -> None:
    quota = QuotaTracker(daily_limit=10, today=lambda: "2026-03-01")
    quota.record_usage(5)
    api = _Api({})

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=quota)

    assert not outcome.success
    assert outcome.code == 429
    assert "quota exceeded" in outcome.error
    assert api.requests == []


@pytest.mark.asyncio
async def test_metadata_quota_exceeded_fails_extraction(youtube_enabled) -> None:
    api = _Api(
        {
            "videos": [
                httpx.Response(403, json={"error": {"errors": [{"reason": "quotaExceeded"}]}})
            ]
        }
    )

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=_quota())

    assert not outcome.success
    assert outcome.code == 429
    assert "quota exceeded" in outcome.error


@pytest.mark.asyncio
async def test_private_video_is_not_found(youtube_enabled) -> None:
    api = _Api({"videos": [httpx.Response(200, json={"items": []})]})

    async with api.client() as client:
        outcome = await extract_youtube_data(VIDEO_URL, client=client, quota=_quota())

    assert not outcome.success
    assert outcome.error == "Video not found or is private"


@pytest.mark.asyncio
async def test_disabled_integration_fails_fast() -> None:
    with patch.object(settings, "YOUTUBE_ENABLED", False):
        outcome = await extract_youtube_data(VIDEO_URL, quota=_quota())

    assert not outcome.success
    assert outcome.error == "YouTube integration is disabled"


def _search_payload() -> dict:
    return {
        "items": [
            {"id": {"videoId": "aaaaaaaaaaa"}, "snippet": {"title": "A", "channelTitle": "C"}},
            {"id": {"videoId": "bbbbbbbbbbb"}, "snippet": {"title": "B", "channelTitle": "C"}},
        ]
    }


def _stats_payload() -> dict:
    return {
        "items": [
            {"id": "aaaaaaaaaaa", "statistics": {"commentCount": "12", "viewCount": "9"}},
            {"id": "bbbbbbbbbbb", "statistics": {"commentCount": "0"}},
        ]
    }


@pytest.mark.asyncio
async def test_search_filters_uncommented_videos_and_caches(youtube_enabled) -> None:
    api = _Api(
        {
            "search": [httpx.Response(200, json=_search_payload())],
            "videos": [httpx.Response(200, json=_stats_payload())],
        }
    )
    quota = _quota()

    async with api.client() as client:
        first = await search_videos("async python", client=client, quota=quota)
        second = await search_videos("Async Python", client=client, quota=quota)

    assert first.success
    assert [v.id for v in first.videos] == ["aaaaaaaaaaa"]
    assert first.videos[0].url == "https://www.youtube.com/watch?v=aaaaaaaaaaa"
    assert not first.cached
    assert second.cached
    assert [v.id for v in second.videos] == ["aaaaaaaaaaa"]
    assert api.hits("search") == 1
    assert quota.status().used == 101


@pytest.mark.asyncio
async def test_search_refused_when_quota_cannot_afford(youtube_enabled) -> None:
    quota = QuotaTracker(daily_limit=100, today=lambda: "2026-03-01")
    api = _Api({})

    async with api.client() as client:
        result = await search_videos("anything", client=client, quota=quota)

    assert not result.success
    assert "quota exceeded" in result.error
    assert api.requests == []


def test_video_as_post_maps_engagement_fields() -> None:
    post = video_as_post(
        VideoMeta(id=VIDEO_ID, title="T", channel_title="Chan", like_count=7, comment_count=2)
    )

    assert post.subreddit == "YouTube: Chan"
    assert post.score == 7
    assert post.num_comments == 2
    assert post.channel_title == "Chan"
