"""Unit tests for URL source detection and extraction dispatch."""

from unittest.mock import AsyncMock, patch

import pytest

from threadsense.core.config import settings
from threadsense.models.schemas import ExtractOutcome
from threadsense.services.source_detector import detect_source, extract


@pytest.mark.parametrize(
    "url",
    [
        "https://www.reddit.com/r/python/comments/abc/t/",
        "https://old.reddit.com/r/python/comments/abc/t/",
        "https://redd.it/abc",
    ],
)
def test_reddit_urls_are_supported(url: str) -> None:
    info = detect_source(url)
    assert info.source == "reddit"
    assert info.is_supported


def test_youtube_unsupported_while_disabled() -> None:
    with patch.object(settings, "YOUTUBE_ENABLED", False):
        info = detect_source("https://youtu.be/dQw4w9WgXcQ")

    assert info.source == "youtube"
    assert not info.is_supported
    assert "not enabled" in info.error


def test_youtube_supported_when_enabled() -> None:
    with patch.object(settings, "YOUTUBE_ENABLED", True):
        info = detect_source("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    assert info.source == "youtube"
    assert info.is_supported


@pytest.mark.parametrize("url", ["https://notreddit.com/r/x", "https://example.com", "", None])
def test_unknown_urls(url) -> None:
    info = detect_source(url)
    assert info.source == "unknown"
    assert not info.is_supported


@pytest.mark.asyncio
async def test_extract_dispatches_by_source() -> None:
    reddit_mock = AsyncMock(return_value=ExtractOutcome(success=False, error="reddit called"))
    youtube_mock = AsyncMock(return_value=ExtractOutcome(success=False, error="youtube called"))

    with (
        patch("threadsense.services.source_detector.extract_reddit_data", new=reddit_mock),
        patch("threadsense.services.source_detector.extract_youtube_data", new=youtube_mock),
        patch.object(settings, "YOUTUBE_ENABLED", True),
    ):
        reddit = await extract("https://www.reddit.com/r/a/comments/b/c")
        youtube = await extract("https://youtu.be/dQw4w9WgXcQ")
        unknown = await extract("https://example.com/post")

    assert reddit.error == "reddit called"
    assert youtube.error == "youtube called"
    assert unknown.code == 400
    reddit_mock.assert_awaited_once()
    youtube_mock.assert_awaited_once()
