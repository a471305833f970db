"""Detect which platform a URL belongs to and dispatch to the matching extractor."""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from threadsense.core.config import settings
from threadsense.models.schemas import ExtractOutcome
from threadsense.tools.social_reddit import extract_reddit_data
from threadsense.tools.social_youtube import extract_youtube_data

logger = structlog.get_logger(__name__)

_REDDIT_RE = re.compile(r"(?:^|[/.])(?:reddit\.com|redd\.it)(?:[/:?#]|$)")
_YOUTUBE_RE = re.compile(r"(?:^|[/.])(?:youtube\.com|youtu\.be)(?:[/:?#]|$)")


@dataclass(frozen=True)
class SourceInfo:
    source: str  # reddit | youtube | unknown
    is_supported: bool
    error: str | None = None


def detect_source(url: str) -> SourceInfo:
    if not url or not isinstance(url, str):
        return SourceInfo("unknown", False, "Invalid URL")

    normalized = url.strip().lower()
    if _REDDIT_RE.search(normalized):
        return SourceInfo("reddit", True)
    if _YOUTUBE_RE.search(normalized):
        if not settings.YOUTUBE_ENABLED:
            return SourceInfo(
                "youtube",
                False,
                "YouTube integration is not enabled. Please configure YOUTUBE_API_KEY "
                "and YOUTUBE_ENABLED.",
            )
        return SourceInfo("youtube", True)
    return SourceInfo(
        "unknown", False, "Unsupported URL. Please provide a Reddit or YouTube URL."
    )


async def extract(url: str) -> ExtractOutcome:
    """Extract one URL from whichever platform it belongs to. Never raises."""
    info = detect_source(url)
    if info.source == "youtube":
        if not info.is_supported:
            return ExtractOutcome(success=False, error=info.error)
        return await extract_youtube_data(url)
    if info.source == "reddit":
        return await extract_reddit_data(url)
    logger.warning("source_detector.unsupported_url", url=str(url)[:200])
    return ExtractOutcome(success=False, error=info.error, code=400)
