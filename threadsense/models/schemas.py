"""Pydantic models shared by the extraction, filtering and model-calling layers.

Centralised here so tools and services exchange typed objects without circular
imports. Result objects (``ExtractOutcome``, ``ModelCallResult``) are what
crosses the public boundary; exceptions stay inside the tools layer.
"""

from typing import Literal

from pydantic import BaseModel, Field

SourceName = Literal["reddit", "youtube"]


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class Comment(BaseModel):
    """A flattened upstream comment.

    YouTube comments map ``text`` onto ``body`` and ``likeCount`` onto ``score``
    so both filters and downstream prompt builders read one shape.
    """

    id: str
    author: str = ""
    body: str = ""
    score: int = 0
    created_utc: float | None = None
    parent_id: str | None = None
    depth: int = 0
    reply_count: int = 0
    award_count: int = 0
    is_reply: bool = False
    author_channel_id: str | None = None


class ExtractionStats(BaseModel):
    total: int = 0
    valid: int = 0
    extracted: int = 0
    percentage_kept: int = 0
    average_score: int = 0


class FilteredComments(BaseModel):
    valuable_comments: list[Comment] = Field(default_factory=list)
    extraction_stats: ExtractionStats = Field(default_factory=ExtractionStats)


# ---------------------------------------------------------------------------
# Posts / videos
# ---------------------------------------------------------------------------


class PostMeta(BaseModel):
    id: str
    title: str = ""
    selftext: str = ""
    author: str = ""
    subreddit: str = ""
    score: int = 0
    num_comments: int = 0
    created_utc: float | None = None
    permalink: str = ""
    view_count: int | None = None
    channel_id: str | None = None
    channel_title: str | None = None


class VideoMeta(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    channel_id: str = ""
    channel_title: str = ""
    published_at: str = ""
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0


class VideoSummary(VideoMeta):
    thumbnail_url: str | None = None
    url: str = ""


class ExtractionResult(BaseModel):
    source: SourceName
    post: PostMeta
    video: VideoMeta | None = None
    valuable_comments: list[Comment] = Field(default_factory=list)
    extraction_stats: ExtractionStats = Field(default_factory=ExtractionStats)
    # Set when metadata was fetched but the comment fetch failed
    comments_error: str | None = None


class ExtractOutcome(BaseModel):
    success: bool
    data: ExtractionResult | None = None
    error: str | None = None
    code: int | None = None


class ExtractionFailure(BaseModel):
    url: str
    error: str


class BatchExtractionResult(BaseModel):
    posts_data: list[ExtractionResult] = Field(default_factory=list)
    failures: list[ExtractionFailure] = Field(default_factory=list)


class VideoSearchResult(BaseModel):
    success: bool
    videos: list[VideoSummary] = Field(default_factory=list)
    total_results: int = 0
    query: str = ""
    error: str | None = None
    cached: bool = False


# ---------------------------------------------------------------------------
# Model calls
# ---------------------------------------------------------------------------


class ModelCallResult(BaseModel):
    success: bool
    analysis: str | None = None
    model: str | None = None
    error: str | None = None
    code: int | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


class QuotaStatus(BaseModel):
    used: int
    limit: int
    remaining: int
    reset_date: str


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class AnalysisResult(BaseModel):
    """Outcome of a combined or map-reduce analysis over many extractions."""

    mode: Literal["combined_analysis", "map_reduce_analysis"]
    model: str | None = None
    structured: dict | None = None
    ai_analysis: str = ""
    map_model: str | None = None
    reduce_model: str | None = None
    chunks_processed: int = 0
    total_posts: int = 0
    total_comments: int = 0
    subreddits: list[str] = Field(default_factory=list)
