"""Reddit thread extraction over the OAuth API.

``extract_reddit_data`` never raises: every failure comes back as an
``ExtractOutcome`` with ``success=False`` so one bad URL cannot abort a batch.
"""

import re

import httpx
import structlog

from threadsense.core.config import settings
from threadsense.core.errors import (
    AuthError,
    ExtractionError,
    InvalidUrlError,
    NotFoundError,
    UpstreamForbiddenError,
    UpstreamRateLimitError,
)
from threadsense.core.metrics import api_call_duration_seconds, api_calls_total
from threadsense.core.token_cache import TokenCache, reddit_token_cache
from threadsense.models.schemas import Comment, ExtractionResult, ExtractOutcome, PostMeta
from threadsense.services.comment_filter import filter_reddit_comments
from threadsense.tools.common import as_int, http_client

logger = structlog.get_logger(__name__)

_POST_ID_RE = re.compile(r"comments/([a-zA-Z0-9]+)")
_SHORT_LINK_RE = re.compile(r"redd\.it/([a-zA-Z0-9]+)")


def parse_reddit_post_id(url: str) -> str:
    """Return the base36 post id from a post permalink or redd.it short link."""
    raw = str(url or "").strip()
    short = _SHORT_LINK_RE.search(raw)
    if short:
        return short.group(1)
    if "reddit.com" not in raw:
        raise InvalidUrlError("Please provide a valid Reddit URL")
    if "/comments/" not in raw:
        raise InvalidUrlError("Please provide a direct post URL")
    match = _POST_ID_RE.search(raw)
    if not match:
        raise InvalidUrlError("Invalid Reddit post URL format")
    return match.group(1)


async def fetch_reddit_thread(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    token_cache: TokenCache | None = None,
) -> object:
    """GET the post + comment listing pair for a post URL."""
    post_id = parse_reddit_post_id(url)
    cache = token_cache or reddit_token_cache
    api_url = f"{settings.REDDIT_OAUTH_BASE_URL.rstrip('/')}/comments/{post_id}"
    params = {
        "limit": settings.REDDIT_COMMENT_LIMIT,
        "depth": settings.REDDIT_COMMENT_DEPTH,
        "sort": "top",
        "raw_json": 1,
    }

    async with http_client(client, settings.REDDIT_TIMEOUT_SECONDS) as http:
        access_token = await cache.get_token(http)
        logger.info("social_reddit.fetch.start", post_id=post_id)
        try:
            with api_call_duration_seconds.labels(api_name="reddit").time():
                response = await http.get(
                    api_url,
                    params=params,
                    headers={
                        "Authorization": f"bearer {access_token}",
                        "User-Agent": settings.REDDIT_USER_AGENT,
                        "Accept": "application/json",
                    },
                )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            api_calls_total.labels(api_name="reddit", status=str(status_code)).inc()
            logger.warning(
                "social_reddit.fetch.http_error", post_id=post_id, status_code=status_code
            )
            if status_code == 401:
                cache.invalidate()
                raise AuthError("Authentication failed - token expired") from exc
            if status_code == 429:
                raise UpstreamRateLimitError("Reddit rate limit - please wait 60 seconds") from exc
            if status_code == 403:
                raise UpstreamForbiddenError(
                    "Reddit API error 403 - post is private or quarantined"
                ) from exc
            if status_code == 404:
                raise NotFoundError("Reddit post not found") from exc
            raise ExtractionError(f"Reddit API error {status_code}", code=status_code) from exc
        except httpx.HTTPError as exc:
            api_calls_total.labels(api_name="reddit", status="error").inc()
            raise ExtractionError(f"Failed to fetch Reddit data: {exc}") from exc
        except ValueError as exc:
            api_calls_total.labels(api_name="reddit", status="error").inc()
            raise ExtractionError("Reddit returned a non-JSON response") from exc

    api_calls_total.labels(api_name="reddit", status="success").inc()
    return payload


def _children(listing: object) -> list:
    if not isinstance(listing, dict):
        return []
    data = listing.get("data")
    if not isinstance(data, dict):
        return []
    children = data.get("children")
    return children if isinstance(children, list) else []


def flatten_comments(children: list) -> list[Comment]:
    """Depth-first flatten of a nested comment listing, skipping ``more`` stubs."""
    comments: list[Comment] = []

    def visit(node: object, depth: int) -> None:
        if not isinstance(node, dict) or node.get("kind") == "more":
            return
        data = node.get("data")
        if not isinstance(data, dict):
            return

        replies = _children(data.get("replies"))
        if data.get("body") and data.get("author"):
            awardings = data.get("all_awardings")
            comments.append(
                Comment(
                    id=str(data.get("id") or ""),
                    author=str(data["author"]),
                    body=str(data["body"]),
                    score=as_int(data.get("score")),
                    created_utc=data.get("created_utc"),
                    parent_id=data.get("parent_id"),
                    depth=as_int(data.get("depth", depth)),
                    reply_count=sum(
                        1 for r in replies if isinstance(r, dict) and r.get("kind") != "more"
                    ),
                    award_count=len(awardings) if isinstance(awardings, list) else 0,
                )
            )

        for reply in replies:
            visit(reply, depth + 1)

    for child in children:
        visit(child, 0)
    return comments


def _post_meta(data: dict) -> PostMeta:
    return PostMeta(
        id=str(data.get("id") or ""),
        permalink=str(data.get("permalink") or ""),
        title=str(data.get("title") or ""),
        selftext=str(data.get("selftext") or ""),
        author=str(data.get("author") or ""),
        subreddit=str(data.get("subreddit") or ""),
        score=as_int(data.get("score")),
        num_comments=as_int(data.get("num_comments")),
        created_utc=data.get("created_utc"),
    )


def parse_thread(payload: object) -> ExtractionResult:
    """Turn the raw ``[post_listing, comment_listing]`` pair into an extraction."""
    post_data: dict | None = None
    if isinstance(payload, list) and payload:
        post_children = _children(payload[0])
        if post_children and isinstance(post_children[0], dict):
            candidate = post_children[0].get("data")
            if isinstance(candidate, dict):
                post_data = candidate
    if post_data is None:
        raise ExtractionError("Failed to extract post data from Reddit response")

    post = _post_meta(post_data)
    comments_error: str | None = None
    comments: list[Comment] = []
    if isinstance(payload, list) and len(payload) > 1:
        try:
            comments = flatten_comments(_children(payload[1]))
        except Exception as exc:
            # Keep the post even when the comment tree is malformed
            logger.warning("social_reddit.flatten_failed", post_id=post.id, error=str(exc)[:200])
            comments_error = "Failed to parse Reddit comments"
    logger.info("social_reddit.comments_flattened", post_id=post.id, count=len(comments))

    filtered = filter_reddit_comments(comments)
    return ExtractionResult(
        source="reddit",
        post=post,
        valuable_comments=filtered.valuable_comments,
        extraction_stats=filtered.extraction_stats,
        comments_error=comments_error,
    )


async def extract_reddit_data(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    token_cache: TokenCache | None = None,
) -> ExtractOutcome:
    """Fetch a Reddit post, flatten its comment tree and keep the valuable comments."""
    logger.info("social_reddit.extract.start", url=url)
    try:
        payload = await fetch_reddit_thread(url, client=client, token_cache=token_cache)
        result = parse_thread(payload)
    except ExtractionError as exc:
        logger.warning("social_reddit.extract.failed", url=url, error=exc.message, code=exc.code)
        return ExtractOutcome(success=False, error=exc.message, code=exc.code)
    except Exception as exc:
        logger.exception("social_reddit.extract.unexpected_error", url=url)
        return ExtractOutcome(success=False, error=f"Reddit extraction failed: {exc}")

    logger.info(
        "social_reddit.extract.success",
        post_id=result.post.id,
        extracted=result.extraction_stats.extracted,
    )
    return ExtractOutcome(success=True, data=result)
