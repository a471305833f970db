"""Unit tests for Reddit URL parsing, comment flattening and extraction."""

import httpx
import pytest

from threadsense.core.errors import InvalidUrlError
from threadsense.core.token_cache import TokenCache
from threadsense.tools.social_reddit import (
    extract_reddit_data,
    flatten_comments,
    parse_reddit_post_id,
    parse_thread,
)

POST_URL = "https://www.reddit.com/r/python/comments/abc123/some_title/"
SUBSTANTIVE = "A long and thoughtful answer that explains the tradeoffs in real detail."


def _comment(cid: str, body: str, score: int, replies: list | None = None, **extra) -> dict:
    data = {
        "id": cid,
        "author": extra.pop("author", "someone"),
        "body": body,
        "score": score,
        "created_utc": 1_700_000_000,
        "parent_id": extra.pop("parent_id", "t3_abc123"),
        "replies": {"kind": "Listing", "data": {"children": replies or []}} if replies else "",
        **extra,
    }
    return {"kind": "t1", "data": data}


def _more() -> dict:
    return {"kind": "more", "data": {"count": 12, "children": ["x", "y"]}}


def _thread(children: list) -> list:
    post = {
        "kind": "t3",
        "data": {
            "id": "abc123",
            "title": "How do you structure async services?",
            "selftext": "Curious what people do.",
            "author": "op",
            "subreddit": "python",
            "score": 420,
            "num_comments": 3,
            "created_utc": 1_700_000_000,
            "permalink": "/r/python/comments/abc123/some_title/",
        },
    }
    return [
        {"kind": "Listing", "data": {"children": [post]}},
        {"kind": "Listing", "data": {"children": children}},
    ]


def test_parse_post_id_from_permalink_and_short_link() -> None:
    assert parse_reddit_post_id(POST_URL) == "abc123"
    assert parse_reddit_post_id("https://old.reddit.com/r/x/comments/Zz9/t") == "Zz9"
    assert parse_reddit_post_id("https://redd.it/q1w2e3") == "q1w2e3"


@pytest.mark.parametrize(
    ("url", "message"),
    [
        ("https://example.com/comments/abc", "Please provide a valid Reddit URL"),
        ("https://www.reddit.com/r/python/", "Please provide a direct post URL"),
        ("https://www.reddit.com/r/python/comments/", "Invalid Reddit post URL format"),
    ],
)
def test_parse_post_id_rejects_bad_urls(url: str, message: str) -> None:
    with pytest.raises(InvalidUrlError, match=message):
        parse_reddit_post_id(url)


def test_flatten_walks_depth_first_and_skips_more_stubs() -> None:
    tree = [
        _comment(
            "a",
            "top level one",
            10,
            replies=[_comment("a1", "first reply", 4, parent_id="t1_a"), _more()],
            all_awardings=[{"id": 1}, {"id": 2}],
        ),
        _more(),
        _comment("b", "top level two", 3),
    ]

    comments = flatten_comments(tree)

    assert [c.id for c in comments] == ["a", "a1", "b"]
    assert [c.depth for c in comments] == [0, 1, 0]
    assert comments[0].reply_count == 1
    assert comments[0].award_count == 2
    assert comments[1].parent_id == "t1_a"


def test_flatten_prefers_api_depth_and_skips_bodiless_nodes() -> None:
    tree = [
        _comment("a", "has explicit depth", 1, depth=3),
        {"kind": "t1", "data": {"id": "gone", "author": "x", "body": ""}},
    ]

    comments = flatten_comments(tree)

    assert [c.id for c in comments] == ["a"]
    assert comments[0].depth == 3


def test_parse_thread_filters_and_maps_post() -> None:
    children = [
        _comment("good", SUBSTANTIVE, 30),
        _comment("bot", SUBSTANTIVE, 30, author="AutoModerator"),
        _comment("gone", "[deleted]", 90),
    ]

    result = parse_thread(_thread(children))

    assert result.source == "reddit"
    assert result.post.title == "How do you structure async services?"
    assert result.post.subreddit == "python"
    assert [c.id for c in result.valuable_comments] == ["good"]
    assert result.extraction_stats.total == 3
    assert result.extraction_stats.valid == 2


def _token_cache() -> TokenCache:
    return TokenCache(
        client_id="id",
        client_secret="secret",
        user_agent="ua",
        auth_url="https://www.reddit.com/api/v1/access_token",
    )


def _client(api_responses: list[httpx.Response], seen: list[httpx.Request]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/access_token"):
            return httpx.Response(200, json={"access_token": f"tok{len(seen)}"})
        return api_responses.pop(0)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_extract_reddit_data_success() -> None:
    seen: list[httpx.Request] = []
    responses = [httpx.Response(200, json=_thread([_comment("good", SUBSTANTIVE, 12)]))]

    async with _client(responses, seen) as client:
        outcome = await extract_reddit_data(POST_URL, client=client, token_cache=_token_cache())

    assert outcome.success
    assert outcome.data.post.id == "abc123"
    api_request = seen[-1]
    assert api_request.url.path == "/comments/abc123"
    assert api_request.url.params["sort"] == "top"
    assert api_request.url.params["raw_json"] == "1"
    assert api_request.headers["Authorization"] == "bearer tok1"


@pytest.mark.asyncio
async def test_unauthorized_invalidates_token_and_reports_failure() -> None:
    cache = _token_cache()
    seen: list[httpx.Request] = []
    responses = [httpx.Response(401, json={"message": "Unauthorized"})]

    async with _client(responses, seen) as client:
        outcome = await extract_reddit_data(POST_URL, client=client, token_cache=cache)

    assert not outcome.success
    assert outcome.code == 401
    assert outcome.error == "Authentication failed - token expired"
    assert cache.token is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "code", "fragment"),
    [
        (429, 429, "rate limit"),
        (403, 403, "private or quarantined"),
        (404, 404, "not found"),
        (500, 500, "Reddit API error 500"),
    ],
)
async def test_upstream_errors_become_failed_outcomes(
    status_code: int, code: int, fragment: str
) -> None:
    responses = [httpx.Response(status_code, json={})]

    async with _client(responses, []) as client:
        outcome = await extract_reddit_data(POST_URL, client=client, token_cache=_token_cache())

    assert not outcome.success
    assert outcome.code == code
    assert fragment in outcome.error


@pytest.mark.asyncio
async def test_invalid_url_fails_without_network() -> None:
    seen: list[httpx.Request] = []

    async with _client([], seen) as client:
        outcome = await extract_reddit_data(
            "https://www.reddit.com/r/python/", client=client, token_cache=_token_cache()
        )

    assert not outcome.success
    assert outcome.code == 400
    assert seen == []
