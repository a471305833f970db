"""Chunked analysis of many extracted threads.

Large result sets are pre-screened for relevance, split into chunks of
``MAP_REDUCE_CHUNK_SIZE`` posts, analyzed chunk by chunk with a cheap map
model, and synthesized by a reduce model. Small sets skip straight to one
combined call.

Map calls use a single model with no fallback chain: a failing chunk walking
every fallback model burns a dozen quota units. The first chunk runs as a
canary; if it fails the whole run drops to the combined single-call path.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Sequence

import structlog
from pydantic import BaseModel

from threadsense.core.config import settings
from threadsense.core.errors import ModelCallError
from threadsense.models.schemas import AnalysisResult, ExtractionResult
from threadsense.services.comment_filter import js_round
from threadsense.services.gemini import (
    analyze_with_gemini,
    analyze_with_model,
    call_model_with_retry,
)
from threadsense.services.response_parser import parse_json

logger = structlog.get_logger(__name__)

MAP_RETRIES = 2
RELAXED_THRESHOLD = 2
MIN_SCREENED_POSTS = 5
NEUTRAL_RELEVANCE = 3

_THEME_KEY_RE = re.compile(r"[^a-z]")

_FINAL_SCHEMA = """{
  "executiveSummary": "2-3 sentences tailored to the researcher's goal",
  "topQuotes": [{"type": "INSIGHT|WARNING|TIP|COMPLAINT", "quote": "max 200 chars",
                 "subreddit": "Name"}],
  "keyInsights": [{"title": "3-5 words", "description": "1-2 sentences",
                   "sentiment": "positive|negative|neutral"}],
  "forYourGoal": ["Bullet directly answering the goal"],
  "confidence": {"level": "high|medium|low", "reason": "Data volume behind the findings"},
  "quantitativeInsights": {
    "topicsDiscussed": [{"topic": "Name", "mentions": 15, "sentiment": "positive|negative|mixed",
                         "example": "Short example"}],
    "sentimentBreakdown": {"positive": 40, "negative": 35, "neutral": 25},
    "commonPhrases": [{"phrase": "Phrase", "count": 12, "context": "Typical usage"}],
    "dataPatterns": ["Pattern"],
    "engagementCorrelation": "Which comments get more upvotes"
  },
  "evidenceAnalysis": {
    "primaryClaim": "Hypothesis inferred from the goal",
    "verdict": "Strongly Supported|Supported|Mixed Evidence|Weakly Supported|Not Supported",
    "evidenceScore": 73,
    "totalAnalyzed": 0,
    "relevantCount": 0,
    "notRelevantCount": 0,
    "supporting": {"count": 0, "percentage": 0, "keyPoints": [], "quotes": []},
    "counter": {"count": 0, "percentage": 0, "keyPoints": [], "quotes": []},
    "nuances": ["Caveat"],
    "confidenceLevel": "high|medium|low",
    "confidenceReason": "Why"
  }
}"""


# ---------------------------------------------------------------------------
# Pre-screening
# ---------------------------------------------------------------------------


def _as_dict(post: object) -> dict:
    if isinstance(post, BaseModel):
        return post.model_dump()
    return dict(post) if isinstance(post, dict) else {}


def _is_youtube(post: dict) -> bool:
    return post.get("source") == "youtube" or str(post.get("subreddit", "")).startswith(
        "YouTube:"
    )


def _post_line(index: int, post: dict) -> str:
    if _is_youtube(post):
        tag = f"[YouTube: {post.get('channel_title') or 'unknown'}]"
        unit = "likes"
    else:
        tag = f"[r/{post.get('subreddit', '')}]"
        unit = "upvotes"
    line = (
        f'{index}. {tag} "{post.get("title", "")}" '
        f"({post.get('score', 0)} {unit}, {post.get('num_comments', 0)} comments)"
    )
    selftext = str(post.get("selftext") or post.get("description") or "")
    if selftext:
        line += "\n   " + selftext[:100]
    return line


def build_prescreen_prompt(
    posts: Sequence[dict], topic: str, role: str | None = None, goal: str | None = None
) -> str:
    kinds = {_is_youtube(p) for p in posts}
    if kinds == {True, False}:
        source_context = "Reddit posts and YouTube videos"
    elif kinds == {True}:
        source_context = "YouTube videos"
    else:
        source_context = "Reddit posts"
    post_list = "\n".join(_post_line(i + 1, p) for i, p in enumerate(posts))
    return f"""You are filtering {source_context} for relevance to a research topic.

RESEARCH TOPIC: "{topic}"
RESEARCHER ROLE: {role or "Researcher"}
RESEARCH GOAL: {goal or "Extract insights"}

POSTS TO EVALUATE:
{post_list}

Score each post's relevance to the topic from 1 to 5:
5 = directly about the topic, 4 = closely related, 3 = somewhat related,
2 = loosely related, 1 = not relevant.

Return ONLY valid JSON, no markdown:
{{"scores": [{{"index": 1, "score": 5, "reason": "Brief reason"}}]}}

Score ALL {len(posts)} posts. Reserve 4-5 for posts that genuinely discuss the topic."""


def _unscreened(posts: Sequence[dict]) -> list[dict]:
    return [{**p, "relevance_score": NEUTRAL_RELEVANCE, "relevance_reason": ""} for p in posts]


def _ranked(posts: list[dict], threshold: int) -> list[dict]:
    kept = [p for p in posts if p["relevance_score"] >= threshold]
    kept.sort(
        key=lambda p: (p["relevance_score"], p.get("engagement_score") or 0), reverse=True
    )
    return kept


async def pre_screen_posts(
    posts: Sequence[object],
    topic: str,
    role: str | None = None,
    goal: str | None = None,
) -> list[dict]:
    """Score posts 1-5 for relevance to ``topic`` and drop the weak ones.

    Each returned dict carries ``relevance_score`` and ``relevance_reason``.
    When fewer than five posts clear the threshold (out of five or more), the
    cut is relaxed to 2. Any model or parse failure returns every post with
    a neutral score of 3.
    """
    items = [_as_dict(p) for p in posts]
    if not items:
        return []

    logger.info("map_reduce.prescreen.start", posts=len(items), topic_preview=topic[:80])
    try:
        result = await analyze_with_model(
            build_prescreen_prompt(items, topic, role, goal), settings.MAP_REDUCE_MAP_MODEL
        )
    except Exception:
        logger.exception("map_reduce.prescreen.error")
        return _unscreened(items)
    if not result.success:
        logger.warning("map_reduce.prescreen.model_failed", error=result.error)
        return _unscreened(items)

    parsed = parse_json(result.analysis)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("scores", []), list):
        logger.warning("map_reduce.prescreen.unparseable")
        return _unscreened(items)

    by_index = {
        entry.get("index"): entry for entry in parsed.get("scores", []) if isinstance(entry, dict)
    }
    scored = []
    for i, post in enumerate(items):
        entry = by_index.get(i + 1) or {}
        score = entry.get("score")
        scored.append(
            {
                **post,
                "relevance_score": score if isinstance(score, (int, float)) else NEUTRAL_RELEVANCE,
                "relevance_reason": str(entry.get("reason") or ""),
            }
        )

    threshold = settings.PRESCREEN_THRESHOLD
    kept = _ranked(scored, threshold)
    logger.info(
        "map_reduce.prescreen.complete", kept=len(kept), total=len(scored), threshold=threshold
    )
    if len(kept) < MIN_SCREENED_POSTS and len(scored) >= MIN_SCREENED_POSTS:
        kept = _ranked(scored, RELAXED_THRESHOLD)
        logger.info("map_reduce.prescreen.relaxed", kept=len(kept), threshold=RELAXED_THRESHOLD)
    return kept


# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------


def _subreddits(posts_data: Sequence[ExtractionResult]) -> list[str]:
    seen: dict[str, None] = {}
    for data in posts_data:
        if data.post.subreddit:
            seen.setdefault(data.post.subreddit, None)
    return list(seen)


def _comment_total(posts_data: Sequence[ExtractionResult]) -> int:
    return sum(len(d.valuable_comments) for d in posts_data)


def _posts_block(posts_data: Sequence[ExtractionResult]) -> str:
    blocks = []
    for data in posts_data:
        post = data.post
        comments = "\n".join(f"[{c.score} pts] {c.body[:300]}" for c in data.valuable_comments)
        blocks.append(
            f'\nPOST: "{post.title}"\n'
            f"r/{post.subreddit} | {post.score} upvotes | "
            f"{len(data.valuable_comments)} quality comments\n{comments}"
        )
    return "\n---\n".join(blocks)


def build_map_prompt(
    chunk: Sequence[ExtractionResult],
    role: str | None,
    goal: str | None,
    chunk_index: int,
    total_chunks: int,
) -> str:
    total_comments = _comment_total(chunk)
    sources = ", ".join(f"r/{s}" for s in _subreddits(chunk))
    return f"""You are analyzing community data (chunk {chunk_index + 1} of {total_chunks}) \
for a {role or "researcher"}.
Their GOAL: "{goal or "Extract insights"}"

DATA: {len(chunk)} posts, {total_comments} comments from: {sources}

{_posts_block(chunk)}

===

Extract structured findings from THIS chunk. Return ONLY valid JSON, no markdown:
{{
  "themes": [{{"name": "3-5 words", "frequency": 12,
              "sentiment": "positive|negative|mixed|neutral",
              "nuance": "One-sentence caveat", "quotes": ["Exact quote, max 150 chars"]}}],
  "goalFindings": ["Finding relevant to the goal"],
  "contradictions": [{{"point": "Topic", "sideA": "One view", "sideB": "Opposing view"}}],
  "outlierInsights": [{{"insight": "Non-obvious finding", "quote": "Quote",
                       "subreddit": "Name"}}],
  "sentimentSignals": {{"positive": 40, "negative": 35, "neutral": 25,
                        "dominantEmotion": "frustration"}},
  "topQuotes": [{{"text": "max 200 chars", "score": 234, "subreddit": "Name",
                  "type": "INSIGHT|WARNING|TIP|COMPLAINT"}}],
  "commonPhrases": [{{"phrase": "Phrase", "count": 5}}],
  "commentsAnalyzed": {total_comments}
}}

Find 3-7 themes with their conditions and caveats, 2-4 goal findings, every real
disagreement, 1-3 outliers and 3-5 exact quotes. Return ONLY the JSON object."""


async def map_analyze_chunk(
    chunk: Sequence[ExtractionResult],
    role: str | None,
    goal: str | None,
    chunk_index: int,
    total_chunks: int,
) -> dict | None:
    """Analyze one chunk with the map model; ``None`` when the model call fails.

    Unparseable output is kept under ``_raw`` with empty finding lists so the
    chunk still counts as processed.
    """
    model = settings.MAP_REDUCE_MAP_MODEL
    prompt = build_map_prompt(chunk, role, goal, chunk_index, total_chunks)
    logger.info(
        "map_reduce.map.start",
        chunk=chunk_index + 1,
        chunks=total_chunks,
        posts=len(chunk),
        prompt_chars=len(prompt),
    )

    result = await call_model_with_retry(model, prompt, MAP_RETRIES)
    if not result.success:
        logger.error(
            "map_reduce.map.failed", chunk=chunk_index + 1, code=result.code, error=result.error
        )
        return None

    parsed = parse_json(result.analysis)
    if not isinstance(parsed, dict):
        logger.warning("map_reduce.map.unparseable", chunk=chunk_index + 1)
        return {
            "_chunk_index": chunk_index,
            "_model": result.model,
            "_raw": result.analysis,
            "themes": [],
            "goalFindings": [],
            "contradictions": [],
            "outlierInsights": [],
            "topQuotes": [],
        }

    parsed["_chunk_index"] = chunk_index
    parsed["_model"] = result.model
    logger.info(
        "map_reduce.map.parsed", chunk=chunk_index + 1, themes=len(parsed.get("themes") or [])
    )
    return parsed


# ---------------------------------------------------------------------------
# Reduce
# ---------------------------------------------------------------------------


def _collect(chunks: Sequence[dict], key: str, limit: int, *, dicts: bool = True) -> list:
    items: list = []
    for chunk in chunks:
        value = chunk.get(key)
        if isinstance(value, list):
            items.extend(v for v in value if isinstance(v, dict) or not dicts)
    return items[:limit]


def aggregate_sentiment(chunks: Sequence[dict]) -> tuple[dict[str, int], list[str]]:
    """Sum per-chunk sentiment signals and normalize them to whole percentages."""
    totals = {"positive": 0, "negative": 0, "neutral": 0}
    emotions: list[str] = []
    for chunk in chunks:
        signals = chunk.get("sentimentSignals")
        if not isinstance(signals, dict):
            continue
        for key in totals:
            value = signals.get(key)
            totals[key] += value if isinstance(value, (int, float)) else 0
        if signals.get("dominantEmotion"):
            emotions.append(str(signals["dominantEmotion"]))

    grand = sum(totals.values())
    if grand > 0:
        positive = js_round(totals["positive"] / grand * 100)
        negative = js_round(totals["negative"] / grand * 100)
        totals = {"positive": positive, "negative": negative, "neutral": 100 - positive - negative}
    return totals, emotions


def _chunk_comment_total(chunks: Sequence[dict]) -> int:
    total = 0
    for chunk in chunks:
        value = chunk.get("commentsAnalyzed")
        total += value if isinstance(value, int) else 0
    return total


def build_reduce_prompt(
    chunk_results: Sequence[dict | None],
    role: str | None,
    goal: str | None,
    total_posts: int,
    subreddits: Sequence[str],
) -> str:
    chunks = [c for c in chunk_results if c is not None]
    themes = _collect(chunks, "themes", 30)
    findings = _collect(chunks, "goalFindings", 15, dicts=False)
    contradictions = _collect(chunks, "contradictions", 10)
    outliers = _collect(chunks, "outlierInsights", 10)
    quotes = _collect(chunks, "topQuotes", 20)
    phrases = _collect(chunks, "commonPhrases", 15)
    sentiment, emotions = aggregate_sentiment(chunks)
    total_comments = _chunk_comment_total(chunks)

    theme_lines = []
    for t in themes:
        line = f'- "{t.get("name")}" ({t.get("frequency")}x, {t.get("sentiment")}): '
        line += str(t.get("nuance") or "")
        if t.get("quotes"):
            line += "\n  Quotes: " + ", ".join(f'"{q}"' for q in t["quotes"][:2])
        theme_lines.append(line)
    contradiction_lines = [
        f'- {c.get("point")}: "{c.get("sideA")}" vs "{c.get("sideB")}"' for c in contradictions
    ]
    outlier_lines = [
        f'- {o.get("insight")} [r/{o.get("subreddit")}]: "{o.get("quote")}"' for o in outliers
    ]
    quote_lines = [
        f'- [{q.get("type")}] "{q.get("text")}" ({q.get("score")} pts, r/{q.get("subreddit")})'
        for q in quotes
    ]
    phrase_list = ", ".join(f'"{p.get("phrase")}" ({p.get("count")}x)' for p in phrases)
    finding_lines = [f"- {f}" for f in findings]
    sources = ", ".join(f"r/{s}" for s in subreddits)
    nl = "\n"

    return f"""You are synthesizing research findings from {len(chunks)} analysis chunks \
for a {role or "researcher"}.
Their GOAL: "{goal or "Extract insights"}"

METADATA:
- Total posts analyzed: {total_posts}
- Total comments analyzed: ~{total_comments}
- Subreddits covered: {sources}
- Analysis chunks: {len(chunks)}

THEMES ({len(themes)}):
{nl.join(theme_lines)}

GOAL FINDINGS ({len(findings)}):
{nl.join(finding_lines)}

CONTRADICTIONS ({len(contradictions)}):
{nl.join(contradiction_lines)}

OUTLIERS ({len(outliers)}):
{nl.join(outlier_lines)}

TOP QUOTES ({len(quotes)}):
{nl.join(quote_lines)}

COMMON PHRASES: {phrase_list}

SENTIMENT: {sentiment["positive"]}% positive, {sentiment["negative"]}% negative, \
{sentiment["neutral"]}% neutral
DOMINANT EMOTIONS: {", ".join(emotions) or "mixed"}

===

Merge similar themes across chunks and combine their counts. Favor findings
that recur across chunks and call out where chunks diverge. Return ONLY valid
JSON, no markdown, in this structure:

{_FINAL_SCHEMA}"""


async def reduce_analysis(
    chunk_results: Sequence[dict | None],
    role: str | None,
    goal: str | None,
    posts_data: Sequence[ExtractionResult],
) -> AnalysisResult:
    """Synthesize map outputs with the reduce model. Raises ``ModelCallError`` on failure."""
    model = settings.MAP_REDUCE_REDUCE_MODEL or settings.GEMINI_MODEL
    subreddits = _subreddits(posts_data)
    prompt = build_reduce_prompt(chunk_results, role, goal, len(posts_data), subreddits)
    processed = sum(1 for c in chunk_results if c is not None)
    logger.info("map_reduce.reduce.start", chunks=processed, prompt_chars=len(prompt))

    result = await analyze_with_model(prompt, model)
    if not result.success:
        raise ModelCallError(f"Reduce step failed: {result.error}", code=result.code)

    structured = parse_json(result.analysis)
    if not isinstance(structured, dict):
        logger.warning("map_reduce.reduce.unparseable")
        structured = None

    return AnalysisResult(
        mode="map_reduce_analysis",
        model=result.model,
        structured=structured,
        ai_analysis=result.analysis or "",
        map_model=settings.MAP_REDUCE_MAP_MODEL,
        reduce_model=model,
        chunks_processed=processed,
        total_posts=len(posts_data),
        total_comments=_comment_total(posts_data),
        subreddits=subreddits,
    )


def _theme_key(name: object) -> str:
    return _THEME_KEY_RE.sub("", str(name or "").lower())


def _confidence(total_posts: int, subreddit_count: int) -> str:
    if total_posts >= 15 and subreddit_count >= 5:
        return "high"
    if total_posts >= 8 and subreddit_count >= 3:
        return "medium"
    return "low"


def _quote_ref(q: dict) -> dict:
    return {
        "text": q.get("text") or q.get("quote") or "",
        "score": q.get("score") or 0,
        "subreddit": q.get("subreddit") or "",
    }


def build_fallback_from_chunks(
    chunk_results: Sequence[dict | None],
    role: str | None,
    goal: str | None,
    posts_data: Sequence[ExtractionResult],
) -> AnalysisResult:
    """Assemble a final-shaped analysis straight from map outputs when reduce fails."""
    chunks = [c for c in chunk_results if c is not None]
    subreddits = _subreddits(posts_data)
    total_posts = len(posts_data)

    merged: dict[str, dict] = {}
    for chunk in chunks:
        for theme in chunk.get("themes") or []:
            if not isinstance(theme, dict):
                continue
            key = _theme_key(theme.get("name"))
            if key not in merged:
                merged[key] = dict(theme)
                continue
            existing = merged[key]
            existing["frequency"] = (existing.get("frequency") or 0) + (theme.get("frequency") or 0)
            if theme.get("quotes"):
                existing["quotes"] = ((existing.get("quotes") or []) + theme["quotes"])[:3]
    themes = sorted(merged.values(), key=lambda t: t.get("frequency") or 0, reverse=True)[:8]

    findings = _collect(chunks, "goalFindings", 6, dicts=False)
    quotes = sorted(
        _collect(chunks, "topQuotes", 10_000), key=lambda q: q.get("score") or 0, reverse=True
    )[:6]
    contradictions = _collect(chunks, "contradictions", 4)
    outliers = _collect(chunks, "outlierInsights", 4)
    phrases = _collect(chunks, "commonPhrases", 10)
    sentiment, _ = aggregate_sentiment(chunks)
    total_comments = _chunk_comment_total(chunks)
    level = _confidence(total_posts, len(subreddits))
    plural = "" if len(chunks) == 1 else "s"
    lead = findings[0] if findings else "Multiple perspectives emerged from the discussion."

    structured = {
        "executiveSummary": (
            f"Analysis of {total_posts} posts across {len(subreddits)} subreddits found "
            f"{len(themes)} key themes. {lead}"
        ),
        "topQuotes": [
            {
                "type": q.get("type") or "INSIGHT",
                "quote": q.get("text") or q.get("quote") or "",
                "subreddit": q.get("subreddit") or "",
            }
            for q in quotes
        ],
        "keyInsights": [
            {
                "title": t.get("name"),
                "description": t.get("nuance")
                or f"Mentioned {t.get('frequency') or 'multiple'} times across discussions.",
                "sentiment": t.get("sentiment") or "neutral",
            }
            for t in themes[:6]
        ],
        "forYourGoal": findings,
        "confidence": {
            "level": level,
            "reason": (
                f"Based on {total_posts} posts, ~{total_comments} comments across "
                f"{len(subreddits)} subreddits (synthesized from {len(chunks)} "
                f"analysis chunk{plural})"
            ),
        },
        "quantitativeInsights": {
            "topicsDiscussed": [
                {
                    "topic": t.get("name"),
                    "mentions": t.get("frequency") or 0,
                    "sentiment": t.get("sentiment") or "mixed",
                    "example": (t.get("quotes") or [""])[0],
                }
                for t in themes
            ],
            "sentimentBreakdown": sentiment,
            "commonPhrases": [
                {"phrase": p.get("phrase"), "count": p.get("count") or 0, "context": ""}
                for p in phrases
            ],
            "dataPatterns": [o.get("insight") for o in outliers],
            "engagementCorrelation": "Data synthesized from map chunks",
        },
        "evidenceAnalysis": {
            "primaryClaim": goal or "Research findings",
            "verdict": "Mixed Evidence",
            "evidenceScore": 50,
            "totalAnalyzed": total_comments,
            "relevantCount": total_comments,
            "notRelevantCount": 0,
            "supporting": {
                "count": 0,
                "percentage": 0,
                "keyPoints": findings[:3],
                "quotes": [
                    _quote_ref(q) for q in quotes if q.get("type") in ("INSIGHT", "TIP")
                ][:3],
            },
            "counter": {
                "count": 0,
                "percentage": 0,
                "keyPoints": [c.get("point") for c in contradictions][:2],
                "quotes": [
                    _quote_ref(q) for q in quotes if q.get("type") in ("WARNING", "COMPLAINT")
                ][:2],
            },
            "nuances": [
                f"{c.get('point')}: {c.get('sideA')} vs {c.get('sideB')}" for c in contradictions
            ][:3],
            "confidenceLevel": level,
            "confidenceReason": (
                f"Based on {total_posts} posts across {len(subreddits)} subreddits"
            ),
        },
    }

    logger.info("map_reduce.fallback.built", chunks=len(chunks), themes=len(themes))
    return AnalysisResult(
        mode="map_reduce_analysis",
        model="fallback_from_chunks",
        structured=structured,
        ai_analysis=json.dumps(structured, indent=2),
        map_model=settings.MAP_REDUCE_MAP_MODEL,
        reduce_model="fallback",
        chunks_processed=len(chunks),
        total_posts=total_posts,
        total_comments=_comment_total(posts_data),
        subreddits=subreddits,
    )


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def build_combined_prompt(
    posts_data: Sequence[ExtractionResult], role: str | None, goal: str | None
) -> str:
    sources = ", ".join(f"r/{s}" for s in _subreddits(posts_data))
    return f"""You are analyzing community discussions for a {role or "researcher"}.
Their GOAL: "{goal or "Extract insights"}"

DATA: {len(posts_data)} posts, {_comment_total(posts_data)} comments from: {sources}

{_posts_block(posts_data)}

===

Analyze all of the discussions above together. Return ONLY valid JSON, no
markdown, in this structure:

{_FINAL_SCHEMA}"""


async def analyze_combined(
    posts_data: Sequence[ExtractionResult], role: str | None = None, goal: str | None = None
) -> AnalysisResult:
    """One model call over every post. Raises ``ModelCallError`` when all models fail."""
    prompt = build_combined_prompt(posts_data, role, goal)
    logger.info("map_reduce.combined.start", posts=len(posts_data), prompt_chars=len(prompt))
    result = await analyze_with_gemini(prompt)
    if not result.success:
        raise ModelCallError(
            f"AI analysis failed: {result.error or result.message or 'Unknown error'}",
            code=result.code,
        )
    structured = parse_json(result.analysis)
    return AnalysisResult(
        mode="combined_analysis",
        model=result.model,
        structured=structured if isinstance(structured, dict) else None,
        ai_analysis=result.analysis or "",
        chunks_processed=1,
        total_posts=len(posts_data),
        total_comments=_comment_total(posts_data),
        subreddits=_subreddits(posts_data),
    )


async def run_map_reduce_analysis(
    posts_data: Sequence[ExtractionResult], role: str | None = None, goal: str | None = None
) -> AnalysisResult:
    """Analyze ``posts_data`` with map-reduce, or a single call when it fits one chunk."""
    size = settings.MAP_REDUCE_CHUNK_SIZE
    delay = settings.MAP_REDUCE_CALL_DELAY
    logger.info(
        "map_reduce.start",
        posts=len(posts_data),
        comments=_comment_total(posts_data),
        chunk_size=size,
        map_model=settings.MAP_REDUCE_MAP_MODEL,
        reduce_model=settings.MAP_REDUCE_REDUCE_MODEL or settings.GEMINI_MODEL,
    )

    if len(posts_data) <= size:
        return await analyze_combined(posts_data, role, goal)

    chunks = [list(posts_data[i : i + size]) for i in range(0, len(posts_data), size)]
    canary = await map_analyze_chunk(chunks[0], role, goal, 0, len(chunks))
    if canary is None:
        logger.warning("map_reduce.canary_failed", chunks=len(chunks))
        await asyncio.sleep(delay)
        return await analyze_combined(posts_data, role, goal)

    chunk_results: list[dict | None] = [canary]
    for index in range(1, len(chunks)):
        await asyncio.sleep(delay)
        chunk_results.append(
            await map_analyze_chunk(chunks[index], role, goal, index, len(chunks))
        )
    logger.info(
        "map_reduce.map.complete",
        succeeded=sum(1 for c in chunk_results if c is not None),
        chunks=len(chunks),
    )

    await asyncio.sleep(delay)
    try:
        return await reduce_analysis(chunk_results, role, goal, posts_data)
    except ModelCallError as exc:
        logger.error("map_reduce.reduce.failed", error=exc.message)
        return build_fallback_from_chunks(chunk_results, role, goal, posts_data)
