"""Rate-limit-safe extraction of many URLs.

URLs are split into fixed-size chunks. Each chunk runs concurrently; a chunk
boundary is a synchronization point (every extraction in chunk k settles,
success or failure, before chunk k+1 starts), with an optional delay between
chunks. One failing URL never aborts the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from threadsense.core.config import settings
from threadsense.core.metrics import batch_extract_failures_total
from threadsense.models.schemas import (
    BatchExtractionResult,
    ExtractionFailure,
    ExtractionResult,
    ExtractOutcome,
)
from threadsense.services.source_detector import detect_source, extract

logger = structlog.get_logger(__name__)

Extractor = Callable[[str], Awaitable[ExtractOutcome]]
ProgressCallback = Callable[[int, int], None]


def chunked(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def cap_comments(data: ExtractionResult, cap: int) -> ExtractionResult:
    """Keep only the top ``cap`` comments by score."""
    if len(data.valuable_comments) <= cap:
        return data
    top = sorted(data.valuable_comments, key=lambda c: c.score, reverse=True)[:cap]
    stats = data.extraction_stats.model_copy(update={"extracted": len(top)})
    return data.model_copy(update={"valuable_comments": top, "extraction_stats": stats})


async def batch_extract(
    urls: list[str],
    *,
    batch_size: int | None = None,
    batch_delay: float | None = None,
    comment_cap: int | None = None,
    extractor: Extractor | None = None,
    progress_callback: ProgressCallback | None = None,
) -> BatchExtractionResult:
    """Extract every URL, returning successes and per-URL failures side by side.

    ``posts_data`` keeps input order among successful URLs.
    """
    size = batch_size or settings.EXTRACTION_BATCH_SIZE
    delay = settings.EXTRACTION_BATCH_DELAY if batch_delay is None else batch_delay
    cap = comment_cap or settings.COMMENT_CAP_PER_POST
    run = extractor or extract

    result = BatchExtractionResult()
    batches = chunked(list(urls), size)
    completed = 0
    logger.info(
        "batch_extract.start", total=len(urls), batches=len(batches), batch_size=size
    )

    for index, batch in enumerate(batches):
        outcomes = await asyncio.gather(*(run(url) for url in batch), return_exceptions=True)

        for url, outcome in zip(batch, outcomes):
            completed += 1
            if isinstance(outcome, BaseException):
                logger.error(
                    "batch_extract.extractor_raised",
                    url=url,
                    error_type=type(outcome).__name__,
                    error=str(outcome)[:200],
                )
                error = str(outcome) or type(outcome).__name__
            elif outcome.success and outcome.data is not None:
                result.posts_data.append(cap_comments(outcome.data, cap))
                continue
            else:
                error = outcome.error or "Extraction failed"
            batch_extract_failures_total.labels(source=detect_source(url).source).inc()
            result.failures.append(ExtractionFailure(url=url, error=error))

        if progress_callback is not None:
            progress_callback(completed, len(urls))

        if index < len(batches) - 1:
            logger.info(
                "batch_extract.chunk_complete",
                batch=index + 1,
                batches=len(batches),
                delay_seconds=delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    logger.info(
        "batch_extract.complete",
        succeeded=len(result.posts_data),
        failed=len(result.failures),
    )
    return result
