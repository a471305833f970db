"""Gemini generateContent calls with per-status retry and a model fallback chain.

Retry policy for a single model (``call_model_with_retry``):

- 503 (overloaded): exponential backoff ``base ** attempt`` seconds, attempt
  starting at 1; reported as code 503 once attempts are exhausted.
- 429 (quota) and 404 (unknown model): returned immediately, no retry.
- anything else (network, 5xx, malformed payload): fixed delay, then retry.

Nothing here raises. Every outcome is a ``ModelCallResult`` so the fallback
chain can move on to the next model.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog

from threadsense.core.config import settings
from threadsense.core.errors import (
    ModelCallError,
    ModelQuotaError,
    ModelUnavailableError,
    TransientServerError,
)
from threadsense.core.metrics import model_calls_total
from threadsense.models.schemas import ModelCallResult
from threadsense.tools.common import http_client

logger = structlog.get_logger(__name__)

_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
_BUSY_CODES = frozenset({503, 429})

ALL_MODELS_BUSY_ERROR = "All AI models failed. Google servers may be overloaded or quota exceeded."
ALL_MODELS_BUSY_MESSAGE = (
    "AI analysis temporarily unavailable. Please try again in a few minutes, "
    "or check your API quota at https://console.cloud.google.com/apis/dashboard"
)


def is_advanced_model(model: str) -> bool:
    return any(marker in model for marker in settings.GEMINI_ADVANCED_MARKERS)


def generation_config(model: str) -> dict:
    advanced = is_advanced_model(model)
    return {
        "temperature": settings.GEMINI_TEMPERATURE,
        "topK": settings.GEMINI_ADVANCED_TOP_K if advanced else settings.GEMINI_BASIC_TOP_K,
        "topP": settings.GEMINI_TOP_P,
        "maxOutputTokens": (
            settings.GEMINI_ADVANCED_MAX_OUTPUT_TOKENS
            if advanced
            else settings.GEMINI_BASIC_MAX_OUTPUT_TOKENS
        ),
    }


def build_payload(model: str, prompt: str) -> dict:
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": generation_config(model),
        "safetySettings": [
            {"category": category, "threshold": "BLOCK_NONE"} for category in _SAFETY_CATEGORIES
        ],
    }


def extract_text(payload: object) -> str:
    """Concatenate every text part of the first candidate.

    Long outputs arrive split across several parts. Raises ``ModelCallError``
    when there is no candidate or no part.
    """
    candidates = payload.get("candidates") if isinstance(payload, dict) else None
    if not candidates or not isinstance(candidates, list) or not isinstance(candidates[0], dict):
        raise ModelCallError("Unexpected response format from Gemini API")
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not parts or not isinstance(parts, list):
        raise ModelCallError("Unexpected response format from Gemini API")
    return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))


def _classify(exc: httpx.HTTPStatusError, model: str) -> ModelCallError:
    status_code = exc.response.status_code
    if status_code == 503:
        return TransientServerError(f"Model {model} is overloaded")
    if status_code == 429:
        return ModelQuotaError("API quota exceeded")
    if status_code == 404:
        return ModelUnavailableError(f"Model {model} not available")
    return ModelCallError(f"Gemini API error {status_code}", code=status_code)


async def _generate(http: httpx.AsyncClient, model: str, prompt: str) -> str:
    url = f"{settings.GEMINI_API_URL}{model}:generateContent"
    try:
        response = await http.post(
            url,
            params={"key": settings.GEMINI_API_KEY or ""},
            json=build_payload(model, prompt),
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise _classify(exc, model) from exc
    try:
        payload = response.json()
    except ValueError as exc:
        raise ModelCallError("Gemini returned a non-JSON response") from exc
    return extract_text(payload)


async def call_model_with_retry(
    model: str,
    prompt: str,
    max_retries: int = 3,
    *,
    client: httpx.AsyncClient | None = None,
) -> ModelCallResult:
    """Issue one generation request against ``model``, retrying per status."""
    async with http_client(client, settings.GEMINI_TIMEOUT_SECONDS) as http:
        for attempt in range(1, max_retries + 1):
            logger.info("gemini.attempt", model=model, attempt=attempt, max_retries=max_retries)
            try:
                analysis = await _generate(http, model, prompt)
            except TransientServerError as exc:
                model_calls_total.labels(model=model, status="overloaded").inc()
                if attempt < max_retries:
                    wait = settings.GEMINI_BACKOFF_BASE**attempt
                    logger.warning(
                        "gemini.retry.overloaded",
                        model=model,
                        attempt=attempt,
                        delay_seconds=wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                logger.error("gemini.retry.exhausted", model=model, attempts=attempt, code=503)
                return ModelCallResult(success=False, error=exc.message, code=503, model=model)
            except (ModelQuotaError, ModelUnavailableError) as exc:
                status = "quota" if exc.code == 429 else "not_found"
                model_calls_total.labels(model=model, status=status).inc()
                logger.warning("gemini.non_retryable", model=model, code=exc.code)
                return ModelCallResult(success=False, error=exc.message, code=exc.code, model=model)
            except Exception as exc:
                model_calls_total.labels(model=model, status="error").inc()
                logger.warning(
                    "gemini.attempt_failed",
                    model=model,
                    attempt=attempt,
                    error_type=type(exc).__name__,
                    error=str(exc)[:200],
                )
                if attempt >= max_retries:
                    return ModelCallResult(
                        success=False,
                        error=str(exc),
                        message=f"AI analysis failed: {exc}",
                        model=model,
                    )
                await asyncio.sleep(settings.GEMINI_RETRY_DELAY)
                continue

            model_calls_total.labels(model=model, status="success").inc()
            logger.info("gemini.success", model=model, attempt=attempt, chars=len(analysis))
            return ModelCallResult(success=True, analysis=analysis, model=model)

    return ModelCallResult(
        success=False,
        error="Max retries exceeded",
        message="AI analysis failed after multiple attempts",
        model=model,
    )


def _aggregate_failure(failures: list[ModelCallResult]) -> ModelCallResult:
    codes = {f.code for f in failures}
    if failures and codes <= _BUSY_CODES:
        return ModelCallResult(
            success=False,
            error=ALL_MODELS_BUSY_ERROR,
            message=ALL_MODELS_BUSY_MESSAGE,
            code=codes.pop() if len(codes) == 1 else None,
        )
    last_error = failures[-1].error if failures else "no models configured"
    return ModelCallResult(
        success=False,
        error=f"All AI models failed: {last_error}",
        message="AI analysis failed. Please try again later.",
    )


async def analyze_with_gemini(
    prompt: str,
    *,
    primary_model: str | None = None,
    fallback_models: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> ModelCallResult:
    """Try the primary model, then each fallback in order; first success wins."""
    primary = primary_model or settings.GEMINI_MODEL
    fallbacks = settings.GEMINI_FALLBACK_MODELS if fallback_models is None else fallback_models

    failures: list[ModelCallResult] = []
    async with http_client(client, settings.GEMINI_TIMEOUT_SECONDS) as http:
        result = await call_model_with_retry(
            primary, prompt, settings.GEMINI_PRIMARY_RETRIES, client=http
        )
        if result.success:
            return result
        failures.append(result)
        logger.info("gemini.fallback.start", primary=primary, code=result.code)

        for model in fallbacks:
            result = await call_model_with_retry(
                model, prompt, settings.GEMINI_FALLBACK_RETRIES, client=http
            )
            if result.success:
                logger.info("gemini.fallback.succeeded", model=model)
                return result
            failures.append(result)

    logger.error("gemini.all_models_failed", attempts=[(f.model, f.code) for f in failures])
    return _aggregate_failure(failures)


async def analyze_with_model(
    prompt: str,
    model: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> ModelCallResult:
    """Prefer one named model; on failure fall back to the full primary + fallback chain."""
    async with http_client(client, settings.GEMINI_TIMEOUT_SECONDS) as http:
        result = await call_model_with_retry(
            model, prompt, settings.GEMINI_PRIMARY_RETRIES, client=http
        )
        if result.success:
            return result
        logger.info("gemini.specific_model_failed", model=model, code=result.code)
        return await analyze_with_gemini(prompt, client=http)
