"""Error taxonomy for extraction and model calls.

These exceptions are raised inside the tools layer and converted into result
objects (``ExtractOutcome`` / ``ModelCallResult``) at the public boundary, so a
single failed URL or model never aborts a batch or a fallback chain.
"""

from __future__ import annotations


class ThreadsenseError(Exception):
    """Base class. ``code`` mirrors the upstream HTTP status when there is one."""

    code: int | None = None

    def __init__(self, message: str, *, code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# ---------------------------------------------------------------------------
# Extraction side
# ---------------------------------------------------------------------------


class ExtractionError(ThreadsenseError):
    """Any failure fetching or shaping upstream post/video data."""


class AuthError(ExtractionError):
    """Credential exchange failed or an issued token was rejected."""

    code = 401


class InvalidUrlError(ExtractionError):
    """The URL does not identify a supported post or video."""

    code = 400


class UpstreamRateLimitError(ExtractionError):
    """Upstream returned 429 or reported an exhausted quota."""

    code = 429


class UpstreamForbiddenError(ExtractionError):
    """Upstream refused access (bad API key, comments disabled, private)."""

    code = 403


class NotFoundError(ExtractionError):
    code = 404


class PartialCommentsError(ExtractionError):
    """Comment paging stopped after some pages were already fetched.

    ``comments`` holds everything retrieved before the failing page.
    """

    def __init__(self, message: str, *, comments: list, code: int | None = None):
        super().__init__(message, code=code)
        self.comments = comments


# ---------------------------------------------------------------------------
# Model side
# ---------------------------------------------------------------------------


class ModelCallError(ThreadsenseError):
    """A generation request failed."""


class TransientServerError(ModelCallError):
    """503: the model is overloaded. Retried with exponential backoff."""

    code = 503


class ModelQuotaError(ModelCallError):
    """429: generation quota exhausted. Never retried on the same model."""

    code = 429


class ModelUnavailableError(ModelCallError):
    """404: the model name is unknown upstream. Never retried."""

    code = 404


class ParseError(ThreadsenseError):
    """Model output was not valid JSON. Recovered locally, never propagated."""
