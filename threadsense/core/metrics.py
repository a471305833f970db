"""Prometheus metrics for upstream API and model call monitoring.

Provides counters and histograms for tracking:
- Upstream API call success/failure rates (Reddit, YouTube)
- Gemini model attempts per model and outcome
- YouTube quota units consumed per operation
- Batch extraction failures
"""

from prometheus_client import Counter, Histogram

# API metrics
api_calls_total = Counter(
    "threadsense_api_calls_total",
    "Total external API calls",
    ["api_name", "status"],  # success/error/rate_limited/auth_error
)

api_call_duration_seconds = Histogram(
    "threadsense_api_call_duration_seconds",
    "API call duration in seconds",
    ["api_name"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Model metrics
model_calls_total = Counter(
    "threadsense_model_calls_total",
    "Total generation attempts",
    ["model", "status"],  # success/overloaded/quota/not_found/error
)

# Quota metrics
youtube_quota_units_total = Counter(
    "threadsense_youtube_quota_units_total",
    "YouTube Data API quota units consumed",
    ["operation"],  # videos/comment_threads/search
)

# Batch metrics
batch_extract_failures_total = Counter(
    "threadsense_batch_extract_failures_total",
    "Total URLs that failed inside a batch extraction",
    ["source"],
)
