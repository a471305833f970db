"""Shared fixtures for the unit suite."""

import pytest

from threadsense.core.quota import youtube_quota
from threadsense.core.token_cache import reddit_token_cache


@pytest.fixture(autouse=True)
def reset_process_state():
    """Module-level token and quota state must not leak between tests."""
    reddit_token_cache.reset()
    youtube_quota.reset()
    yield
    reddit_token_cache.reset()
    youtube_quota.reset()
