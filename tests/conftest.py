"""
Global test configuration and fixtures.
"""

import pytest

from gallery.cache import clear_caches, set_caches_enabled
from gallery.config import Settings


@pytest.fixture(autouse=True)
def isolated_caches():
    """Caches off and empty for every test; individual tests may switch them on."""
    set_caches_enabled(False)
    clear_caches()
    yield
    clear_caches()
    set_caches_enabled(False)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no delays so retry and pagination tests run instantly."""
    return Settings(
        _env_file=None,
        ALCHEMY_API_KEY="test-key",
        NEYNAR_API_KEY="neynar-test",
        ZAPPER_API_KEY="",
        IPFS_GATEWAY="cloudflare-ipfs.com",
        REQUEST_TIMEOUT=2,
        MAX_RETRIES=2,
        RETRY_BACKOFF=0,
        RETRY_BACKOFF_MAX=0,
        PAGE_DELAY=0,
        AGGREGATION_CONCURRENCY=4,
        AGGREGATION_TIMEOUT=5,
        RESOLVE_TIMEOUT=2,
        CACHE_ENABLED=False,
    )
