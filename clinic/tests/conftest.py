import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters and lookup caches live in the default cache
    cache.clear()
    yield
    cache.clear()
