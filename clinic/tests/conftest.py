import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def clear_cache():
    # throttle counters and master data caches live in the locmem cache
    cache.clear()
    yield
    cache.clear()
