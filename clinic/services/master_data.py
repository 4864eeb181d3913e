"""
Master data cache helpers.

List endpoints for departments, wards, tests and drugs are cached under
``master_data:<entity>:g<generation>:<suffix>``.  Invalidating an entity
bumps its generation so every filtered variant goes stale at once,
without having to enumerate keys (locmem and Redis both work).
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Iterable

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

PREFIX = 'master_data'

# entity -> other entities whose cached views embed it
RELATED = {
    'department': ('ward', 'test_catalog', 'stats'),
    'ward': ('bed', 'stats'),
    'bed': ('ward', 'stats'),
    'test_catalog': ('stats',),
    'drug': ('stats',),
    'service': (),
}


def _generation(entity: str) -> int:
    return cache.get(f'{PREFIX}:{entity}:gen') or 1


def cache_key(entity: str, suffix: str = 'all', params: dict | None = None) -> str:
    key = f'{PREFIX}:{entity}:g{_generation(entity)}:{suffix}'
    if params:
        digest = hashlib.md5(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()[:12]
        key = f'{key}:{digest}'
    return key


def remember(entity: str, suffix: str, producer: Callable[[], Any], params: dict | None = None,
             ttl: int | None = None) -> Any:
    key = cache_key(entity, suffix, params)
    data = cache.get(key)
    if data is None:
        data = producer()
        cache.set(key, data, ttl or settings.MASTER_DATA_CACHE_TTL)
    return data


def invalidate(entity: str) -> list[str]:
    """Bump the generation of ``entity`` and of the entities that embed it."""
    bumped = []
    for name in (entity, *RELATED.get(entity, ())):
        gen_key = f'{PREFIX}:{name}:gen'
        try:
            cache.incr(gen_key)
        except ValueError:
            cache.set(gen_key, 2, None)
        bumped.append(name)
    logger.debug('master data caches invalidated: %s', bumped)
    return bumped


def invalidate_all(entities: Iterable[str] = tuple(RELATED)) -> list[str]:
    bumped: list[str] = []
    for name in entities:
        bumped.extend(invalidate(name))
    return sorted(set(bumped))
