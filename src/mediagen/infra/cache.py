"""TTL caches for hot lookups.

Generation pages poll /generations and /session every few seconds;
session -> user lookups are cached briefly to keep that off the DB.
Configuration via CacheConfig (CACHE_ env prefix).
"""

from cachetools import TTLCache

from mediagen.app.config import get_settings

_cache_config = get_settings().cache

# session id -> (user_id, role)
session_cache: TTLCache[str, tuple[str, str]] = TTLCache(
    maxsize=_cache_config.maxsize, ttl=_cache_config.ttl
)


def clear_session_cache(session_id: str | None = None) -> None:
    if session_id is None:
        session_cache.clear()
    else:
        session_cache.pop(session_id, None)
