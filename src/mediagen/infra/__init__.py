"""Infrastructure connections (DB, Redis, S3, cache)."""

from mediagen.infra.cache import clear_session_cache, session_cache
from mediagen.infra.postgresql import (
    close_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)
from mediagen.infra.redis import (
    GenerationQueue,
    close_redis,
    get_queue,
    get_redis,
    init_redis,
)
from mediagen.infra.s3 import close_storage, get_s3_client, init_storage, public_url

__all__ = [
    # Cache
    "session_cache",
    "clear_session_cache",
    # DB
    "init_db",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Redis
    "init_redis",
    "close_redis",
    "get_redis",
    "get_queue",
    "GenerationQueue",
    # S3
    "init_storage",
    "close_storage",
    "get_s3_client",
    "public_url",
]
