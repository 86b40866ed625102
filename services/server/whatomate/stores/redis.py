"""Redis store for caching and queues.

Connection precedence:
- A non-empty `url` (REDIS_URL on Railway, or `redis.url` in config.toml)
  is authoritative.
- Otherwise host/port/password/db from config.
"""

import asyncio
import logging
from urllib.parse import urlparse

import redis.asyncio as redis

from whatomate.errors import BackendConnectionError, InvalidConnectionURLError
from whatomate.settings import CacheConfig

logger = logging.getLogger(__name__)

STAGE = "redis"
DEFAULT_TIMEOUT = 5.0  # seconds


def _check_db_path(url: str) -> None:
    """Reject a non-numeric database in the URL path (redis-py falls back to 0)."""
    parsed = urlparse(url)
    if parsed.scheme == "unix":
        return
    db = parsed.path.strip("/")
    if db and not db.isdigit():
        raise ValueError(f"Invalid Redis database number: {db!r}")


def _client_from_config(config: CacheConfig, *, timeout: float) -> redis.Redis:
    options = {
        "encoding": "utf-8",
        "decode_responses": True,
        "socket_connect_timeout": timeout,
        "socket_timeout": timeout,
    }
    if config.url:
        try:
            _check_db_path(config.url)
            return redis.from_url(config.url, **options)
        except ValueError as e:
            raise InvalidConnectionURLError(STAGE, "Failed to parse Redis URL", e) from e

    return redis.Redis(
        host=config.host,
        port=config.port,
        password=config.password or None,
        db=config.db,
        **options,
    )


def describe_client(client: redis.Redis) -> str:
    """Render host:port/db of a client without credentials."""
    kwargs = client.connection_pool.connection_kwargs
    if "path" in kwargs:
        return f"unix://{kwargs['path']}/{kwargs.get('db', 0)}"
    return f"{kwargs.get('host', 'localhost')}:{kwargs.get('port', 6379)}/{kwargs.get('db', 0)}"


async def connect_redis(config: CacheConfig, *, timeout: float = DEFAULT_TIMEOUT) -> redis.Redis:
    """Create a Redis client and verify it answers PING.

    Args:
        config: Redis section of the resolved config.
        timeout: Bound for socket connect/read and the PING, in seconds.

    Raises:
        InvalidConnectionURLError: If `url` is non-empty but cannot be parsed.
        BackendConnectionError: If PING fails or times out.
    """
    client = _client_from_config(config, timeout=timeout)

    # Validate connectivity early (especially for `rediss://` in production).
    try:
        await asyncio.wait_for(client.ping(), timeout=timeout)
    except Exception as e:
        await client.aclose()
        raise BackendConnectionError(STAGE, "Redis ping failed", e) from e

    logger.info(f"Redis connected: {describe_client(client)}")
    return client
