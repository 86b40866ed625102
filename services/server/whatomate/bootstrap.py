"""Process bootstrap pipeline.

Fixed order, single pass, first failure wins:
detect mode -> resolve config -> connect Postgres -> connect Redis -> resolve port.

The pipeline returns `Ready` or `Failed` instead of exiting, so callers decide
how to terminate (see whatomate.main).
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
import logging
import os
from typing import Protocol

import redis.asyncio as redis

from whatomate.errors import BackendConnectionError, BootstrapError, ConfigError
from whatomate.settings import CacheConfig, Config, DatabaseConfig, DeploymentMode, detect_deployment_mode, resolve_config
from whatomate.stores.postgres import Database, connect_database
from whatomate.stores.redis import connect_redis

logger = logging.getLogger(__name__)


class StoreConnector(Protocol):
    def __call__(self, config: DatabaseConfig, *, debug: bool = ...) -> Awaitable[Database]: ...


CacheConnector = Callable[[CacheConfig], Awaitable[redis.Redis]]

STAGE_MESSAGES = {
    "config": "Failed to load config",
    "database": "Failed to connect to database",
    "redis": "Failed to connect to Redis",
}


@dataclass(frozen=True)
class Ready:
    """All startup checks passed."""

    mode: DeploymentMode
    config: Config
    database: Database
    cache: redis.Redis
    port: str

    async def aclose(self) -> None:
        """Release both backend handles."""
        await self.cache.aclose()
        await self.database.close()


@dataclass(frozen=True)
class Failed:
    """A startup stage failed; nothing after it was attempted."""

    stage: str
    cause: BootstrapError

    @property
    def message(self) -> str:
        prefix = STAGE_MESSAGES.get(self.stage, f"Startup failed at {self.stage}")
        return f"{prefix}: {self.cause}"


def resolve_port(config: Config, environ: Mapping[str, str] | None = None) -> str:
    """Effective listen port: a non-empty PORT wins over server.port."""
    environ = os.environ if environ is None else environ
    port = (environ.get("PORT") or "").strip()
    if port:
        return port
    return str(config.server.port)


async def bootstrap(
    environ: Mapping[str, str] | None = None,
    *,
    config_path: str | os.PathLike[str] | None = None,
    connect_store: StoreConnector = connect_database,
    connect_cache: CacheConnector = connect_redis,
) -> Ready | Failed:
    """Run the startup sequence once.

    Args:
        environ: Environment mapping (defaults to os.environ).
        config_path: TOML path for local-file mode.
        connect_store: Postgres connector.
        connect_cache: Redis connector.

    Returns:
        Ready with verified handles and the listen port, or Failed naming the
        stage and its cause.
    """
    environ = os.environ if environ is None else environ

    mode = detect_deployment_mode(environ)
    logger.info(f"Deployment mode: {mode.value}")

    try:
        config = resolve_config(mode, environ=environ, config_path=config_path)
    except ConfigError as e:
        return Failed(stage=e.stage, cause=e)

    try:
        database = await connect_store(config.database, debug=config.app.debug)
    except BackendConnectionError as e:
        return Failed(stage=e.stage, cause=e)

    try:
        cache = await connect_cache(config.redis)
    except BackendConnectionError as e:
        await database.close()
        return Failed(stage=e.stage, cause=e)
    except BaseException:
        await database.close()
        raise

    return Ready(
        mode=mode,
        config=config,
        database=database,
        cache=cache,
        port=resolve_port(config, environ),
    )
