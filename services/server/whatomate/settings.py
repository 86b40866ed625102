"""Application settings and deployment-aware config resolution.

Two deployment modes:
- Platform-managed (Railway): everything comes from environment variables.
- Local file: a TOML document (config.toml by default).

All readers take an optional `environ` mapping so callers (and tests) can
resolve config without touching the real process environment.
"""

from collections.abc import Mapping
from enum import Enum
import logging
import os
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)
from sqlalchemy.engine import URL, make_url

from whatomate.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.toml"

# Any of these being set means we run on the managed platform.
PLATFORM_SIGNALS = ("RAILWAY_ENVIRONMENT", "DATABASE_URL")

ASYNC_DRIVER = "postgresql+asyncpg"


class DeploymentMode(str, Enum):
    """Where configuration comes from."""

    PLATFORM_MANAGED = "platform_managed"
    LOCAL_FILE = "local_file"


def _env_value(environ: Mapping[str, str], name: str) -> str:
    """Get an environment value, treating whitespace-only as unset."""
    return (environ.get(name) or "").strip()


def detect_deployment_mode(environ: Mapping[str, str] | None = None) -> DeploymentMode:
    """Classify the deployment from environment signals."""
    environ = os.environ if environ is None else environ
    if any(_env_value(environ, name) for name in PLATFORM_SIGNALS):
        return DeploymentMode.PLATFORM_MANAGED
    return DeploymentMode.LOCAL_FILE


# ============================================================
# Config sections
# ============================================================


def _async_driver_url(url: str) -> str:
    """Rewrite postgres:// and postgresql:// to the asyncpg driver.

    Railway provides postgresql:// (older add-ons postgres://) but we need
    postgresql+asyncpg:// for async.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return f"{ASYNC_DRIVER}://{url[len(prefix):]}"
    return url


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Whatomate"
    environment: str = "development"
    debug: bool = False


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)


class DatabaseConfig(BaseModel):
    """PostgreSQL connection target.

    Either `url` or the discrete fields (at least `host` and `name`) must be
    provided. A non-empty `url` wins.
    """

    model_config = ConfigDict(frozen=True)

    url: str = ""
    host: str = ""
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = ""
    password: str = ""
    name: str = ""
    ssl_mode: str = ""

    # Pool
    max_open_conns: int = Field(default=25, ge=1)
    max_idle_conns: int = Field(default=5, ge=1)
    conn_max_lifetime: int = Field(default=300, ge=0, description="Seconds before a pooled connection is recycled")

    @field_validator("url", "host", "name", "ssl_mode", mode="before")
    @classmethod
    def _strip(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _require_target(self) -> "DatabaseConfig":
        if not self.url and not (self.host and self.name):
            raise ValueError("database needs either `url` or both `host` and `name`")
        if self.max_idle_conns > self.max_open_conns:
            raise ValueError("database `max_idle_conns` cannot exceed `max_open_conns`")
        return self

    def sqlalchemy_url(self) -> URL:
        """Build the async driver URL.

        Raises:
            sqlalchemy.exc.ArgumentError: If `url` cannot be parsed.
        """
        if self.url:
            url = make_url(_async_driver_url(self.url))
        else:
            url = URL.create(
                ASYNC_DRIVER,
                username=self.user or None,
                password=self.password or None,
                host=self.host,
                port=self.port,
                database=self.name,
            )
        # asyncpg does not understand libpq's sslmode; it goes to connect_args.
        return url.difference_update_query(["sslmode"])

    def effective_ssl_mode(self) -> str:
        """Explicit `ssl_mode`, else the `sslmode` query parameter of `url`."""
        if self.ssl_mode or not self.url:
            return self.ssl_mode
        value = make_url(_async_driver_url(self.url)).query.get("sslmode", "")
        if isinstance(value, tuple):
            value = value[-1]
        return value

    def asyncpg_connect_args(self, timeout: float) -> dict[str, object]:
        """Compute asyncpg connect_args.

        Railway Postgres uses an internal hostname (e.g. postgres.railway.internal)
        that rejects SSL negotiation. In that case we must explicitly disable SSL.
        """
        host = self.sqlalchemy_url().host or ""
        if host.endswith(".railway.internal"):
            return {"ssl": False, "timeout": timeout}

        args: dict[str, object] = {"timeout": timeout}
        ssl_mode = self.effective_ssl_mode()
        if ssl_mode:
            args["ssl"] = ssl_mode
        return args


class CacheConfig(BaseModel):
    """Redis connection target. A non-empty `url` is authoritative."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: str = ""
    db: int = Field(default=0, ge=0)
    url: str = ""

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class Config(BaseSettings):
    """Unified process configuration, built once and read-only afterwards."""

    model_config = SettingsConfigDict(frozen=True, extra="ignore")

    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig
    redis: CacheConfig

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values are always passed in explicitly by the loaders below.
        return (init_settings,)


# ============================================================
# Loaders
# ============================================================


class PlatformEnv(BaseModel):
    """Environment variables read in platform-managed mode."""

    model_config = ConfigDict(extra="ignore")

    database_url: str = Field(default="", validation_alias="DATABASE_URL")

    redis_url: str = Field(default="", validation_alias="REDIS_URL")
    redis_host: str = Field(default="", validation_alias="REDIS_HOST")
    redis_port: int = Field(default=6379, validation_alias="REDIS_PORT")
    redis_password: str = Field(default="", validation_alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, validation_alias="REDIS_DB")

    port: int = Field(default=8080, validation_alias="PORT")
    debug: bool = Field(default=False, validation_alias=AliasChoices("DEBUG", "APP_DEBUG"))
    app_name: str = Field(default="Whatomate", validation_alias="APP_NAME")
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENV", "RAILWAY_ENVIRONMENT"),
    )


def load_env_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build config from environment variables (platform-managed mode).

    Empty variables count as unset. DATABASE_URL and one of REDIS_URL /
    REDIS_HOST are required; everything else has a default.

    Raises:
        ConfigError: If a required variable is missing or a value is invalid.
    """
    environ = os.environ if environ is None else environ
    values = {key: value.strip() for key, value in environ.items() if value and value.strip()}

    try:
        env = PlatformEnv.model_validate(values)
    except ValidationError as e:
        raise ConfigError("Invalid environment configuration", e) from e

    if not env.database_url:
        raise ConfigError("DATABASE_URL is required in platform-managed mode")
    if not env.redis_url and not env.redis_host:
        raise ConfigError("REDIS_URL or REDIS_HOST is required in platform-managed mode")

    try:
        return Config(
            app=AppConfig(name=env.app_name, environment=env.environment, debug=env.debug),
            server=ServerConfig(port=env.port),
            database=DatabaseConfig(url=env.database_url),
            redis=CacheConfig(
                url=env.redis_url,
                host=env.redis_host or "localhost",
                port=env.redis_port,
                password=env.redis_password,
                db=env.redis_db,
            ),
        )
    except ValidationError as e:
        raise ConfigError("Invalid environment configuration", e) from e


def load_file_config(path: str | os.PathLike[str]) -> Config:
    """Load config from a TOML file (local-file mode).

    Raises:
        ConfigError: If the file is missing, unreadable, malformed or incomplete.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = TomlConfigSettingsSource(Config, toml_file=path)()
        return Config(**data)
    except (OSError, ValueError) as e:
        # TOMLDecodeError and pydantic's ValidationError are both ValueErrors.
        raise ConfigError(f"Invalid config file {path}", e) from e


def resolve_config(
    mode: DeploymentMode,
    *,
    environ: Mapping[str, str] | None = None,
    config_path: str | os.PathLike[str] | None = None,
) -> Config:
    """Resolve config for the detected deployment mode.

    Args:
        mode: Detected deployment mode.
        environ: Environment mapping (defaults to os.environ).
        config_path: TOML path for local-file mode. Defaults to CONFIG_PATH,
            then config.toml.
    """
    environ = os.environ if environ is None else environ

    if mode is DeploymentMode.PLATFORM_MANAGED:
        logger.info("Loading config from environment (platform-managed)")
        return load_env_config(environ)

    if config_path is None:
        config_path = _env_value(environ, "CONFIG_PATH") or DEFAULT_CONFIG_PATH
    logger.info(f"Loading config from {config_path}")
    return load_file_config(config_path)
