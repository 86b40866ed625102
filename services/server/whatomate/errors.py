"""Startup errors.

Every error raised while resolving configuration or connecting to a backend
is fatal for the process. Each one records the stage it came from and keeps
the original exception as `cause` (and `__cause__` when raised `from` it).
"""


class BootstrapError(RuntimeError):
    """Base class for fatal startup errors."""

    stage = "bootstrap"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"


class ConfigError(BootstrapError):
    """Configuration could not be read, parsed or is incomplete."""

    stage = "config"


class BackendConnectionError(BootstrapError):
    """A backend could not be reached, authenticated or verified."""

    def __init__(self, stage: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message, cause)
        self.stage = stage


class InvalidConnectionURLError(BackendConnectionError):
    """A non-empty connection string could not be parsed."""
