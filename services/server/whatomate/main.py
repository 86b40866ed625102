"""Process entry point.

Whatomate server - resolves config, verifies Postgres and Redis, and computes
the listen port. The HTTP serving layer is not wired in yet, so the process
stops after the startup checks.

Run:
  whatomate-server
  python -m whatomate.main
"""

import asyncio
from collections.abc import Mapping
import logging
import os
import sys

from dotenv import load_dotenv

from whatomate.bootstrap import Failed, bootstrap

logger = logging.getLogger(__name__)


def configure_logging(environ: Mapping[str, str] | None = None) -> None:
    environ = os.environ if environ is None else environ
    logging.basicConfig(
        level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def run(
    environ: Mapping[str, str] | None = None,
    *,
    config_path: str | os.PathLike[str] | None = None,
) -> int:
    """Run startup checks and return the process exit status."""
    result = await bootstrap(environ, config_path=config_path)
    if isinstance(result, Failed):
        logger.error(result.message)
        return 1

    logger.info(f"Server would start on port {result.port}")
    logger.info(f"Database connected: {result.database is not None}")
    logger.info(f"Redis connected: {result.cache is not None}")

    # TODO: hand the handles to the HTTP layer once it exists instead of closing them.
    await result.aclose()
    return 0


def main() -> None:
    # Existing environment variables win over .env entries.
    load_dotenv()
    configure_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
