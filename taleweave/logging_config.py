"""
Centralized logging configuration for Taleweave.

Call setup_logging() once at application startup from whatever host
embeds the engine.  Every source module then gets its own logger via:

    import logging
    logger = logging.getLogger(__name__)

Level mapping:
  DEBUG   – cache merges, regeneration ticks, stale feed records
  INFO    – turns, state transitions, commits, pool debits
  WARNING – fallbacks (unknown scene, unfulfilled objective, bad edge)
  ERROR   – failed background feeds, failed persistence writes
"""

import logging
import sys

from .config import config


def setup_logging(level: str | None = None) -> None:
    """Configure root logger and quiet noisy third-party loggers."""
    fmt = "[%(name)s] %(message)s"
    level = level or config.LOG_LEVEL
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
        force=True,
    )

    # Quiet noisy third-party loggers
    for name in (
        "sqlalchemy.engine",
        "alembic",
        "httpx",
        "httpcore",
        "anthropic",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)
