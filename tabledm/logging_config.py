"""
Logging setup for TableDM.

setup_logging() runs once, from the FastAPI lifespan handler. Modules log
through ``logging.getLogger(__name__)``.

What goes where:
  DEBUG   - provider/model per narrator call, token usage, SQL echo (DEBUG=true)
  INFO    - combat lifecycle, session status changes, startup
  WARNING - ignored targets, compare-and-swap conflicts, rejected suggestions, LLM retries
  ERROR   - storage failures, narration oracle failures
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Chatty at INFO; their warnings still come through
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "anthropic", "sqlalchemy.engine")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger, replacing any handlers already installed."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
