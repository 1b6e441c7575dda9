# syncbridge/core/logging_config.py
"""
Logging setup shared by the API process, the scheduler and the CLI.

Library loggers that emit a line per HTTP call, query or job run are held at
WARNING so sync decisions stay readable.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "sqlalchemy",
    "sqlalchemy.engine",
    "asyncpg",
    "aiosqlite",
    "apscheduler",  # logs every job execution at INFO
)


def configure_logging(level: str = None):
    """Configure the root logger from LOG_LEVEL (default INFO)."""
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    level_value = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=level_value, format=LOG_FORMAT, handlers=[logging.StreamHandler()])

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("syncbridge").setLevel(level_value)

    logging.getLogger(__name__).info(f"Logging configured at level: {level_name}")
