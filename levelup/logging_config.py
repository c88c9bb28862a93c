import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process logging from ``LEVELUP_*`` environment flags.

    ``LEVELUP_TELEMETRY_LOG_LEVEL`` controls the ``TELEMETRY {...}`` lines
    separately so they can be silenced without hiding application logs.
    """
    root_level = (level or os.getenv("LEVELUP_LOG_LEVEL", "INFO")).upper()
    loggers: Dict[str, Dict[str, Any]] = {
        "levelup.telemetry": {"level": os.getenv("LEVELUP_TELEMETRY_LOG_LEVEL", root_level).upper()},
    }
    if _flag("LEVELUP_DEBUG_SQL"):
        loggers["sqlalchemy.engine"] = {"level": "INFO"}
    if _flag("LEVELUP_DEBUG_HTTP"):
        loggers["uvicorn.access"] = {"level": "DEBUG"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": os.getenv("LEVELUP_LOG_FORMAT", DEFAULT_LOG_FORMAT),
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": loggers,
            "root": {
                "handlers": ["default"],
                "level": root_level,
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", root_level)
