import os
import logging
from logging.config import dictConfig

from vaultchat.utils.env_helper import env_bool

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
JSON_FORMAT = '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'


def setup_logging(level: str | None = None):
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    formatter = "json" if env_bool("LOG_JSON") else "default"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": LOG_FORMAT,
                },
                "json": {  # structured logs for prod
                    "format": JSON_FORMAT,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter,
                },
            },
            "root": {
                "level": level,
                "handlers": ["console"],
            },
            "loggers": {
                # realtime/httpx chatter drowns out the chat events at INFO
                "httpx": {"level": "WARNING"},
                "realtime": {"level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).debug(f"logging_configured level={level} formatter={formatter}")
