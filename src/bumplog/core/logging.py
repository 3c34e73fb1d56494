"""
Logging configuration.

We use a YAML logging config (`src/bumplog/config/logging.yaml`) and then apply
the level from settings (`app.log_level`, or `BUMPLOG_LOG_LEVEL`) unless the
caller passes one explicitly (the CLI's `--verbose`).
"""

from __future__ import annotations

import copy
import logging.config

from bumplog.config.settings import get_logging_config, get_settings

# Chatty below WARNING: one line per request / websocket frame.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp", "uvicorn.access")


def configure_logging(level: str | None = None) -> None:
    """Configure the Python logging system based on packaged YAML config + settings."""
    config = copy.deepcopy(get_logging_config())
    level = (level or get_settings().app.log_level).upper()

    config.setdefault("root", {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level

    if level != "DEBUG":
        loggers = config.setdefault("loggers", {})
        for name in _NOISY_LOGGERS:
            loggers.setdefault(name, {})["level"] = "WARNING"

    logging.config.dictConfig(config)
