"""Structured logging for treeupdt: structlog rendering through stdlib logging.

Logs go to stderr so command output on stdout stays machine-readable.
"""

from __future__ import annotations

import logging.config
import os
from typing import Any

import structlog

LEVEL_ENV = "TREEUPDT_LOG_LEVEL"
FORMAT_ENV = "TREEUPDT_LOG_FORMAT"

# Chatty libraries that only log at WARNING and above.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def _dict_config(
    log_level: str,
    pre_chain: list[structlog.types.Processor],
    renderer: structlog.types.Processor,
) -> dict[str, Any]:
    loggers: dict[str, Any] = {"treeupdt": {"level": log_level}}
    loggers.update({name: {"level": "WARNING"} for name in _QUIET_LOGGERS})
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": pre_chain,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "structlog",
            },
        },
        "root": {"handlers": ["stderr"], "level": log_level},
        "loggers": loggers,
    }


def setup_logging(default_level: str = "WARNING", verbose: bool = False) -> None:
    """Configure structlog and stdlib logging.

    Environment variables:
        TREEUPDT_LOG_LEVEL: overrides the level (*default_level*, or DEBUG with *verbose*)
        TREEUPDT_LOG_FORMAT: ``console`` (default) or ``json``
    """
    fallback = "DEBUG" if verbose else default_level
    log_level = os.environ.get(LEVEL_ENV, fallback).upper()
    log_format = os.environ.get(FORMAT_ENV, "console").lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(_dict_config(log_level, pre_chain, _renderer(log_format)))
