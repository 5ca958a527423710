from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

__all__ = ["get_logger", "setup_logging"]

_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_REDACTED = "bot[REDACTED]"


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return _TOKEN_RE.sub(_REDACTED, value)
    if isinstance(value, dict):
        return {key: _redact(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item) for item in value)
    return value


def redact_tokens(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    _ = logger
    _ = method_name
    return {key: _redact(value) for key, value in event_dict.items()}


def setup_logging(*, debug: bool = False, json: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    renderer: Any
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            redact_tokens,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)
