from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from ..logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "ErrorHandler",
    "FuncErrorHandler",
    "IgnoringErrorHandler",
    "IgnoringErrorHandlerSafe",
    "LoggingErrorHandler",
]


class ErrorHandler(Protocol):
    async def handle_error(self, error: Any) -> None: ...


class FuncErrorHandler:
    def __init__(self, func: Callable[[Any], Awaitable[None]]) -> None:
        self._func = func

    async def handle_error(self, error: Any) -> None:
        await self._func(error)


class IgnoringErrorHandler:
    async def handle_error(self, error: Any) -> None:
        _ = error


class IgnoringErrorHandlerSafe:
    """For error types that should never occur at runtime.

    Logs a warning when one does, instead of dropping it silently.
    """

    async def handle_error(self, error: Any) -> None:
        logger.warning(
            "errors.unexpected",
            error=str(error),
            error_type=error.__class__.__name__,
        )


class LoggingErrorHandler:
    def __init__(self, text: str = "error") -> None:
        self.text = text

    async def handle_error(self, error: Any) -> None:
        logger.error(
            "dispatch.error",
            text=self.text,
            error=str(error),
            error_type=error.__class__.__name__,
        )
