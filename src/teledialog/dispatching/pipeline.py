from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from contextlib import aclosing, nullcontext
from typing import Any, TypeVar

from ..errors import UnroutableEvent
from ..logging import get_logger
from ..telegram.api_schemas import Update, UpdateKind, update_kind
from .error_handlers import ErrorHandler, LoggingErrorHandler

logger = get_logger(__name__)

__all__ = [
    "discard_errors",
    "log_out_errors",
    "simplify",
    "trace",
]

T = TypeVar("T")


def _closing(stream: AsyncIterable[Any]) -> Any:
    # closing the outermost adapter closes every stream below it
    if hasattr(stream, "aclose"):
        return aclosing(stream)
    return nullcontext(stream)


async def trace(stream: AsyncIterable[T]) -> AsyncIterator[T]:
    async with _closing(stream):
        async for item in stream:
            logger.debug("update.trace", item=item)
            yield item


async def discard_errors(
    stream: AsyncIterable[Update | BaseException],
    error_handler: ErrorHandler,
) -> AsyncIterator[Update]:
    async with _closing(stream):
        async for item in stream:
            if isinstance(item, BaseException):
                await error_handler.handle_error(item)
                continue
            yield item


def log_out_errors(
    stream: AsyncIterable[Update | BaseException],
) -> AsyncIterator[Update]:
    return discard_errors(
        stream, LoggingErrorHandler("An error from the update listener")
    )


async def simplify(
    stream: AsyncIterable[Update | BaseException],
    error_handler: ErrorHandler | None = None,
) -> AsyncIterator[UpdateKind]:
    """Trace, drop errors and strip each update down to its kind."""
    if error_handler is None:
        updates = log_out_errors(trace(stream))
    else:
        updates = discard_errors(trace(stream), error_handler)
    async with aclosing(updates):
        async for update in updates:
            kind = update_kind(update)
            if kind is None:
                unroutable = UnroutableEvent(
                    update_id=update.update_id, reason="unknown update kind"
                )
                logger.warning(
                    "dispatch.unroutable",
                    update_id=unroutable.update_id,
                    reason=unroutable.reason,
                )
                continue
            yield kind
