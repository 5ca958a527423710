"""Fan-out of projected updates to per-kind sinks.

Every registered sink runs in its own task and reads from its own memory
stream. With the default unbounded queues a slow sink never delays the
others, at the cost of memory growth while it lags behind. Setting
``sink_queue_size`` bounds each queue; forwarding then waits for room, and
the wait propagates back to the poller.
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterable, Awaitable, Callable
from contextlib import aclosing, nullcontext
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ..config import DispatchSettings
from ..logging import get_logger
from ..telegram.api_schemas import UPDATE_KINDS, UpdateKind
from ..telegram.client import BotClient
from .context import UpdateWithCx
from .error_handlers import ErrorHandler
from .pipeline import simplify
from .polling import UpdateListener, default_polling

logger = get_logger(__name__)

__all__ = ["Dispatcher", "SinkHandler", "SinkRx", "for_each"]

SinkRx = MemoryObjectReceiveStream[UpdateWithCx[Any]]
SinkHandler = Callable[[SinkRx], Awaitable[None]]


def for_each(handler: Callable[[UpdateWithCx[Any]], Awaitable[None]]) -> SinkHandler:
    """Adapt a per-update coroutine into a sink that handles updates in order."""

    async def _sink(rx: SinkRx) -> None:
        async for cx in rx:
            try:
                await handler(cx)
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "dispatch.handler_failed",
                    update_id=cx.update_id,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )

    return _sink


class Dispatcher:
    def __init__(self, bot: BotClient, *, sink_queue_size: int | None = None) -> None:
        if sink_queue_size is not None and sink_queue_size < 1:
            raise ValueError("sink_queue_size must be >= 1")
        self._bot = bot
        self._queue_size: float = (
            math.inf if sink_queue_size is None else sink_queue_size
        )
        self._handlers: dict[str, SinkHandler] = {}

    @classmethod
    def from_settings(cls, bot: BotClient, settings: DispatchSettings) -> Dispatcher:
        return cls(bot, sink_queue_size=settings.sink_queue_size)

    @property
    def bot(self) -> BotClient:
        return self._bot

    def handler(self, kind: str, handler: SinkHandler) -> Dispatcher:
        if kind not in UPDATE_KINDS:
            raise ValueError(f"unknown update kind {kind!r}")
        if kind in self._handlers:
            raise ValueError(f"a handler for {kind!r} is already registered")
        self._handlers[kind] = handler
        return self

    def messages_handler(self, handler: SinkHandler) -> Dispatcher:
        return self.handler("message", handler)

    def edited_messages_handler(self, handler: SinkHandler) -> Dispatcher:
        return self.handler("edited_message", handler)

    def channel_posts_handler(self, handler: SinkHandler) -> Dispatcher:
        return self.handler("channel_post", handler)

    def edited_channel_posts_handler(self, handler: SinkHandler) -> Dispatcher:
        return self.handler("edited_channel_post", handler)

    def callback_queries_handler(self, handler: SinkHandler) -> Dispatcher:
        return self.handler("callback_query", handler)

    async def dispatch(self) -> None:
        await self.dispatch_with_listener(default_polling(self._bot))

    async def dispatch_with_listener(
        self,
        listener: UpdateListener,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        await self.dispatch_kinds(simplify(listener, error_handler))

    async def dispatch_kinds(self, kinds: AsyncIterable[UpdateKind]) -> None:
        """Forward every item to its sink until ``kinds`` is exhausted.

        Returns once every sink has drained its queue and finished.
        """
        senders: dict[str, MemoryObjectSendStream[UpdateWithCx[Any]]] = {}
        async with anyio.create_task_group() as tg:
            try:
                for kind, handler in self._handlers.items():
                    send, recv = anyio.create_memory_object_stream[UpdateWithCx[Any]](
                        max_buffer_size=self._queue_size
                    )
                    senders[kind] = send
                    tg.start_soon(self._run_sink, kind, handler, recv)
                closing = aclosing(kinds) if hasattr(kinds, "aclose") else nullcontext()
                async with closing:
                    async for item in kinds:
                        await self._forward(senders, item)
            finally:
                for send in senders.values():
                    send.close()

    async def _forward(
        self,
        senders: dict[str, MemoryObjectSendStream[UpdateWithCx[Any]]],
        item: UpdateKind,
    ) -> None:
        send = senders.get(item.kind)
        if send is None:
            logger.info(
                "dispatch.unhandled_kind", kind=item.kind, update_id=item.update_id
            )
            return
        cx = UpdateWithCx(bot=self._bot, update=item.payload, update_id=item.update_id)
        try:
            if math.isinf(self._queue_size):
                send.send_nowait(cx)
            else:
                await send.send(cx)
        except anyio.BrokenResourceError:
            logger.warning(
                "dispatch.sink_closed", kind=item.kind, update_id=item.update_id
            )

    async def _run_sink(
        self, kind: str, handler: SinkHandler, recv: SinkRx
    ) -> None:
        async with recv:
            try:
                await handler(recv)
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "dispatch.sink_failed",
                    kind=kind,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
