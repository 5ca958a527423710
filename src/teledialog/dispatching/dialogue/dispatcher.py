from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import anyio
from anyio.abc import TaskGroup

from ...errors import TransitionFailure, UnroutableEvent
from ...logging import get_logger
from ..context import UpdateWithCx, chat_id_of
from ..dispatcher import SinkRx
from ..error_handlers import ErrorHandler
from .storage import InMemStorage, Storage
from .transition import Exit, Next

logger = get_logger(__name__)

__all__ = ["DialogueDispatcher", "DialogueWithCx", "LoggingTransitionErrorHandler"]

S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class DialogueWithCx(Generic[S]):
    cx: UpdateWithCx[Any]
    dialogue: S


DialogueHandler = Callable[[DialogueWithCx[Any]], Awaitable[Any]]


class LoggingTransitionErrorHandler:
    async def handle_error(self, error: TransitionFailure) -> None:
        logger.error(
            "dialogue.transition_failed",
            key=error.key,
            state=error.state,
            error=str(error.error),
            error_type=error.error.__class__.__name__,
            exc_info=error.error,
        )


def _chat_key(cx: UpdateWithCx[Any]) -> Hashable | None:
    return chat_id_of(cx.update)


class DialogueDispatcher(Generic[S]):
    """A sink that runs one state machine per conversation.

    Updates with the same key are handled strictly one after another by a
    single worker task, which reads the stored state, runs the handler and
    writes the outcome back before taking the next update. Different keys run
    concurrently. A handler that raises leaves the stored state untouched and
    the update is not retried.
    """

    def __init__(
        self,
        handler: DialogueHandler,
        *,
        initial_state: Callable[[], S],
        storage: Storage[Any, S] | None = None,
        get_key: Callable[[UpdateWithCx[Any]], Hashable | None] = _chat_key,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self._handler = handler
        self._initial_state = initial_state
        self._storage: Storage[Any, S] = (
            storage if storage is not None else InMemStorage()
        )
        self._get_key = get_key
        self._error_handler = error_handler or LoggingTransitionErrorHandler()
        self._lock = anyio.Lock()
        self._pending_by_key: dict[Hashable, deque[UpdateWithCx[Any]]] = {}
        self._active_keys: set[Hashable] = set()

    @property
    def storage(self) -> Storage[Any, S]:
        return self._storage

    async def __call__(self, rx: SinkRx) -> None:
        async with anyio.create_task_group() as tg:
            async for cx in rx:
                await self.enqueue(tg, cx)

    async def enqueue(self, task_group: TaskGroup, cx: UpdateWithCx[Any]) -> None:
        key = self._get_key(cx)
        if key is None:
            unroutable = UnroutableEvent(
                update_id=cx.update_id,
                reason="no conversation key",
                payload=cx.update,
            )
            logger.warning(
                "dialogue.unroutable",
                update_id=unroutable.update_id,
                reason=unroutable.reason,
            )
            return
        async with self._lock:
            queue = self._pending_by_key.get(key)
            if queue is None:
                queue = deque()
                self._pending_by_key[key] = queue
            queue.append(cx)
            if key in self._active_keys:
                return
            self._active_keys.add(key)
        task_group.start_soon(self._key_worker, key)

    async def _key_worker(self, key: Hashable) -> None:
        try:
            while True:
                async with self._lock:
                    queue = self._pending_by_key.get(key)
                    if not queue:
                        self._pending_by_key.pop(key, None)
                        self._active_keys.discard(key)
                        return
                    cx = queue.popleft()
                try:
                    await self._handle(key, cx)
                except Exception as exc:  # noqa: BLE001
                    logger.exception(
                        "dialogue.job_failed",
                        key=key,
                        update_id=cx.update_id,
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
        except BaseException:
            # the normal exit path releases the key under the lock
            self._active_keys.discard(key)
            raise

    async def _handle(self, key: Hashable, cx: UpdateWithCx[Any]) -> None:
        state = await self._storage.get(key)
        if state is None:
            state = self._initial_state()
        try:
            stage = await self._handler(DialogueWithCx(cx=cx, dialogue=state))
            if not isinstance(stage, (Next, Exit)):
                raise TypeError(
                    f"dialogue handler returned {type(stage).__name__}, "
                    "expected Next or Exit"
                )
        except Exception as exc:  # noqa: BLE001
            await self._error_handler.handle_error(
                TransitionFailure(key=key, state=state, error=exc)
            )
            return
        if isinstance(stage, Exit):
            await self._storage.remove(key)
            logger.debug("dialogue.exit", key=key, update_id=cx.update_id)
            return
        await self._storage.set(key, stage.state)
