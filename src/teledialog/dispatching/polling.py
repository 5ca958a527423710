"""Long-polling update listener.

The listener calls ``getUpdates`` in a loop with an offset one past the
highest ``update_id`` seen so far. Telegram redelivers every update below the
acknowledged offset, so the offset must advance past malformed entries too,
otherwise a single bad update would be returned forever.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import Any

import anyio
import msgspec

from ..config import PollingSettings
from ..errors import IntegrityFault, MalformedEntry, RetryAfter, TransportError
from ..logging import get_logger
from ..telegram.api_schemas import Update, convert_update
from ..telegram.client import BotClient

logger = get_logger(__name__)

__all__ = [
    "UpdateListener",
    "UpdateResult",
    "default_polling",
    "entry_update_id",
    "parse_batch",
    "polling",
    "polling_from_settings",
]

UpdateResult = Update | TransportError
UpdateListener = AsyncIterator[UpdateResult]

DEFAULT_TIMEOUT_S = 10


def entry_update_id(entry: Any) -> int:
    if isinstance(entry, dict):
        value = entry.get("update_id")
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    raise IntegrityFault(f"batch entry has no integer update_id: {entry!r}")


def parse_batch(
    entries: list[Any], offset: int
) -> tuple[list[Update], list[MalformedEntry], int]:
    """Split a raw batch into updates and malformed entries.

    Returns the next offset: one past the highest id in the batch, never
    lower than ``offset``. Raises ``IntegrityFault`` before anything is
    returned if any entry lacks an id.
    """
    ids = [entry_update_id(entry) for entry in entries]
    updates: list[Update] = []
    malformed: list[MalformedEntry] = []
    for update_id, entry in zip(ids, entries):
        try:
            updates.append(convert_update(entry))
        except msgspec.ValidationError as exc:
            malformed.append(
                MalformedEntry(update_id=update_id, raw=entry, reason=str(exc))
            )
    if ids:
        offset = max(offset, max(ids) + 1)
    return updates, malformed, offset


def polling(
    bot: BotClient,
    *,
    timeout_s: int | None = DEFAULT_TIMEOUT_S,
    limit: int | None = None,
    allowed_updates: Iterable[str] | None = None,
    error_delay_s: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> UpdateListener:
    """Return a fresh long-polling listener starting at offset 0.

    Transport failures are yielded as ``TransportError`` items and the next
    cycle reuses the same offset. The listener never ends on its own.
    """
    if limit is not None and not 1 <= limit <= 100:
        raise ValueError("limit must be between 1 and 100")
    if timeout_s is not None and timeout_s < 0:
        raise ValueError("timeout_s must be >= 0")
    allowed = list(allowed_updates) if allowed_updates is not None else None
    return _poll(
        bot,
        timeout_s=timeout_s or 0,
        limit=limit,
        allowed_updates=allowed,
        error_delay_s=error_delay_s,
        sleep=sleep,
    )


def default_polling(bot: BotClient) -> UpdateListener:
    return polling(bot, timeout_s=DEFAULT_TIMEOUT_S)


def polling_from_settings(
    bot: BotClient,
    settings: PollingSettings,
    *,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> UpdateListener:
    return polling(
        bot,
        timeout_s=settings.timeout_s,
        limit=settings.limit,
        allowed_updates=settings.allowed_updates,
        error_delay_s=settings.error_delay_s,
        sleep=sleep,
    )


async def _poll(
    bot: BotClient,
    *,
    timeout_s: int,
    limit: int | None,
    allowed_updates: list[str] | None,
    error_delay_s: float,
    sleep: Callable[[float], Awaitable[None]],
) -> AsyncIterator[UpdateResult]:
    offset = 0
    while True:
        logger.debug(
            "polling.request", offset=offset, limit=limit, timeout_s=timeout_s
        )
        try:
            entries = await bot.get_updates(
                offset=offset,
                timeout_s=timeout_s,
                limit=limit,
                allowed_updates=allowed_updates,
            )
        except RetryAfter as exc:
            logger.warning(
                "polling.retry_after", offset=offset, retry_after=exc.retry_after
            )
            yield exc
            await sleep(exc.retry_after)
            continue
        except TransportError as exc:
            logger.warning(
                "polling.transport_error",
                offset=offset,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            yield exc
            if error_delay_s > 0:
                await sleep(error_delay_s)
            continue

        if not entries:
            continue

        updates, malformed, offset = parse_batch(entries, offset)
        logger.debug(
            "polling.batch",
            count=len(entries),
            malformed=len(malformed),
            offset=offset,
        )
        for entry in malformed:
            logger.warning(
                "polling.malformed_entry",
                update_id=entry.update_id,
                reason=entry.reason,
                raw=entry.raw,
            )
        for update in updates:
            yield update
