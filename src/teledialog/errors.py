"""Error taxonomy shared by the polling, dispatching and dialogue layers.

Only ``TransportError`` (and ``RetryAfter``) and ``IntegrityFault`` are raised.
The remaining kinds are plain values handed to error handlers, because the
condition they describe is reported and dropped rather than propagated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

__all__ = [
    "IntegrityFault",
    "MalformedEntry",
    "RetryAfter",
    "TeledialogError",
    "TransitionFailure",
    "TransportError",
    "UnroutableEvent",
]


class TeledialogError(RuntimeError):
    pass


class TransportError(TeledialogError):
    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class RetryAfter(TransportError):
    def __init__(self, retry_after: float, *, method: str | None = None) -> None:
        super().__init__(f"retry after {retry_after}s", method=method)
        self.retry_after = float(retry_after)


class IntegrityFault(TeledialogError):
    """A batch entry whose ``update_id`` cannot be recovered.

    The cursor can no longer be advanced safely, so the listener stops.
    """


@dataclass(frozen=True, slots=True)
class MalformedEntry:
    update_id: int
    raw: dict[str, Any]
    reason: str


@dataclass(frozen=True, slots=True)
class UnroutableEvent:
    update_id: int | None
    reason: str
    payload: Any = None


@dataclass(frozen=True, slots=True)
class TransitionFailure:
    key: Any
    state: Any
    error: Exception

    def __str__(self) -> str:
        return f"transition failed for {self.key!r}: {self.error!r}"
