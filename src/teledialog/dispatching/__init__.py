from __future__ import annotations

from .context import UpdateWithCx, chat_id_of
from .dispatcher import Dispatcher, SinkHandler, SinkRx, for_each
from .error_handlers import (
    ErrorHandler,
    FuncErrorHandler,
    IgnoringErrorHandler,
    IgnoringErrorHandlerSafe,
    LoggingErrorHandler,
)
from .pipeline import discard_errors, log_out_errors, simplify, trace
from .polling import (
    UpdateListener,
    UpdateResult,
    default_polling,
    polling,
    polling_from_settings,
)

__all__ = [
    "Dispatcher",
    "ErrorHandler",
    "FuncErrorHandler",
    "IgnoringErrorHandler",
    "IgnoringErrorHandlerSafe",
    "LoggingErrorHandler",
    "SinkHandler",
    "SinkRx",
    "UpdateListener",
    "UpdateResult",
    "UpdateWithCx",
    "chat_id_of",
    "default_polling",
    "discard_errors",
    "for_each",
    "log_out_errors",
    "polling",
    "polling_from_settings",
    "simplify",
    "trace",
]
