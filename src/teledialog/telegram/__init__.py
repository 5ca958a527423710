from __future__ import annotations

from .api_schemas import (
    CallbackQuery,
    Chat,
    Message,
    Update,
    UpdateKind,
    User,
    update_kind,
)
from .client import BotClient, HttpBotClient

__all__ = [
    "BotClient",
    "CallbackQuery",
    "Chat",
    "HttpBotClient",
    "Message",
    "Update",
    "UpdateKind",
    "User",
    "update_kind",
]
