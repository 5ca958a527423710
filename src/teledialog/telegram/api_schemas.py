"""Msgspec models for Telegram Bot API payloads (subset used by teledialog)."""

from __future__ import annotations

from typing import Any

import msgspec

__all__ = [
    "CallbackQuery",
    "Chat",
    "Message",
    "MessageReply",
    "Update",
    "UpdateKind",
    "User",
    "UPDATE_KINDS",
    "convert_update",
    "update_kind",
]

UPDATE_KINDS: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "callback_query",
)


class User(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    is_bot: bool | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    language_code: str | None = None


class Chat(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    type: str
    title: str | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class MessageReply(msgspec.Struct, forbid_unknown_fields=False):
    message_id: int
    text: str | None = None
    from_: User | None = msgspec.field(default=None, name="from")


class Message(msgspec.Struct, forbid_unknown_fields=False):
    message_id: int
    date: int
    chat: Chat
    message_thread_id: int | None = None
    from_: User | None = msgspec.field(default=None, name="from")
    text: str | None = None
    caption: str | None = None
    reply_to_message: MessageReply | None = None
    edit_date: int | None = None

    @property
    def chat_id(self) -> int:
        return self.chat.id


class CallbackQuery(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    from_: User = msgspec.field(name="from")
    chat_instance: str | None = None
    message: Message | None = None
    inline_message_id: str | None = None
    data: str | None = None
    game_short_name: str | None = None


class Update(msgspec.Struct, forbid_unknown_fields=False):
    update_id: int
    message: Message | None = None
    edited_message: Message | None = None
    channel_post: Message | None = None
    edited_channel_post: Message | None = None
    callback_query: CallbackQuery | None = None


class UpdateKind(msgspec.Struct, frozen=True):
    """An update stripped of its envelope: the kind tag and its payload."""

    kind: str
    payload: Message | CallbackQuery
    update_id: int


def update_kind(update: Update) -> UpdateKind | None:
    for kind in UPDATE_KINDS:
        payload = getattr(update, kind)
        if payload is not None:
            return UpdateKind(kind=kind, payload=payload, update_id=update.update_id)
    return None


def convert_update(raw: dict[str, Any]) -> Update:
    """Convert an already-parsed JSON mapping into an ``Update``.

    Raises ``msgspec.ValidationError`` when the mapping does not fit the schema.
    """
    return msgspec.convert(raw, Update)
