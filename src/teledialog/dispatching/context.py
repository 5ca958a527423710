from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from ..telegram.api_schemas import CallbackQuery, Message
from ..telegram.client import BotClient

__all__ = ["UpdateWithCx", "chat_id_of"]

P = TypeVar("P", Message, CallbackQuery)


def chat_id_of(payload: Message | CallbackQuery) -> int | None:
    if isinstance(payload, Message):
        return payload.chat.id
    if payload.message is not None:
        return payload.message.chat.id
    return None


@dataclass(frozen=True, slots=True)
class UpdateWithCx(Generic[P]):
    """An update payload together with the bot that received it."""

    bot: BotClient
    update: P
    update_id: int | None = None

    @property
    def chat_id(self) -> int | None:
        return chat_id_of(self.update)

    def _require_message(self) -> Message:
        if not isinstance(self.update, Message):
            raise TypeError("this update is not a message")
        return self.update

    async def answer(self, text: str, **kwargs) -> Message | None:
        chat_id = self.chat_id
        if chat_id is None:
            raise TypeError("this update has no chat to answer in")
        return await self.bot.send_message(chat_id, text, **kwargs)

    async def reply_to(self, text: str, **kwargs) -> Message | None:
        msg = self._require_message()
        return await self.bot.send_message(
            msg.chat.id, text, reply_to_message_id=msg.message_id, **kwargs
        )

    async def delete_message(self) -> bool:
        msg = self._require_message()
        return await self.bot.delete_message(msg.chat.id, msg.message_id)

    async def answer_callback_query(
        self, text: str | None = None, *, show_alert: bool = False
    ) -> bool:
        if not isinstance(self.update, CallbackQuery):
            raise TypeError("this update is not a callback query")
        return await self.bot.answer_callback_query(
            self.update.id, text=text, show_alert=show_alert
        )
