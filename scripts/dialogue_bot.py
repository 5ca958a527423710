"""Questionnaire bot: asks for a full name, an age and a location.

Usage: python scripts/dialogue_bot.py [path/to/teledialog.toml]
"""

from __future__ import annotations

import sys

import anyio

from teledialog.config import ConfigError, load_settings, require_bot_token
from teledialog.dispatching import Dispatcher, polling_from_settings
from teledialog.dispatching.dialogue import (
    DialogueDispatcher,
    DialogueStage,
    InMemStorage,
    JsonFileStorage,
    State,
    TransitionIn,
    Transitions,
    exit_dialogue,
    next_state,
)
from teledialog.logging import get_logger, setup_logging
from teledialog.telegram import HttpBotClient

logger = get_logger(__name__)


class Start(State):
    pass


class ReceiveFullName(State):
    pass


class ReceiveAge(State):
    full_name: str


class ReceiveLocation(State):
    full_name: str
    age: int


Dialogue = Start | ReceiveFullName | ReceiveAge | ReceiveLocation

transitions = Transitions()


@transitions.register(Start)
async def start(state: Start, cx: TransitionIn, ans: str) -> DialogueStage:
    _ = ans
    await cx.answer("Let's start! What's your full name?")
    return next_state(ReceiveFullName.up(state))


@transitions.register(ReceiveFullName)
async def receive_full_name(
    state: ReceiveFullName, cx: TransitionIn, ans: str
) -> DialogueStage:
    await cx.answer("How old are you?")
    return next_state(ReceiveAge.up(state, full_name=ans))


@transitions.register(ReceiveAge)
async def receive_age(state: ReceiveAge, cx: TransitionIn, ans: str) -> DialogueStage:
    try:
        age = int(ans)
    except ValueError:
        await cx.answer("Send me a number.")
        return next_state(state)
    await cx.answer("What's your location?")
    return next_state(ReceiveLocation.up(state, age=age))


@transitions.register(ReceiveLocation)
async def receive_location(
    state: ReceiveLocation, cx: TransitionIn, ans: str
) -> DialogueStage:
    await cx.answer(
        f"Full name: {state.full_name}\nAge: {state.age}\nLocation: {ans}"
    )
    return exit_dialogue()


async def run(config_path: str | None) -> None:
    settings, cfg_path = load_settings(config_path)
    setup_logging(debug=settings.debug)
    token = require_bot_token(settings, cfg_path)
    bot = HttpBotClient(token)
    if settings.storage.path is not None:
        storage = JsonFileStorage(settings.storage.path, state_type=Dialogue)
    else:
        storage = InMemStorage()
    dialogues = DialogueDispatcher(
        transitions.text_handler(),
        initial_state=Start,
        storage=storage,
    )
    dispatcher = Dispatcher.from_settings(bot, settings.dispatch).messages_handler(
        dialogues
    )
    logger.info("dialogue_bot.started", config=str(cfg_path))
    try:
        await dispatcher.dispatch_with_listener(
            polling_from_settings(bot, settings.polling)
        )
    finally:
        await bot.close()


def main() -> None:
    try:
        anyio.run(run, sys.argv[1] if len(sys.argv) > 1 else None)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from None


if __name__ == "__main__":
    main()
