import anyio
import pytest

from teledialog.dispatching.context import UpdateWithCx
from teledialog.dispatching.dialogue import (
    DialogueDispatcher,
    DialogueStage,
    Exit,
    InMemStorage,
    Next,
    State,
    TransitionIn,
    Transitions,
    exit_dialogue,
    next_state,
)
from tests.telegram_fakes import FakeBot, make_message


class AwaitingName(State):
    pass


class AwaitingAge(State):
    name: str


class Registered(State):
    name: str
    age: int


class Renamed(State):
    name: str
    nickname: str = ""


transitions = Transitions()


@transitions.register(AwaitingName)
async def awaiting_name(
    state: AwaitingName, cx: TransitionIn, ans: str
) -> DialogueStage:
    await cx.answer("How old are you?")
    return next_state(AwaitingAge.up(state, name=ans))


@transitions.register(AwaitingAge)
async def awaiting_age(
    state: AwaitingAge, cx: TransitionIn, ans: str
) -> DialogueStage:
    try:
        age = int(ans)
    except ValueError:
        await cx.answer("Send me a number.")
        return next_state(state)
    await cx.answer("Thanks!")
    return next_state(Registered.up(state, age=age))


@transitions.register(Registered)
async def registered(
    state: Registered, cx: TransitionIn, ans: str
) -> DialogueStage:
    _ = state
    _ = ans
    await cx.answer("Bye.")
    return exit_dialogue()


async def _send(
    dialogues: DialogueDispatcher, bot: FakeBot, text: str | None, update_id: int
) -> None:
    send, recv = anyio.create_memory_object_stream(max_buffer_size=1)
    message = make_message(text, chat_id=1, message_id=update_id)
    cx = UpdateWithCx(bot=bot, update=message, update_id=update_id)
    async with send:
        send.send_nowait(cx)
    with anyio.fail_after(5):
        await dialogues(recv)


def test_up_copies_shared_fields() -> None:
    age = AwaitingAge(name="Alice")
    done = Registered.up(age, age=30)

    assert done == Registered(name="Alice", age=30)


def test_up_allows_overriding_shared_fields() -> None:
    done = Registered.up(AwaitingAge(name="Alice"), name="Bob", age=1)
    assert done == Registered(name="Bob", age=1)


def test_up_drops_fields_the_successor_does_not_have() -> None:
    back = AwaitingAge.up(Registered(name="Alice", age=30))
    assert back == AwaitingAge(name="Alice")


def test_up_keeps_successor_defaults() -> None:
    assert Renamed.up(AwaitingAge(name="Alice")) == Renamed(name="Alice", nickname="")


def test_up_requires_new_fields() -> None:
    with pytest.raises(TypeError):
        Registered.up(AwaitingAge(name="Alice"))


def test_outcome_helpers() -> None:
    assert next_state(AwaitingName()) == Next(AwaitingName())
    assert isinstance(exit_dialogue(), Exit)


def test_lookup_by_active_state_type() -> None:
    assert transitions.lookup(AwaitingAge(name="x")) is awaiting_age
    assert AwaitingName in transitions
    with pytest.raises(LookupError):
        transitions.lookup(Renamed(name="x"))


def test_duplicate_registration_is_rejected() -> None:
    with pytest.raises(ValueError):
        transitions.register(AwaitingName)(awaiting_name)


def test_subclass_falls_back_to_base_transition() -> None:
    class LateAwaitingName(AwaitingName):
        pass

    assert transitions.lookup(LateAwaitingName()) is awaiting_name


@pytest.mark.anyio
async def test_name_then_age_scenario() -> None:
    bot = FakeBot()
    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(
        transitions.text_handler(), initial_state=AwaitingName, storage=storage
    )

    await _send(dialogues, bot, "Alice", 1)
    assert await storage.get(1) == AwaitingAge(name="Alice")

    await _send(dialogues, bot, "not-a-number", 2)
    assert await storage.get(1) == AwaitingAge(name="Alice")

    await _send(dialogues, bot, "30", 3)
    assert await storage.get(1) == Registered(name="Alice", age=30)

    await _send(dialogues, bot, "done", 4)
    assert await storage.get(1) is None

    assert [call["text"] for call in bot.send_calls] == [
        "How old are you?",
        "Send me a number.",
        "Thanks!",
        "Bye.",
    ]


@pytest.mark.anyio
async def test_text_handler_keeps_state_for_non_text_updates() -> None:
    bot = FakeBot()
    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(
        transitions.text_handler(), initial_state=AwaitingName, storage=storage
    )

    await _send(dialogues, bot, "Alice", 1)
    await _send(dialogues, bot, None, 2)

    assert await storage.get(1) == AwaitingAge(name="Alice")
    assert bot.send_calls[-1]["text"] == "Send me a text message."


@pytest.mark.anyio
async def test_failed_reply_keeps_previous_state() -> None:
    bot = FakeBot()
    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(
        transitions.text_handler(), initial_state=AwaitingName, storage=storage
    )

    await _send(dialogues, bot, "Alice", 1)
    bot.send_error = RuntimeError("telegram is down")
    await _send(dialogues, bot, "30", 2)
    assert await storage.get(1) == AwaitingAge(name="Alice")

    bot.send_error = None
    await _send(dialogues, bot, "30", 3)
    assert await storage.get(1) == Registered(name="Alice", age=30)
