import random

import anyio
import pytest
from structlog.testing import capture_logs

from teledialog.dispatching.context import UpdateWithCx
from teledialog.dispatching.dialogue import (
    DialogueDispatcher,
    DialogueWithCx,
    InMemStorage,
    exit_dialogue,
    next_state,
)
from teledialog.dispatching.dispatcher import Dispatcher
from teledialog.dispatching.error_handlers import FuncErrorHandler
from teledialog.errors import TransitionFailure, TransportError
from tests.telegram_fakes import (
    FakeBot,
    iter_items,
    make_callback_update,
    make_message,
    make_update,
)


def _cx(bot: FakeBot, text: str | None, *, chat_id: int = 1, update_id: int = 1):
    return UpdateWithCx(
        bot=bot,
        update=make_message(text, chat_id=chat_id, message_id=update_id),
        update_id=update_id,
    )


async def _feed(dialogues: DialogueDispatcher, cxs: list[UpdateWithCx]) -> None:
    send, recv = anyio.create_memory_object_stream(max_buffer_size=len(cxs) + 1)
    async with send:
        for cx in cxs:
            send.send_nowait(cx)
    with anyio.fail_after(10):
        await dialogues(recv)


async def _append_text(dialogue: DialogueWithCx):
    text = dialogue.cx.update.text
    if text == "stop":
        return exit_dialogue()
    if text == "boom":
        raise TransportError("reply failed")
    return next_state((*dialogue.dialogue, text))


@pytest.mark.anyio
async def test_state_is_created_replaced_and_kept_per_key(fake_bot: FakeBot) -> None:
    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(_append_text, initial_state=tuple, storage=storage)

    await _feed(
        dialogues,
        [
            _cx(fake_bot, "a", chat_id=1),
            _cx(fake_bot, "x", chat_id=2),
            _cx(fake_bot, "b", chat_id=1),
        ],
    )

    assert await storage.get(1) == ("a", "b")
    assert await storage.get(2) == ("x",)
    assert await storage.get(3) is None


@pytest.mark.anyio
async def test_exit_removes_slot_and_restarts_from_initial(fake_bot: FakeBot) -> None:
    seen_states: list[tuple] = []

    async def handler(dialogue: DialogueWithCx):
        seen_states.append(dialogue.dialogue)
        return await _append_text(dialogue)

    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(handler, initial_state=tuple, storage=storage)

    await _feed(dialogues, [_cx(fake_bot, "a"), _cx(fake_bot, "stop")])
    assert await storage.get(1) is None
    assert len(storage) == 0

    await _feed(dialogues, [_cx(fake_bot, "b")])

    assert seen_states == [(), ("a",), ()]
    assert await storage.get(1) == ("b",)


@pytest.mark.anyio
async def test_transition_failure_leaves_state_unchanged(fake_bot: FakeBot) -> None:
    failures: list[TransitionFailure] = []
    seen_states: list[tuple] = []

    async def on_error(failure: TransitionFailure) -> None:
        failures.append(failure)

    async def handler(dialogue: DialogueWithCx):
        seen_states.append(dialogue.dialogue)
        return await _append_text(dialogue)

    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(
        handler,
        initial_state=tuple,
        storage=storage,
        error_handler=FuncErrorHandler(on_error),
    )

    await _feed(
        dialogues, [_cx(fake_bot, "a"), _cx(fake_bot, "boom"), _cx(fake_bot, "c")]
    )

    assert seen_states == [(), ("a",), ("a",)]
    assert await storage.get(1) == ("a", "c")
    assert len(failures) == 1
    assert failures[0].key == 1
    assert failures[0].state == ("a",)
    assert isinstance(failures[0].error, TransportError)


@pytest.mark.anyio
async def test_transition_failure_is_logged_by_default(fake_bot: FakeBot) -> None:
    dialogues = DialogueDispatcher(_append_text, initial_state=tuple)

    with capture_logs() as logs:
        await _feed(dialogues, [_cx(fake_bot, "boom")])

    failed = [log for log in logs if log["event"] == "dialogue.transition_failed"]
    assert len(failed) == 1
    assert failed[0]["key"] == 1
    assert failed[0]["error_type"] == "TransportError"
    assert await dialogues.storage.get(1) is None


@pytest.mark.anyio
async def test_handler_returning_wrong_type_is_a_failure(fake_bot: FakeBot) -> None:
    failures: list[TransitionFailure] = []

    async def on_error(failure: TransitionFailure) -> None:
        failures.append(failure)

    async def handler(dialogue: DialogueWithCx):
        return dialogue.dialogue

    dialogues = DialogueDispatcher(
        handler, initial_state=tuple, error_handler=FuncErrorHandler(on_error)
    )
    await _feed(dialogues, [_cx(fake_bot, "a")])

    assert len(failures) == 1
    assert isinstance(failures[0].error, TypeError)
    assert await dialogues.storage.get(1) is None


@pytest.mark.anyio
async def test_update_without_conversation_is_dropped(fake_bot: FakeBot) -> None:
    calls: list[object] = []

    async def handler(dialogue: DialogueWithCx):
        calls.append(dialogue)
        return next_state(dialogue.dialogue)

    dialogues = DialogueDispatcher(handler, initial_state=tuple)
    orphan = make_callback_update(5, chat_id=None).callback_query
    cx = UpdateWithCx(bot=fake_bot, update=orphan, update_id=5)

    with capture_logs() as logs:
        await _feed(dialogues, [cx])

    assert calls == []
    unroutable = [log for log in logs if log["event"] == "dialogue.unroutable"]
    assert [log["update_id"] for log in unroutable] == [5]


@pytest.mark.anyio
async def test_custom_key_function(fake_bot: FakeBot) -> None:
    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(
        _append_text,
        initial_state=tuple,
        storage=storage,
        get_key=lambda cx: ("chat", cx.update.chat.id),
    )

    await _feed(dialogues, [_cx(fake_bot, "a", chat_id=7)])

    assert await storage.get(("chat", 7)) == ("a",)


@pytest.mark.anyio
async def test_same_key_transitions_never_overlap(fake_bot: FakeBot) -> None:
    keys = range(1, 6)
    per_key = 20
    rng = random.Random(1234)
    delays = {
        (key, n): rng.choice([0, 0.001, 0.002, 0.005])
        for key in keys
        for n in range(per_key)
    }
    in_flight: set[int] = set()
    max_parallel = 0
    overlaps = 0
    out_of_order = 0
    processed: dict[int, list[str]] = {key: [] for key in keys}

    async def handler(dialogue: DialogueWithCx):
        nonlocal max_parallel, overlaps, out_of_order
        key = dialogue.cx.update.chat.id
        if key in in_flight:
            overlaps += 1
        in_flight.add(key)
        max_parallel = max(max_parallel, len(in_flight))
        count = dialogue.dialogue
        text = dialogue.cx.update.text
        if int(text) != count:
            out_of_order += 1
        await anyio.sleep(delays[(key, count)])
        processed[key].append(text)
        in_flight.discard(key)
        return next_state(count + 1)

    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(handler, initial_state=int, storage=storage)
    cxs = [
        _cx(fake_bot, str(n), chat_id=key, update_id=n * 10 + key)
        for n in range(per_key)
        for key in keys
    ]

    await _feed(dialogues, cxs)

    assert overlaps == 0
    assert out_of_order == 0
    for key in keys:
        assert await storage.get(key) == per_key
        assert processed[key] == [str(n) for n in range(per_key)]
    assert max_parallel > 1


@pytest.mark.anyio
async def test_same_key_stays_serialized_when_enqueues_interleave(
    fake_bot: FakeBot,
) -> None:
    rng = random.Random(99)
    overlaps = 0
    lost = 0
    per_trial = 30

    for _ in range(50):
        in_flight = 0

        async def handler(dialogue: DialogueWithCx):
            nonlocal in_flight, overlaps
            if in_flight:
                overlaps += 1
            in_flight += 1
            await anyio.sleep(0)
            in_flight -= 1
            return next_state(dialogue.dialogue + 1)

        storage: InMemStorage = InMemStorage()
        dialogues = DialogueDispatcher(handler, initial_state=int, storage=storage)
        with anyio.fail_after(10):
            async with anyio.create_task_group() as tg:
                for n in range(per_trial):
                    await dialogues.enqueue(tg, _cx(fake_bot, str(n), update_id=n))
                    for _ in range(rng.randint(0, 4)):
                        await anyio.sleep(0)
        if await storage.get(1) != per_trial:
            lost += 1

    assert overlaps == 0
    assert lost == 0


@pytest.mark.anyio
async def test_cancelled_worker_releases_its_key(fake_bot: FakeBot) -> None:
    started = anyio.Event()
    seen: list[str] = []

    async def handler(dialogue: DialogueWithCx):
        seen.append(dialogue.cx.update.text)
        if dialogue.cx.update.text == "hang":
            started.set()
            await anyio.sleep_forever()
        return next_state(dialogue.dialogue + 1)

    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(handler, initial_state=int, storage=storage)
    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            await dialogues.enqueue(tg, _cx(fake_bot, "hang", update_id=1))
            await started.wait()
            tg.cancel_scope.cancel()

        async with anyio.create_task_group() as tg:
            await dialogues.enqueue(tg, _cx(fake_bot, "next", update_id=2))

    assert seen == ["hang", "next"]
    assert await storage.get(1) == 1


@pytest.mark.anyio
async def test_runs_as_dispatcher_sink(fake_bot: FakeBot) -> None:
    async def handler(dialogue: DialogueWithCx):
        await dialogue.cx.answer(f"got {dialogue.cx.update.text}")
        return await _append_text(dialogue)

    storage: InMemStorage = InMemStorage()
    dialogues = DialogueDispatcher(handler, initial_state=tuple, storage=storage)
    dispatcher = Dispatcher(fake_bot).messages_handler(dialogues)

    with anyio.fail_after(5):
        await dispatcher.dispatch_with_listener(
            iter_items(
                [
                    make_update(1, "a", chat_id=10),
                    make_update(2, "b", chat_id=20),
                    make_update(3, "c", chat_id=10),
                ]
            )
        )

    assert await storage.get(10) == ("a", "c")
    assert await storage.get(20) == ("b",)
    assert sorted(call["text"] for call in fake_bot.send_calls) == [
        "got a",
        "got b",
        "got c",
    ]
