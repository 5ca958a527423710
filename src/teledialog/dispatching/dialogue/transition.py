"""Typed plumbing for dialogue state machines.

A dialogue is a closed set of ``State`` subclasses. Each state has one
transition function, registered in a ``Transitions`` table, that receives the
state, the update context and the parsed input and returns ``Next`` with the
successor state or ``Exit`` to end the dialogue::

    class ReceiveFullName(State):
        pass

    class ReceiveAge(State):
        full_name: str

    transitions = Transitions()

    @transitions.register(ReceiveFullName)
    async def receive_full_name(state, cx, ans: str) -> DialogueStage:
        await cx.answer("How old are you?")
        return next_state(ReceiveAge.up(state, full_name=ans))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import msgspec

from ..context import UpdateWithCx

__all__ = [
    "DialogueStage",
    "Exit",
    "Next",
    "State",
    "TransitionFn",
    "TransitionIn",
    "Transitions",
    "exit_dialogue",
    "next_state",
]

S = TypeVar("S")
StateT = TypeVar("StateT", bound="State")


class State(msgspec.Struct, frozen=True, tag=True):
    """Base class for dialogue states.

    Subclasses are tagged with their class name, so a union of them can be
    encoded and decoded by the JSON storage.
    """

    @classmethod
    def up(cls: type[StateT], prev: State, **fields: Any) -> StateT:
        """Build ``cls`` from ``prev``, copying every field both states share.

        Only the fields the successor adds (or overrides) are passed in.
        """
        inherited = {
            name: getattr(prev, name)
            for name in prev.__struct_fields__
            if name in cls.__struct_fields__ and name not in fields
        }
        return cls(**inherited, **fields)


@dataclass(frozen=True, slots=True)
class Next(Generic[S]):
    state: S


@dataclass(frozen=True, slots=True)
class Exit:
    pass


DialogueStage = Next[Any] | Exit

TransitionIn = UpdateWithCx[Any]
TransitionFn = Callable[[Any, TransitionIn, Any], Awaitable[DialogueStage]]


def next_state(state: S) -> Next[S]:
    return Next(state)


def exit_dialogue() -> Exit:
    return Exit()


class Transitions:
    def __init__(self) -> None:
        self._table: dict[type, TransitionFn] = {}

    def register(self, state_type: type) -> Callable[[TransitionFn], TransitionFn]:
        def decorator(fn: TransitionFn) -> TransitionFn:
            if state_type in self._table:
                raise ValueError(
                    f"a transition for {state_type.__name__} is already registered"
                )
            self._table[state_type] = fn
            return fn

        return decorator

    def __contains__(self, state_type: object) -> bool:
        return state_type in self._table

    def lookup(self, state: object) -> TransitionFn:
        for cls in type(state).__mro__:
            fn = self._table.get(cls)
            if fn is not None:
                return fn
        raise LookupError(f"no transition registered for {type(state).__name__}")

    async def react(self, state: Any, cx: TransitionIn, ans: Any) -> DialogueStage:
        return await self.lookup(state)(state, cx, ans)

    def text_handler(
        self, *, non_text_reply: str | None = "Send me a text message."
    ) -> Callable[[Any], Awaitable[DialogueStage]]:
        """Dialogue handler feeding message text into the active transition.

        Updates without text keep the current state.
        """

        async def handle(dialogue: Any) -> DialogueStage:
            cx = dialogue.cx
            text = getattr(cx.update, "text", None)
            if text is None:
                if non_text_reply is not None:
                    await cx.answer(non_text_reply)
                return Next(dialogue.dialogue)
            return await self.react(dialogue.dialogue, cx, text)

        return handle
