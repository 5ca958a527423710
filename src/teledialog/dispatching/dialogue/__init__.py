from __future__ import annotations

from .dispatcher import (
    DialogueDispatcher,
    DialogueWithCx,
    LoggingTransitionErrorHandler,
)
from .storage import InMemStorage, JsonFileStorage, Storage
from .transition import (
    DialogueStage,
    Exit,
    Next,
    State,
    TransitionIn,
    Transitions,
    exit_dialogue,
    next_state,
)

__all__ = [
    "DialogueDispatcher",
    "DialogueStage",
    "DialogueWithCx",
    "Exit",
    "InMemStorage",
    "JsonFileStorage",
    "LoggingTransitionErrorHandler",
    "Next",
    "State",
    "Storage",
    "TransitionIn",
    "Transitions",
    "exit_dialogue",
    "next_state",
]
