"""Dispatch façades: the consumer-facing entry points."""

from tamma.dispatch.ai import AIDispatcher, ResponseStream, required_flags
from tamma.dispatch.calls import (
    CallEvent,
    CallState,
    CallStateError,
    CallTracker,
)
from tamma.dispatch.git import GitDispatcher

__all__ = [
    "AIDispatcher",
    "CallEvent",
    "CallState",
    "CallStateError",
    "CallTracker",
    "GitDispatcher",
    "ResponseStream",
    "required_flags",
]
