"""Per-call lifecycle shared by the dispatch façades.

Every dispatched call walks a small state machine::

    PENDING -> RATE_LIMIT_WAIT -> IN_FLIGHT -> COMPLETED
                                           -> FAILED

FAILED is reachable from any non-terminal state, so a request that fails
validation or provider selection goes straight from PENDING to FAILED.
Each transition is reported to an optional observer callback.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tamma.core.errors import ProviderError, TammaError, UpstreamError

if TYPE_CHECKING:
    from collections.abc import Callable

    CallObserver = Callable[["CallEvent"], object]

logger = logging.getLogger(__name__)


class CallState(enum.Enum):
    """States of one dispatched call."""

    PENDING = "pending"
    RATE_LIMIT_WAIT = "rate_limit_wait"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.PENDING: frozenset({CallState.RATE_LIMIT_WAIT}),
    CallState.RATE_LIMIT_WAIT: frozenset({CallState.IN_FLIGHT}),
    CallState.IN_FLIGHT: frozenset({CallState.COMPLETED}),
    CallState.COMPLETED: frozenset(),
    CallState.FAILED: frozenset(),
}

_TERMINAL_STATES = frozenset({CallState.COMPLETED, CallState.FAILED})


class CallStateError(TammaError):
    """Invalid call state transition."""


@dataclass(frozen=True, slots=True)
class CallEvent:
    """One state transition, as seen by an observer."""

    call_id: str
    target: str
    operation: str
    previous: CallState | None
    state: CallState
    error: ProviderError | None = None


class CallTracker:
    """Tracks and reports the state of a single call.

    Args:
        target: Provider or platform name; ``"auto"`` until resolved.
        operation: Façade operation name, e.g. ``send_sync``.
        observer: Called with a ``CallEvent`` on every transition.
    """

    def __init__(
        self,
        target: str,
        operation: str,
        observer: CallObserver | None = None,
    ) -> None:
        self.call_id = uuid.uuid4().hex[:12]
        self.target = target
        self.operation = operation
        self._observer = observer
        self._state = CallState.PENDING
        self.error: ProviderError | None = None
        self._notify(None)

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in _TERMINAL_STATES

    def can_transition(self, to_state: CallState) -> bool:
        if to_state is CallState.FAILED:
            return not self.is_terminal
        return to_state in _VALID_TRANSITIONS[self._state]

    def transition(self, to_state: CallState) -> None:
        """Move to ``to_state``.

        Raises:
            CallStateError: If the transition is not allowed.
        """
        if not self.can_transition(to_state):
            msg = (
                f"Invalid call transition {self._state.value} -> "
                f"{to_state.value} ({self.operation} on {self.target})"
            )
            raise CallStateError(msg)
        previous, self._state = self._state, to_state
        self._notify(previous)

    def fail(self, error: ProviderError | None) -> None:
        """Mark the call FAILED. No-op once the call is terminal."""
        if self.is_terminal:
            return
        self.error = error
        self.transition(CallState.FAILED)

    def _notify(self, previous: CallState | None) -> None:
        logger.debug(
            "Call %s %s on %s: %s",
            self.call_id,
            self.operation,
            self.target,
            self._state.value,
        )
        if self._observer is None:
            return
        event = CallEvent(
            call_id=self.call_id,
            target=self.target,
            operation=self.operation,
            previous=previous,
            state=self._state,
            error=self.error,
        )
        try:
            self._observer(event)
        except Exception:
            logger.exception("Call observer failed on %s", self.call_id)


def as_provider_error(error: Exception, target: str) -> ProviderError:
    """Return ``error`` if it is a taxonomy error, else wrap it as upstream."""
    if isinstance(error, ProviderError):
        return error
    return UpstreamError(target, f"{type(error).__name__}: {error}")
