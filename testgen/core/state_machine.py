"""
Job state machine for the orchestrator worker.

Per-job finite automaton with a fixed transition table, ordered history,
accumulated context, retry bookkeeping and ad hoc metrics. One instance is
built per queue delivery and discarded once the job leaves the worker; it
is never persisted.

transition_to() never raises: it returns a TransitionResult and notifies
error observers when the requested edge is not declared. set_error() is
the only way to enter ERROR outside the table.

Dependencies: dataclasses, enum, logging
System role: Lifecycle governance for queued jobs
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    """States of a queued job inside the worker."""

    QUEUED = "QUEUED"
    PLANNING = "PLANNING"
    TOOLING = "TOOLING"
    OBSERVING = "OBSERVING"
    ADJUSTING = "ADJUSTING"
    WAITING_REVIEW = "WAITING_REVIEW"
    ERROR = "ERROR"
    DONE = "DONE"


TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.PLANNING}),
    JobState.PLANNING: frozenset({JobState.TOOLING, JobState.ERROR}),
    JobState.TOOLING: frozenset({JobState.OBSERVING, JobState.ERROR}),
    JobState.OBSERVING: frozenset(
        {JobState.ADJUSTING, JobState.DONE, JobState.ERROR, JobState.WAITING_REVIEW}
    ),
    JobState.ADJUSTING: frozenset({JobState.PLANNING, JobState.TOOLING, JobState.ERROR}),
    JobState.ERROR: frozenset({JobState.ADJUSTING, JobState.WAITING_REVIEW}),
    JobState.WAITING_REVIEW: frozenset({JobState.PLANNING, JobState.DONE, JobState.ERROR}),
    JobState.DONE: frozenset(),
}

TransitionObserver = Callable[[JobState, JobState, dict[str, Any]], None]
ErrorObserver = Callable[[Exception, JobState, JobState], None]


@dataclass(frozen=True)
class TransitionRecord:
    """One entry of the transition history."""

    from_state: JobState
    to_state: JobState
    timestamp: datetime
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition request."""

    success: bool
    state: JobState

    def __bool__(self) -> bool:
        return self.success


class StateMachine:
    """Finite automaton governing one job's lifecycle."""

    def __init__(
        self,
        max_retries: int = 3,
        context: dict[str, Any] | None = None,
        retry_count: int = 0,
        transitions: dict[JobState, frozenset[JobState]] | None = None,
    ) -> None:
        """
        Initialize state machine in QUEUED.

        Args:
            max_retries: Upper bound for the retry counter
            context: Initial context entries
            retry_count: Starting retry count (seeded from broker redelivery count)
            transitions: Transition table override, mainly for validate() tests
        """
        self.transitions = transitions if transitions is not None else TRANSITIONS
        self.max_retries = max_retries
        self._initial_retry_count = min(retry_count, max_retries)
        self._observers: list[TransitionObserver] = []
        self._error_observers: list[ErrorObserver] = []
        self._init_state(context)

    def _init_state(self, context: dict[str, Any] | None = None) -> None:
        self.current_state = JobState.QUEUED
        self.previous_state: JobState | None = None
        self.history: list[TransitionRecord] = []
        self.context: dict[str, Any] = dict(context or {})
        self.error: Exception | None = None
        self.retry_count = self._initial_retry_count
        self.metrics: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, callback: TransitionObserver) -> None:
        """Register a callback invoked as callback(previous, current, context)."""
        self._observers.append(callback)

    def add_error_observer(self, callback: ErrorObserver) -> None:
        """Register a callback invoked as callback(error, current, target) on rejected transitions."""
        self._error_observers.append(callback)

    def _notify(self, observers: list[Callable[..., None]], *args: Any) -> None:
        for observer in observers:
            try:
                observer(*args)
            except Exception as e:
                logger.warning(
                    f"{__name__}:_notify - Observer {observer!r} raised "
                    f"{type(e).__name__}: {e}"
                )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def can_transition(self, from_state: JobState, to_state: JobState) -> bool:
        """Whether the table declares the edge from_state -> to_state."""
        return to_state in self.transitions.get(from_state, frozenset())

    def transition_to(
        self,
        target: JobState,
        context: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """
        Move to target if the edge is declared.

        On success the history grows by one record, the context fragment is
        merged (last write wins) and observers are notified. On failure the
        state is unchanged and error observers are notified.

        Args:
            target: Desired next state
            context: Context fragment to merge into the accumulated context

        Returns:
            TransitionResult: success flag and the state after the call
        """
        if not self.can_transition(self.current_state, target):
            error = ValueError(
                f"Invalid state transition from {self.current_state.value} to {target.value}"
            )
            logger.debug(f"{__name__}:transition_to - {error}")
            self._notify(self._error_observers, error, self.current_state, target)
            return TransitionResult(success=False, state=self.current_state)

        self._apply(target, context or {})
        return TransitionResult(success=True, state=self.current_state)

    def _apply(self, target: JobState, fragment: dict[str, Any]) -> None:
        self.history.append(
            TransitionRecord(
                from_state=self.current_state,
                to_state=target,
                timestamp=datetime.now(timezone.utc),
                context=dict(fragment),
            )
        )
        self.previous_state = self.current_state
        self.current_state = target
        self.context.update(fragment)
        self._notify(self._observers, self.previous_state, self.current_state, self.context)

    def update_context(self, updates: dict[str, Any]) -> None:
        """Merge updates into the accumulated context without transitioning."""
        self.context.update(updates)

    def set_error(self, error: Exception, context: dict[str, Any] | None = None) -> TransitionResult:
        """
        Record error and force the machine into ERROR.

        ERROR is reachable from every state through this method regardless
        of the table. When already in ERROR only the error is recorded.

        Args:
            error: Exception that caused the failure
            context: Extra context to merge

        Returns:
            TransitionResult: Always successful, state ERROR
        """
        self.error = error
        self.context.update(
            {"error": str(error), "error_type": type(error).__name__, **(context or {})}
        )
        if self.current_state != JobState.ERROR:
            self._apply(JobState.ERROR, {"error": str(error)})
        return TransitionResult(success=True, state=self.current_state)

    # ------------------------------------------------------------------
    # Retry bookkeeping
    # ------------------------------------------------------------------

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def increment_retry(self) -> int:
        """Increment the retry counter, saturating at max_retries."""
        if self.retry_count < self.max_retries:
            self.retry_count += 1
        return self.retry_count

    def reset_retry(self) -> None:
        self.retry_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return not self.transitions.get(self.current_state)

    @property
    def is_error(self) -> bool:
        return self.current_state == JobState.ERROR

    def add_metric(self, key: str, value: Any) -> None:
        self.metrics[key] = value

    def summary(self) -> dict[str, Any]:
        """
        Snapshot of the machine for logging and status endpoints.

        Returns:
            dict: JSON-friendly view of state, history, error and counters
        """
        return {
            "current_state": self.current_state.value,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "history": [
                {
                    "from": record.from_state.value,
                    "to": record.to_state.value,
                    "timestamp": record.timestamp.isoformat(),
                    "context": record.context,
                }
                for record in self.history
            ],
            "context": dict(self.context),
            "error": (
                {"type": type(self.error).__name__, "message": str(self.error)}
                if self.error
                else None
            ),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "metrics": dict(self.metrics),
            "is_terminal": self.is_terminal,
            "is_error": self.is_error,
            "can_retry": self.can_retry(),
        }

    def reset(self) -> None:
        """Return to QUEUED with empty history, context, error and metrics."""
        self._initial_retry_count = 0
        self._init_state()

    def validate(self) -> bool:
        """
        Check the transition table covers every state and targets only known states.

        Returns:
            bool: True when the table is well formed
        """
        states = set(JobState)
        if set(self.transitions) != states:
            return False
        return all(targets <= states for targets in self.transitions.values())
