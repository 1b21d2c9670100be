"""
Core business logic module.

Contains the job state machine, queue abstraction, generation and tool
clients, the run lifecycle driver, and the exception hierarchy.
"""

from testgen.core.exceptions import (
    ExternalServiceRejection,
    InvalidStateTransitionError,
    MalformedResponseError,
    MessageNotInFlightError,
    PermanentLogicError,
    QueueNotConnectedError,
    RunNotFoundError,
    TestGenException,
    TransientInfrastructureError,
)
from testgen.core.state_machine import JobState, StateMachine, TransitionResult

__all__ = [
    # Exceptions
    "TestGenException",
    "TransientInfrastructureError",
    "MalformedResponseError",
    "PermanentLogicError",
    "InvalidStateTransitionError",
    "RunNotFoundError",
    "ExternalServiceRejection",
    "QueueNotConnectedError",
    "MessageNotInFlightError",
    # State machine
    "JobState",
    "StateMachine",
    "TransitionResult",
]
