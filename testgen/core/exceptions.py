"""
Exception hierarchy for the test generation pipeline.

Errors are classified by how callers react to them: transient failures are
retried by the worker loop, malformed responses are absorbed by the
generation client, permanent logic errors and external rejections fail the
job or run without retry. Queue misuse has its own small branch.

Dependencies: None (pure domain layer)
System role: Centralized exception handling across the application
"""

from typing import Any


class TestGenException(Exception):
    """Base exception for all test generation pipeline errors."""

    # Keep pytest from collecting this class and its subclasses
    __test__ = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Initialize base exception with message and optional context.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional context for debugging
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation including details."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class TransientInfrastructureError(TestGenException):
    """Raised for timeouts, connection failures, 5xx and throttling. Retryable."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize transient infrastructure error.

        Args:
            message: Error message
            service: External service that failed (llm, mcp, github, sqs, redis)
            details: Additional context
        """
        details = details or {}
        if service:
            details["service"] = service
        super().__init__(message, details)


class MalformedResponseError(TestGenException):
    """Raised when model output cannot be parsed or repaired into JSON."""

    def __init__(
        self,
        message: str,
        raw_excerpt: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if raw_excerpt:
            details["raw_excerpt"] = raw_excerpt[:200]
        super().__init__(message, details)


class PermanentLogicError(TestGenException):
    """Raised for errors that retrying cannot fix."""

    pass


class InvalidStateTransitionError(PermanentLogicError):
    """Raised when an operation requires a state the job or run is not in."""

    def __init__(
        self,
        current_state: str,
        target_state: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize invalid transition error.

        Args:
            current_state: State the entity is actually in
            target_state: State the caller tried to move to
            details: Additional context
        """
        details = details or {}
        details.update({"current_state": current_state, "target_state": target_state})
        super().__init__(
            f"Invalid state transition: {current_state} -> {target_state}",
            details,
        )


class RunNotFoundError(PermanentLogicError):
    """Raised when a run record cannot be found."""

    def __init__(self, run_id: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["run_id"] = run_id
        super().__init__(f"Run not found: {run_id}", details)


class ExternalServiceRejection(TestGenException):
    """Raised when an external service refuses a request (401/403/404/422)."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize external rejection.

        Args:
            message: Error message
            service: Service that rejected the request
            status_code: HTTP status returned by the service
            details: Additional context
        """
        details = details or {}
        if service:
            details["service"] = service
        if status_code is not None:
            details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message, details)


class QueueError(TestGenException):
    """Base exception for queue backend misuse."""

    pass


class QueueNotConnectedError(QueueError):
    """Raised when a queue operation is attempted before connect()."""

    def __init__(self, queue_name: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["queue"] = queue_name
        super().__init__(f"Queue not connected: {queue_name}", details)


class MessageNotInFlightError(QueueError):
    """Raised when ack/nack targets a message that is not currently in flight."""

    def __init__(self, message_id: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["message_id"] = message_id
        super().__init__(f"Message not in flight: {message_id}", details)
