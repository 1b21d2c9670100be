"""
Test suite for correlation IDs and structured log helpers.

System role: Verification of logging infrastructure
"""

import logging

from testgen.core.exceptions import PermanentLogicError
from testgen.core.queue import QueueMessage
from testgen.observability import clear_correlation_id, get_correlation_id, set_correlation_id
from testgen.observability.correlation import CorrelationIdFilter
from testgen.observability.log_utils import log_with_context, safe_log_value


def _record() -> logging.LogRecord:
    return logging.LogRecord("testgen", logging.INFO, __file__, 1, "msg", None, None)


class TestCorrelation:
    """Test suite for correlation ID context."""

    def test_set_should_generate_id_when_missing(self) -> None:
        # Act
        value = set_correlation_id()

        # Assert
        assert value
        assert get_correlation_id() == value
        clear_correlation_id()

    def test_filter_should_stamp_current_id(self) -> None:
        """Test records carry the job or run id, '-' outside any context."""
        # Arrange
        log_filter = CorrelationIdFilter()
        set_correlation_id("job-42")

        # Act
        inside = _record()
        log_filter.filter(inside)
        clear_correlation_id()
        outside = _record()
        log_filter.filter(outside)

        # Assert
        assert inside.correlation_id == "job-42"
        assert outside.correlation_id == "-"


class TestLogUtils:
    """Test suite for structured logging helpers."""

    def test_safe_log_value_should_truncate(self) -> None:
        assert safe_log_value("x" * 1000, max_length=10) == "x" * 10 + "... (truncated, 1000 total)"
        assert safe_log_value([1, 2, 3]) == "list(3 items)"

    def test_safe_log_value_should_summarize_domain_objects(self) -> None:
        """Test exceptions render with their type and messages by id."""
        # Arrange
        message = QueueMessage(payload={"project_id": "p-1"})

        # Act & Assert
        assert safe_log_value(PermanentLogicError("bad payload")) == "PermanentLogicError: bad payload"
        assert safe_log_value(message) == f"QueueMessage({message.id})"
        assert safe_log_value(b"raw \xff") == "raw �"

    def test_log_with_context_should_rename_reserved_keys(self, caplog) -> None:
        # Arrange
        logger = logging.getLogger("testgen.tests")

        # Act
        with caplog.at_level(logging.INFO, logger="testgen.tests"):
            log_with_context(logger, logging.INFO, "hello", msg="clash", job_id="j-1")

        # Assert
        record = caplog.records[-1]
        assert record.job_id == "j-1"
        assert record.ctx_msg == "clash"
        assert record.getMessage() == "hello"
