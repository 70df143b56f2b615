"""Tests for the structured logging system (hr_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from hr_kernel.domain.workflow import ActorRole
from hr_kernel.exceptions import IllegalTransitionError, PayloadValidationError
from hr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _json_handlers(logger):
    """Handlers installed by configure_logging; the test runner may add its own."""
    return [h for h in logger.handlers if isinstance(h.formatter, StructuredFormatter)]


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def json_logs():
    """Configure logging into a buffer; call the fixture to read parsed lines."""
    stream = StringIO()

    def _configure(level=logging.INFO):
        configure_logging(stream=stream, level=level)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    _read.configure = _configure
    _configure()
    return _read


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_envelope(self, json_logs):
        get_logger("test").info("hello")

        (record,) = json_logs()
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "hr_kernel.test"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields(self, json_logs):
        get_logger("test").info("transitioned", extra={"version": 42, "to_state": "ready"})

        (record,) = json_logs()
        assert record["version"] == 42
        assert record["to_state"] == "ready"

    def test_domain_values_serialized(self, json_logs):
        effect_id = uuid4()
        get_logger("test").info("typed", extra={
            "effect_id": effect_id,
            "amount": Decimal("50000.00"),
            "role": ActorRole.HR_MANAGER,
            "states": frozenset({"signed"}),
        })

        (record,) = json_logs()
        assert record["effect_id"] == str(effect_id)
        assert record["amount"] == "50000.00"
        assert record["role"] == "hr_manager"
        assert record["states"] == ["signed"]

    def test_context_fields(self, json_logs):
        LogContext.set(correlation_id="abc-123", instance_id="inst-456")
        get_logger("test").info("test_msg")

        (record,) = json_logs()
        assert record["correlation_id"] == "abc-123"
        assert record["instance_id"] == "inst-456"
        assert "actor_id" not in record

    def test_plain_exception(self, json_logs):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = json_logs()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "ValueError: boom" in record["traceback"]

    def test_kernel_exception_fields(self, json_logs):
        try:
            raise IllegalTransitionError("terminal_state", "document_request", "approve", "ready")
        except IllegalTransitionError:
            get_logger("test").error("transition_error", exc_info=True)

        (record,) = json_logs()
        assert record["exc_code"] == "ILLEGAL_TRANSITION"
        assert record["exc_type"] == "IllegalTransitionError"
        assert record["exc_check"] == "terminal_state"
        assert record["exc_domain"] == "document_request"
        assert record["exc_current_state"] == "ready"

    def test_validation_errors_listed(self, json_logs):
        errors = [{"field": "notes", "code": "too_long", "message": "notes exceeds 1000 characters"}]
        try:
            raise PayloadValidationError("document_request", errors)
        except PayloadValidationError:
            get_logger("test").warning("rejected", exc_info=True)

        (record,) = json_logs()
        assert record["exc_field_errors"] == errors
        assert record["exc_field"] == "notes"

    def test_level_filtering(self, json_logs):
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second")
        logger.debug("third")

        assert [r["message"] for r in json_logs()] == ["first", "second"]

    def test_formatter_on_foreign_handler(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        configure_logging(handler=handler)

        get_logger("test").info("via_handler", extra={"k": "v"})
        assert json.loads(stream.getvalue())["k"] == "v"


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", domain="y")
        assert LogContext.get_all() == {"correlation_id": "x", "domain": "y"}

    def test_values_stored_as_strings(self):
        instance_id = uuid4()
        LogContext.set(instance_id=instance_id)
        assert LogContext.get_all() == {"instance_id": str(instance_id)}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_additive_set(self):
        LogContext.set(correlation_id="a")
        LogContext.set(domain="b", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "a", "domain": "b"}

    def test_bind_restores_previous_value(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", trace_id="t"):
            assert LogContext.get_all() == {"correlation_id": "inner", "trace_id": "t"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(instance_id="temp"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="unknown log context field"):
            LogContext.set(tenant="acme")
        with pytest.raises(TypeError):
            with LogContext.bind(tenant="acme"):
                pass

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            instance_id="i",
            domain="d",
            trace_id="t",
        )
        assert list(LogContext.get_all()) == [
            "correlation_id", "actor_id", "instance_id", "domain", "trace_id",
        ]


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self, json_logs):
        json_logs.configure(level=logging.DEBUG)
        root = logging.getLogger("hr_kernel")
        assert len(_json_handlers(root)) == 1
        assert root.level == logging.INFO

    def test_level_by_name(self):
        configure_logging(level="debug", stream=StringIO())
        assert logging.getLogger("hr_kernel").level == logging.DEBUG

    def test_unknown_level_name(self):
        with pytest.raises(ValueError, match="unknown log level"):
            configure_logging(level="chatty")
        # a rejected call does not count as configured
        configure_logging(level="warning", stream=StringIO())
        assert logging.getLogger("hr_kernel").level == logging.WARNING
        assert len(_json_handlers(logging.getLogger("hr_kernel"))) == 1

    def test_get_logger_returns_child(self):
        logger = get_logger("services.approval_coordinator")
        assert logger.name == "hr_kernel.services.approval_coordinator"

    def test_children_share_root_handler(self):
        stream = StringIO()
        configure_logging(stream=stream, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = json.loads(stream.getvalue())
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "hr_kernel.deep.nested.module"
