"""Structured logging: formatter output, LogContext scoping, configuration."""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from equipment_kernel.domain.statuses import UnitStatus
from equipment_kernel.exceptions import UnitStatusConflictError
from equipment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Each test configures logging from scratch; the suite config is restored after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:
    """One JSON object per line."""

    def test_basic_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "equipment_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("unit_scanned_in", extra={"serial_number": "PROJ-01-001", "count": 3})

        record = _parse_log(stream)
        assert record["serial_number"] == "PROJ-01-001"
        assert record["count"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(operation="approve", actor_code="U-042"):
            get_logger("test").info("approved")
        get_logger("test").info("after")

        inside, after = _parse_all_logs(stream)
        assert inside["operation"] == "approve"
        assert inside["actor_code"] == "U-042"
        assert "actor_code" not in after

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        rid = uuid4()
        get_logger("test").info(
            "values",
            extra={
                "receipt_id": rid,
                "status": UnitStatus.RESERVED,
                "price": Decimal("899.50"),
                "at": datetime(2025, 3, 1, 8, 0, tzinfo=UTC),
                "serials": ("A", "B"),
            },
        )

        record = _parse_log(stream)
        assert record["receipt_id"] == str(rid)
        assert record["status"] == "reserved"
        assert record["price"] == "899.50"
        assert record["at"].startswith("2025-03-01T08:00:00")
        assert record["serials"] == ["A", "B"]

    def test_datetime_is_iso_8601(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "stamped",
            extra={"first_used_at": datetime(2025, 3, 1, 8, 0, tzinfo=UTC), "due": date(2025, 3, 8)},
        )

        record = _parse_log(stream)
        assert record["first_used_at"] == "2025-03-01T08:00:00+00:00"
        assert record["due"] == "2025-03-08"

    def test_unknown_types_fall_back_to_str(self):
        class Room:
            def __str__(self):
                return "R-101"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("moved", extra={"room": Room()})

        assert _parse_log(stream)["room"] == "R-101"

    def test_kernel_exception_attributes_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise UnitStatusConflictError("PROJ-01-001", "available", "reserved")
        except UnitStatusConflictError:
            get_logger("test").error("scan_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "UnitStatusConflictError"
        assert record["exc_code"] == "UNIT_STATUS_CONFLICT"
        assert record["exc_serial_number"] == "PROJ-01-001"
        assert record["exc_actual"] == "reserved"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second")
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


class TestLogContext:
    def test_bind_restores_previous(self):
        with LogContext.bind(actor_code="outer"):
            with LogContext.bind(actor_code="inner", operation="approve"):
                assert LogContext.get_all() == {"actor_code": "inner", "operation": "approve"}
            assert LogContext.get_all() == {"actor_code": "outer"}
        assert LogContext.get_all() == {}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(receipt_id="r-1"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_bind_rejects_unknown_field(self):
        with pytest.raises(ValueError, match="correlation_id"):
            with LogContext.bind(correlation_id="x"):
                pass

    def test_bind_stringifies_values(self):
        rid = uuid4()
        with LogContext.bind(receipt_id=rid):
            assert LogContext.get_all()["receipt_id"] == str(rid)

    def test_bind_skips_none(self):
        with LogContext.bind(actor_code=None, serial_number="S-1"):
            assert LogContext.get_all() == {"serial_number": "S-1"}

    def test_clear(self):
        with LogContext.bind(operation="scan_in"):
            LogContext.clear()
            assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        # pytest's log capture adds its own handlers to this logger as well.
        handlers = logging.getLogger("equipment_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_child_loggers_inherit(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.allocation_ledger").debug("nested")

        record = _parse_log(stream)
        assert record["logger"] == "equipment_kernel.services.allocation_ledger"
