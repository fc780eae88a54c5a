"""
Tests for logger (structured fields) and tracking (correlation IDs).
"""

import logging

from logger import ContextFilter, fields, render_fields
from tracking import (
    clear_correlation_id,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("db.manager", logging.INFO, __file__, 1, "Query executed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_fields_builds_extra_mapping() -> None:
    assert fields(query_id="qry-1", duration_ms=12.5) == {
        "fields": {"query_id": "qry-1", "duration_ms": 12.5}
    }


def test_render_fields() -> None:
    assert render_fields(None) == ""
    assert render_fields({}) == ""
    assert render_fields({"attempt": 2, "host": "db"}) == " | attempt=2 host=db"


def test_filter_stamps_correlation_id_and_fields() -> None:
    record = _record(**fields(row_count=3))
    with correlation_context("req-abc"):
        assert ContextFilter().filter(record) is True

    assert record.correlation_id == "req-abc"
    assert record.fields_text == " | row_count=3"


def test_filter_without_context_uses_placeholder() -> None:
    clear_correlation_id()
    record = _record()
    ContextFilter().filter(record)
    assert record.correlation_id == "-"
    assert record.fields_text == ""


def test_generated_ids_carry_prefix_and_are_unique() -> None:
    first = generate_correlation_id("heal")
    second = generate_correlation_id("heal")
    assert first.startswith("heal-")
    assert first != second


def test_correlation_context_restores_previous_id() -> None:
    set_correlation_id("req-outer")
    with correlation_context(prefix="qry") as inner:
        assert inner.startswith("qry-")
        assert get_correlation_id() == inner
    assert get_correlation_id() == "req-outer"
    clear_correlation_id()

