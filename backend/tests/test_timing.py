"""Tests for the timing helpers."""
import logging

import pytest

from booknexus.utils.timing import now_ms, time_operation


def test_now_ms_is_monotonic():
    """Test that the millisecond clock never goes backwards."""
    first = now_ms()
    assert now_ms() >= first


def test_time_operation_logs_on_error(caplog):
    """Test that the elapsed time is logged even when the timed block raises."""
    logger = logging.getLogger("booknexus.test_timing")

    with caplog.at_level(logging.INFO, logger="booknexus.test_timing"):
        with pytest.raises(ValueError):
            with time_operation("import books.csv", logger.info):
                raise ValueError("bad row")

    assert any(record.getMessage().startswith("import books.csv took ") for record in caplog.records)
