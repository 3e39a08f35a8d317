"""
Tests for the notification sinks.
"""

import logging

from bankdash.models import NotificationLevel
from bankdash.notifications import CallbackSink, LoggingSink, NotificationLog


def test_log_keeps_recent_events_in_order():
    log = NotificationLog(max_size=2)
    log.info("one")
    log.warning("two")
    log.error("three")

    assert [n.message for n in log.events] == ["two", "three"]
    assert [n.message for n in log.of_level(NotificationLevel.ERROR)] == ["three"]

    log.clear()
    assert log.events == []


def test_helpers_return_the_event():
    log = NotificationLog()
    event = log.success("Deposit successful!")
    assert event.level == NotificationLevel.SUCCESS
    assert log.events == [event]


def test_logging_sink_maps_levels(caplog):
    sink = LoggingSink("bankdash.test")
    with caplog.at_level(logging.INFO, logger="bankdash.test"):
        sink.success("Login successful!")
        sink.error("Insufficient funds")

    assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
        (logging.INFO, "[success] Login successful!"),
        (logging.ERROR, "[error] Insufficient funds"),
    ]


def test_callback_sink():
    seen = []
    sink = CallbackSink(seen.append)
    sink.warning("Please enter an amount")
    assert [(n.level, n.message) for n in seen] == [(NotificationLevel.WARNING, "Please enter an amount")]
