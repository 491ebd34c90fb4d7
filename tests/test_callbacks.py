"""Tests for callback dispatch and the JSON audit logging callback."""

import json
import logging

from foreman.callbacks import BaseCallback, LoggingCallback, emit


async def test_emit_calls_in_order_and_accepts_sync():
    seen = []

    async def first(event, data):
        seen.append(("first", event))

    def second(event, data):
        seen.append(("second", event))

    await emit([first, second], "chain_started", {})
    assert seen == [("first", "chain_started"), ("second", "chain_started")]


async def test_emit_survives_failing_callback(caplog):
    seen = []

    async def broken(event, data):
        raise ValueError("nope")

    async def ok(event, data):
        seen.append(event)

    with caplog.at_level(logging.WARNING, logger="foreman.callbacks.base"):
        await emit([broken, ok], "chain_failed", {})
    assert seen == ["chain_failed"]
    assert "Callback error on 'chain_failed': nope" in caplog.text


async def test_base_callback_routes_to_hooks():
    class Counter(BaseCallback):
        def __init__(self):
            self.completed = []

        async def on_chain_completed(self, data, **kwargs):
            self.completed.append(data["chain_run_id"])

    counter = Counter()
    await counter("chain_completed", {"chain_run_id": "run-1"})
    await counter("something_else", {})
    assert counter.completed == ["run-1"]


class TestLoggingCallback:
    async def test_default_event_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="foreman.audit"):
            await LoggingCallback()("chain_started", {"chain_run_id": "run-1", "team_id": "t", "noise": "x"})
        line = json.loads(caplog.records[-1].getMessage())
        assert line["event"] == "chain_started"
        assert line["chain_run_id"] == "run-1"
        assert line["team_id"] == "t"
        assert "noise" not in line
        assert line["ts"].endswith("Z")

    async def test_failure_logged_as_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="foreman.audit"):
            await LoggingCallback()("chain_failed", {"chain_run_id": "run-1", "error": "x" * 500})
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert len(json.loads(record.getMessage())["error"]) == 200

    async def test_denial_logged_as_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="foreman.audit"):
            await LoggingCallback()("tool_denied", {"tool": "send_email", "error": "Permission denied"})
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert json.loads(record.getMessage())["reason"] == "Permission denied"
