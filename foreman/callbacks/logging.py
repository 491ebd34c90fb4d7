"""Structured JSON logging callback for foreman lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from foreman.callbacks.base import BaseCallback

logger = logging.getLogger("foreman.audit")

# Fields copied verbatim into every audit line when present in the event data
_ID_FIELDS = (
    "team_id", "agent_id", "chain_id", "chain_run_id", "workflow_run_id",
    "step_index", "group", "batch", "approval_request_id",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _clip(value: Any) -> Any:
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return str(value)[:200]


class LoggingCallback(BaseCallback):
    """Emits one self-contained JSON log line per lifecycle event.

    Each line carries:
      - event: event type name
      - ts: ISO-8601 UTC timestamp
      - the identifying fields present in the event (team, run, step, ...)
      - event-specific fields (status, reason, error, duration)

    Log level: INFO for normal events, WARNING for denials, ERROR for failures.
    Logger name: foreman.audit (configure in your logging setup)

        engine = ChainEngine(..., callbacks=[LoggingCallback()])
    """

    async def __call__(self, event: str, data: dict) -> None:
        handler = getattr(self, f"on_{event}", None)
        if handler is not None:
            await handler(data)
            return
        self._write(logging.INFO, event, data)

    def _write(self, level: int, event: str, data: dict, **extra: Any) -> None:
        line = {"event": event, "ts": _now()}
        for field in _ID_FIELDS:
            if field in data:
                line[field] = data[field]
        line.update(extra)
        logger.log(level, json.dumps(line, default=str))

    async def on_chain_completed(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.INFO, "chain_completed", data,
                    steps_completed=data.get("steps_completed", 0),
                    memories_cleared=data.get("memories_cleared", 0))

    async def on_chain_failed(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.ERROR, "chain_failed", data, error=_clip(data.get("error", "")))

    async def on_workflow_paused(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.INFO, "workflow_paused", data, reason=_clip(data.get("reason", "")))

    async def on_chain_paused(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.INFO, "chain_paused", data, reason=_clip(data.get("reason", "")))

    async def on_tool_executed(self, data: dict, **kwargs: Any) -> None:
        level = logging.INFO if data.get("status") == "success" else logging.ERROR
        self._write(level, "tool_executed", data,
                    tool=data.get("tool", ""),
                    status=data.get("status", ""),
                    duration_ms=data.get("duration_ms", 0),
                    error=_clip(data.get("error")))

    async def on_tool_denied(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.WARNING, "tool_denied", data,
                    tool=data.get("tool", ""),
                    reason=_clip(data.get("error", "")))

    async def on_agent_run(self, data: dict, **kwargs: Any) -> None:
        level = logging.INFO if data.get("success") else logging.ERROR
        self._write(level, "agent_run", data,
                    tokens_used=data.get("tokens_used", 0),
                    cost=round(data.get("cost", 0.0), 6),
                    error=_clip(data.get("error")))

    async def on_error(self, data: dict, **kwargs: Any) -> None:
        self._write(logging.ERROR, "error", data,
                    error_type=data.get("error_type", ""),
                    error=_clip(data.get("error", "")))
