"""Accumulated, copy-on-write state shared by every step of a chain run.

A ChainContext is never mutated in place. Every ``with_*`` method returns a
new instance that the caller persists on the ChainRun (see ``to_storage``).

Persisted shape:
    {
        "steps": {"0": {"output": {...}, "agent_id": "...", "completed_at": "..."}},
        "accumulated_context": {...},
        "metadata": {"chain_name": "...", ...},
    }
"""

import json
import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from foreman.context.agent_context import format_key, format_value
from foreman.core.conditions import ConditionEvaluator, evaluate_condition


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChainContext(BaseModel):
    """Step outputs, accumulated context and metadata of one chain run."""

    model_config = {"frozen": True}

    step_outputs: dict[int, dict[str, Any]] = Field(default_factory=dict)
    accumulated_context: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("step_outputs", mode="before")
    @classmethod
    def _int_keys(cls, v):
        # JSON round-trips turn step indices into strings
        if isinstance(v, dict):
            return {int(k): val for k, val in v.items()}
        return v

    # ── Construction / serialization ──

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ChainContext":
        data = data or {}
        return cls(
            step_outputs=data.get("steps") or {},
            accumulated_context=data.get("accumulated_context") or {},
            metadata=data.get("metadata") or {},
        )

    @classmethod
    def start(cls, chain_name: str, initial_context: Optional[dict] = None) -> "ChainContext":
        return cls(
            accumulated_context=dict(initial_context or {}),
            metadata={"chain_name": chain_name, "started_at": _now_iso()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for persistence and condition evaluation.

        pause_reason and resume_data are lifted to the top level so
        conditions can address them directly.
        """
        result: dict[str, Any] = {
            "steps": {i: dict(v) for i, v in sorted(self.step_outputs.items())},
            "accumulated_context": dict(self.accumulated_context),
            "metadata": dict(self.metadata),
        }
        if "pause_reason" in self.metadata:
            result["pause_reason"] = self.metadata["pause_reason"]
        if "resume_data" in self.metadata:
            result["resume_data"] = self.metadata["resume_data"]
        return result

    def to_storage(self) -> dict[str, Any]:
        """JSON-safe form for the chain_runs.chain_context column."""
        return json.loads(json.dumps({
            "steps": {str(i): v for i, v in sorted(self.step_outputs.items())},
            "accumulated_context": self.accumulated_context,
            "metadata": self.metadata,
        }, default=str))

    # ── Copy-on-write updates ──

    def with_step_output(self, step_index: int, output: dict, agent_id: Optional[str] = None) -> "ChainContext":
        """Attach a step's output; also exposed as ``step_{i}`` in the accumulated context."""
        steps = dict(self.step_outputs)
        steps[step_index] = {
            "output": dict(output or {}),
            "agent_id": agent_id,
            "completed_at": _now_iso(),
        }
        accumulated = {**self.accumulated_context, f"step_{step_index}": dict(output or {})}
        return self.model_copy(update={"step_outputs": steps, "accumulated_context": accumulated})

    def with_metadata(self, **entries: Any) -> "ChainContext":
        return self.model_copy(update={"metadata": {**self.metadata, **entries}})

    def with_pause_reason(self, reason: str) -> "ChainContext":
        return self.with_metadata(pause_reason=reason, paused_at=_now_iso())

    def with_resume_data(self, data: Optional[dict] = None) -> "ChainContext":
        return self.with_metadata(resume_data=dict(data or {}), resumed_at=_now_iso())

    def filter(self, include: Optional[list[str]] = None, exclude: Optional[list[str]] = None) -> "ChainContext":
        """Restrict every step output to ``include`` keys, then drop ``exclude`` keys."""
        steps = {}
        for index, entry in self.step_outputs.items():
            output = dict(entry.get("output") or {})
            if include:
                output = {k: v for k, v in output.items() if k in include}
            if exclude:
                output = {k: v for k, v in output.items() if k not in exclude}
            steps[index] = {**entry, "output": output}
        return self.model_copy(update={
            "step_outputs": steps,
            "metadata": {**self.metadata, "filtered": True},
        })

    # ── Queries ──

    def output_for_step(self, step_index: int) -> Optional[dict]:
        entry = self.step_outputs.get(step_index)
        return entry.get("output") if entry is not None else None

    def all_outputs(self) -> dict[int, dict]:
        return {i: dict(e.get("output") or {}) for i, e in sorted(self.step_outputs.items())}

    def completed_step_count(self) -> int:
        return len(self.step_outputs)

    def is_empty(self) -> bool:
        return not self.step_outputs and not self.accumulated_context

    def evaluate_condition(self, expression: str, evaluator: Optional[ConditionEvaluator] = None) -> bool:
        """Evaluate a branching condition against this context."""
        return (evaluator or evaluate_condition)(expression, self.to_dict())

    def to_prompt_string(self) -> str:
        sections = []
        if self.step_outputs:
            lines = ["## Previous Step Outputs"]
            for index, entry in sorted(self.step_outputs.items()):
                lines.append(f"### Step {index}")
                for key, value in (entry.get("output") or {}).items():
                    lines.append(f"- **{format_key(key)}**: {format_value(value)}")
            sections.append("\n".join(lines))
        if self.accumulated_context:
            lines = ["## Accumulated Context"]
            for key, value in self.accumulated_context.items():
                if str(key).startswith("step_"):
                    continue
                lines.append(f"- **{format_key(key)}**: {format_value(value)}")
            if len(lines) > 1:
                sections.append("\n".join(lines))
        return "\n\n".join(sections)

    def estimate_tokens(self) -> int:
        return math.ceil(len(self.to_prompt_string()) / 4)
