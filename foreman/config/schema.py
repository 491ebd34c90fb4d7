"""Pydantic models for YAML configuration validation.

These mirror foreman/types.py structures but accept loose string inputs
(e.g., execution_mode: "Parallel") and coerce them to the correct enums.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from foreman.types import ExecutionMode


class StepYAML(BaseModel):
    """Validated schema for one step entry in a chain file."""
    model_config = {"extra": "allow"}

    agent_id: Optional[str] = None
    workflow_kind: Optional[str] = None
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    step_group: Optional[str] = None
    next_step_conditions: list[dict[str, Any]] = Field(default_factory=list)
    context_filter_rules: dict[str, list[str]] = Field(default_factory=dict)
    output_transformations: list[dict[str, Any]] = Field(default_factory=list)
    input: dict[str, Any] = Field(default_factory=dict)

    @field_validator("execution_mode", mode="before")
    @classmethod
    def coerce_mode(cls, v):
        if isinstance(v, str):
            return ExecutionMode(v.lower())
        return v


class ChainYAML(BaseModel):
    """Root schema for a chain definition file."""
    name: str
    description: str = ""
    enabled: bool = True
    steps: list[StepYAML] = Field(default_factory=list)


class PermissionsYAML(BaseModel):
    """Root schema for a gateway permission policy file."""
    category_permissions: dict[str, str] = Field(default_factory=dict)
    category_approval_types: dict[str, str] = Field(default_factory=dict)
    replace_defaults: bool = False      # False merges over the built-in mappings
