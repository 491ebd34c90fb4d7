"""AgentContext: the transient, token-budgeted payload handed to one agent execution."""

import json
import math
from typing import Any

from pydantic import BaseModel, Field

TIERS = ("project_context", "client_context", "org_context")


def estimate_payload_tokens(payload: dict) -> int:
    """Character-count-over-4 estimate of a payload's JSON serialization.

    Not a model tokenizer: deterministic and slightly conservative.
    An empty payload costs nothing.
    """
    if not payload:
        return 0
    return math.ceil(len(json.dumps(payload, default=str)) / 4)


def format_key(key: Any) -> str:
    return str(key).replace("_", " ").title()


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if value is None:
        return "N/A"
    return str(value)


def _section(title: str, payload: dict) -> str:
    lines = [f"## {title}"]
    for key, value in payload.items():
        lines.append(f"- **{format_key(key)}**: {format_value(value)}")
    return "\n".join(lines)


class AgentContext(BaseModel):
    """Project, client and org tiers plus metadata. Immutable."""

    model_config = {"frozen": True}

    project_context: dict[str, Any] = Field(default_factory=dict)
    client_context: dict[str, Any] = Field(default_factory=dict)
    org_context: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def with_project(self, **entries: Any) -> "AgentContext":
        return self.model_copy(update={"project_context": {**self.project_context, **entries}})

    def with_client(self, **entries: Any) -> "AgentContext":
        return self.model_copy(update={"client_context": {**self.client_context, **entries}})

    def with_org(self, **entries: Any) -> "AgentContext":
        return self.model_copy(update={"org_context": {**self.org_context, **entries}})

    def with_metadata(self, **entries: Any) -> "AgentContext":
        return self.model_copy(update={"metadata": {**self.metadata, **entries}})

    def estimate_tokens(self) -> int:
        """Sum of the per-tier estimates. Metadata is bookkeeping and not counted."""
        return sum(estimate_payload_tokens(getattr(self, tier)) for tier in TIERS)

    def is_empty(self) -> bool:
        return not (self.project_context or self.client_context or self.org_context or self.metadata)

    def accessed_tiers(self) -> list[str]:
        return [tier for tier in TIERS if getattr(self, tier)]

    def to_prompt_string(self) -> str:
        """Render Organization, Client, Project and Context Metadata sections, in that order."""
        sections = []
        if self.org_context:
            sections.append(_section("Organization", self.org_context))
        if self.client_context:
            sections.append(_section("Client", self.client_context))
        if self.project_context:
            sections.append(_section("Project", self.project_context))
        if self.metadata:
            sections.append(_section("Context Metadata", self.metadata))
        return "\n\n".join(sections)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_context": dict(self.project_context),
            "client_context": dict(self.client_context),
            "org_context": dict(self.org_context),
            "metadata": dict(self.metadata),
            "token_estimate": self.estimate_tokens(),
        }
