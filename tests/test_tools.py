"""Tests for the @tool decorator, ToolRegistry and PermissionPolicy."""

from typing import Optional

import pytest

from foreman.exceptions import ToolError
from foreman.tools.permissions import PermissionPolicy
from foreman.tools.plugin import get_registered_tools, tool
from foreman.tools.registry import ToolRegistry
from foreman.types import AgentConfiguration, ToolDefinition


@tool(name="log_time", category="tasks")
async def log_time(task_id: str, hours: float, note: str = "") -> dict:
    """Log hours against a task.

    Longer description that is not part of the tool description.
    """
    return {"task_id": task_id, "hours": hours}


# ── Decorator ────────────────────────────────────────────────────────────────


def test_decorator_builds_definition():
    definition, func = get_registered_tools()["log_time"]
    assert definition.description == "Log hours against a task."
    assert definition.category == "tasks"
    assert definition.parameters["properties"]["hours"]["type"] == "number"
    assert definition.parameters["required"] == ["task_id", "hours"]
    assert log_time._foreman_tool is definition


async def test_decorated_function_still_callable():
    assert await log_time("t1", 2.0) == {"task_id": "t1", "hours": 2.0}


def test_schema_handles_optional_generics_and_descriptions():
    @tool(category="tasks", params={"tags": "Labels to attach"})
    def tag_task(task_id: str, tags: list[str], due_on: Optional[str] = None, urgent: bool = False):
        return task_id

    definition, func = get_registered_tools()["tag_task"]
    props = definition.parameters["properties"]
    assert props["tags"] == {"type": "array", "description": "Labels to attach"}
    assert props["due_on"] == {"type": ["string", "null"]}
    assert props["urgent"] == {"type": "boolean", "default": False}
    assert definition.parameters["required"] == ["task_id", "tags"]
    assert func is tag_task
    assert tag_task("t1", []) == "t1"


def test_load_decorated():
    registry = ToolRegistry()
    count = registry.load_decorated()
    assert count >= 1
    assert registry.has("log_time")


# ── Registry ─────────────────────────────────────────────────────────────────


class TestRegistry:
    def test_get_unknown_raises(self):
        with pytest.raises(ToolError, match="not found"):
            ToolRegistry().get("missing")

    def test_list_by_category_and_schema(self):
        registry = ToolRegistry()
        registry.register(ToolDefinition(name="a", description="A", category="email"), lambda: None)
        registry.register(ToolDefinition(name="b", description="B"), lambda: None)
        assert [t.name for t in registry.list_by_category("email")] == ["a"]
        schema = registry.get_schema_for_backend(registry.list_tools())
        assert schema[0] == {
            "type": "function",
            "function": {"name": "a", "description": "A", "parameters": {}},
        }


# ── Permission policy ────────────────────────────────────────────────────────


class TestPermissionPolicy:
    def _cfg(self, **kwargs):
        return AgentConfiguration(team_id="team-acme", agent_id="agent-pm", **kwargs)

    def test_category_flag(self):
        policy = PermissionPolicy()
        assert policy.allows(self._cfg(can_send_emails=True), "send", category="email") is True
        assert policy.allows(self._cfg(), "send", category="email") is False

    def test_unmapped_category_is_unrestricted(self):
        assert PermissionPolicy().allows(self._cfg(), "x", category="weather") is True

    def test_override_wins(self):
        cfg = self._cfg(tool_permissions={"send": True})
        assert PermissionPolicy().allows(cfg, "send", category="email") is True

    def test_custom_mappings(self):
        policy = PermissionPolicy(category_permissions={"email": "can_modify_tasks"})
        assert policy.allows(self._cfg(can_modify_tasks=True), "send", category="email") is True
        assert policy.approval_action_type("email") == "external_sends"
        assert policy.approval_action_type(None) is None
