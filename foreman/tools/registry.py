"""Central registry of all available tools."""

from typing import Any, Callable

from foreman.types import ToolDefinition
from foreman.exceptions import ToolError
from foreman.tools.plugin import get_registered_tools


class ToolRegistry:
    """Central registry of all available tools."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self._implementations: dict[str, Callable[..., Any]] = {}

    def register(self, definition: ToolDefinition, implementation: Callable[..., Any]) -> None:
        """Register a tool with its definition and implementation function.

        Args:
            definition: Tool metadata and schema
            implementation: Async callable that executes the tool
        """
        self._tools[definition.name] = definition
        self._implementations[definition.name] = implementation

    def load_decorated(self) -> int:
        """Register every function collected by the @tool decorator. Returns the count."""
        tools = get_registered_tools()
        for definition, implementation in tools.values():
            self.register(definition, implementation)
        return len(tools)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> tuple[ToolDefinition, Callable[..., Any]]:
        """Get tool definition and implementation.

        Raises:
            ToolError: if tool not found
        """
        if name not in self._tools:
            raise ToolError(f"Tool '{name}' not found", tool_name=name)
        return self._tools[name], self._implementations[name]

    def list_tools(self) -> list[ToolDefinition]:
        """List all registered tools."""
        return list(self._tools.values())

    def list_by_category(self, category: str) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]

    def get_schema_for_backend(self, tools: list[ToolDefinition]) -> list[dict]:
        """Format tool definitions for LLM function calling.

        Returns list of dicts matching OpenAI/Anthropic tool format.
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters,
                },
            }
            for t in tools
        ]
