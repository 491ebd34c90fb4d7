"""@tool decorator for registering functions as foreman tools.

Usage:
    @tool(category="tasks", params={"work_order_id": "Work order the task belongs to"})
    async def create_task(title: str, work_order_id: str, due_on: Optional[str] = None) -> dict:
        ...

The parameter schema is read from the signature. Sync and async functions are
both accepted; the gateway awaits whichever it gets. Tools never check
permissions themselves.
"""

import inspect
import typing
from typing import Any, Callable, Optional, Union

from foreman.types import ToolDefinition

# Populated at import time of the modules that define tools
_registered_tools: dict[str, tuple[ToolDefinition, Callable[..., Any]]] = {}

_JSON_TYPES = {str: "string", int: "integer", float: "number",
               bool: "boolean", list: "array", dict: "object"}


def _json_type(annotation: Any) -> tuple[str, bool]:
    """Map an annotation to (JSON type, nullable). Unknown types become strings."""
    if annotation is inspect.Parameter.empty:
        return "string", False
    nullable = False
    if typing.get_origin(annotation) is Union:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        nullable = len(args) < len(typing.get_args(annotation))
        annotation = args[0] if len(args) == 1 else str
    origin = typing.get_origin(annotation) or annotation
    return _JSON_TYPES.get(origin, "string"), nullable


def parameter_schema(func: Callable[..., Any], descriptions: Optional[dict[str, str]] = None) -> dict:
    """JSON Schema object for a function's keyword-callable parameters."""
    descriptions = descriptions or {}
    properties: dict[str, dict] = {}
    required: list[str] = []
    for param_name, param in inspect.signature(func).parameters.items():
        if param_name == "self" or param.kind in (param.VAR_KEYWORD, param.VAR_POSITIONAL):
            continue
        json_type, nullable = _json_type(param.annotation)
        prop: dict[str, Any] = {"type": [json_type, "null"] if nullable else json_type}
        if param_name in descriptions:
            prop["description"] = descriptions[param_name]
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
        elif param.default is not None:
            prop["default"] = param.default
        properties[param_name] = prop
    return {"type": "object", "properties": properties, "required": required}


def tool(
    name: str = None,
    description: str = None,
    category: Optional[str] = None,
    timeout_seconds: int = 30,
    params: Optional[dict[str, str]] = None,
):
    """Decorator to register a function as a foreman tool.

    Args:
        name: Tool name (defaults to function name)
        description: Tool description (defaults to first docstring line)
        category: Category driving permission and approval checks
        timeout_seconds: Execution timeout
        params: Optional per-parameter descriptions for the schema

    The function itself is returned unchanged, tagged with ``_foreman_tool``.
    """
    def decorator(func):
        definition = ToolDefinition(
            name=name or func.__name__,
            description=description or (func.__doc__ or "").strip().split("\n")[0],
            parameters=parameter_schema(func, params),
            category=category,
            timeout_seconds=timeout_seconds,
        )
        _registered_tools[definition.name] = (definition, func)
        func._foreman_tool = definition
        return func

    return decorator


def get_registered_tools() -> dict[str, tuple[ToolDefinition, Callable[..., Any]]]:
    """Return all tools registered via @tool decorator."""
    return _registered_tools.copy()
