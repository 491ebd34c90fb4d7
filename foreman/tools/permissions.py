"""Permission policy: which configuration flag and which approval action type
a tool category maps to.

The policy is an injected object, never a module global, so tests and
deployments can supply alternate mappings (see ``load_permissions_yaml``).
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from foreman.types import AgentConfiguration, ToolDefinition

DEFAULT_CATEGORY_PERMISSIONS: dict[str, str] = {
    "tasks": "can_modify_tasks",
    "work_orders": "can_create_work_orders",
    "client_data": "can_access_client_data",
    "email": "can_send_emails",
    "deliverables": "can_modify_deliverables",
    "financial": "can_access_financial_data",
    "playbooks": "can_modify_playbooks",
}

DEFAULT_CATEGORY_APPROVAL_TYPES: dict[str, str] = {
    "email": "external_sends",
    "financial": "financial_data",
    "work_orders": "work_order_creation",
    "deliverables": "client_facing_content",
}


class PermissionPolicy(BaseModel):
    """Category → permission flag and category → approval action type mappings."""
    category_permissions: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_PERMISSIONS)
    )
    category_approval_types: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_APPROVAL_TYPES)
    )

    def required_permission(self, category: Optional[str]) -> Optional[str]:
        if category is None:
            return None
        return self.category_permissions.get(category)

    def approval_action_type(self, category: Optional[str]) -> Optional[str]:
        if category is None:
            return None
        return self.category_approval_types.get(category)

    def allows(self, config: AgentConfiguration, tool: Union[ToolDefinition, str], category: Optional[str] = None) -> bool:
        """Decide whether ``config`` may invoke ``tool``.

        A per-tool override in ``config.tool_permissions`` wins over the
        category mapping. A category with no mapping carries no restriction.

        Args:
            config: Agent configuration holding the permission flags
            tool: Tool definition, or a bare tool name plus ``category``
            category: Category when ``tool`` is a name

        Returns:
            True if the invocation is permitted
        """
        if isinstance(tool, ToolDefinition):
            name, category = tool.name, tool.category
        else:
            name = tool

        if name in config.tool_permissions:
            return bool(config.tool_permissions[name])

        flag = self.required_permission(category)
        if flag is None:
            return True
        return config.has_permission(flag)
