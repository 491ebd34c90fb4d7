"""The sole authorized path through which agents invoke tools.

Checks run in a fixed order and short-circuit on the first refusal:

    1. tool lookup        unknown tool -> failure
    2. permission         category flag or per-tool override -> denied
    3. budget             estimated cost vs daily/monthly remainder -> denied
    4. approval override  team settings require a human for this action type -> denied
    5. execute            success deducts cost; raised errors become failures

Every call, whatever its outcome, produces a ToolResult and exactly one
activity entry. Raw tool exceptions never reach the caller.
"""

import asyncio
import inspect
import json
import logging
import time
from typing import Any, Optional

from foreman.callbacks.base import emit
from foreman.core.activity import ActivityLog
from foreman.core.budget import BudgetLedger
from foreman.tools.permissions import PermissionPolicy
from foreman.tools.registry import ToolRegistry
from foreman.types import (
    ActivityEntry, AgentConfiguration, ToolDefinition, ToolResult, ToolResultStatus,
)

logger = logging.getLogger(__name__)


class ToolGateway:
    """Permission, budget and approval gate in front of the tool registry.

    Args:
        registry: Tools available to agents.
        activity: ActivityLog receiving one entry per call.
        policy: Category mappings. Defaults to the built-in PermissionPolicy.
        ledger: BudgetLedger. When None the budget check is skipped.
        repository: Used to read the team's GlobalAISettings. When None the
            approval override is skipped.
        callbacks: Async callables ``cb(event, data)``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        activity: ActivityLog,
        policy: PermissionPolicy = None,
        ledger: Optional[BudgetLedger] = None,
        repository=None,
        callbacks: list = None,
    ):
        self.registry = registry
        self.activity = activity
        self.policy = policy or PermissionPolicy()
        self.ledger = ledger
        self.repository = repository
        self.callbacks = callbacks or []

    async def execute(
        self,
        configuration: AgentConfiguration,
        tool_name: str,
        params: Optional[dict] = None,
        estimated_cost: float = 0.0,
    ) -> ToolResult:
        """Run ``tool_name`` on behalf of ``configuration.agent_id``.

        There is no separate agent argument: the configuration is the agent's
        per-team record, so its ``team_id`` and ``agent_id`` identify who acts
        and are what the activity entry and spend are recorded against.

        Returns:
            ToolResult with status success, failure or denied. Never raises
            for tool-side errors.
        """
        params = dict(params or {})
        started = time.monotonic()

        if not self.registry.has(tool_name):
            result = ToolResult.failed(f"Tool '{tool_name}' not found")
            return await self._finish(configuration, tool_name, params, result, started)
        definition, implementation = self.registry.get(tool_name)

        if not self.has_permission(configuration, definition):
            result = ToolResult.denied(
                f"Permission denied: Agent does not have required permissions for tool '{tool_name}'"
            )
            return await self._finish(configuration, tool_name, params, result, started)

        if self.ledger is not None and estimated_cost > 0:
            if not await self.ledger.can_run(configuration, estimated_cost):
                result = ToolResult.denied(
                    f"Budget exceeded: Agent does not have sufficient budget to execute tool '{tool_name}'"
                )
                return await self._finish(configuration, tool_name, params, result, started)

        action_type = await self._approval_required(configuration, definition)
        if action_type is not None:
            result = ToolResult.denied(
                f"Approval required: Human approval required for {action_type} actions"
            )
            return await self._finish(configuration, tool_name, params, result, started)

        try:
            data = await self._invoke(implementation, params, definition.timeout_seconds)
        except Exception as exc:
            logger.exception(f"Tool '{tool_name}' raised during execution: {exc}")
            result = ToolResult.failed(str(exc) or type(exc).__name__, self._elapsed_ms(started))
            return await self._finish(configuration, tool_name, params, result, started)

        if self.ledger is not None and estimated_cost > 0:
            await self.ledger.deduct_cost(configuration, estimated_cost)
        result = ToolResult.succeeded(data, self._elapsed_ms(started))
        return await self._finish(configuration, tool_name, params, result, started, cost=estimated_cost)

    # ── Queries ──

    def has_permission(self, configuration: AgentConfiguration, tool: Any) -> bool:
        """Permission check alone, for a ToolDefinition or a registered tool name."""
        if isinstance(tool, str):
            if not self.registry.has(tool):
                return False
            tool, _ = self.registry.get(tool)
        return self.policy.allows(configuration, tool)

    def available_tools(self, configuration: AgentConfiguration) -> list[ToolDefinition]:
        """Registered tools this configuration is permitted to call."""
        return [t for t in self.registry.list_tools() if self.policy.allows(configuration, t)]

    # ── Internal ──

    async def _approval_required(
        self, configuration: AgentConfiguration, definition: ToolDefinition,
    ) -> Optional[str]:
        action_type = self.policy.approval_action_type(definition.category)
        if action_type is None or self.repository is None:
            return None
        settings = await self.repository.get_global_settings(configuration.team_id)
        if settings is None or not settings.requires_approval_for(action_type):
            return None
        return action_type

    @staticmethod
    async def _invoke(implementation, params: dict, timeout: int) -> Any:
        if inspect.iscoroutinefunction(implementation):
            return await asyncio.wait_for(implementation(**params), timeout=timeout)
        # Sync function: run in a thread so it cannot block the loop
        return await asyncio.wait_for(asyncio.to_thread(implementation, **params), timeout=timeout)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    async def _finish(
        self,
        configuration: AgentConfiguration,
        tool_name: str,
        params: dict,
        result: ToolResult,
        started: float,
        cost: float = 0.0,
    ) -> ToolResult:
        duration_ms = self._elapsed_ms(started)
        entry = ActivityEntry(
            team_id=configuration.team_id,
            agent_id=configuration.agent_id,
            run_type="tool_execution",
            input=json.dumps({"tool": tool_name, "params": params}, default=str),
            output=json.dumps(result.data, default=str) if result.success else None,
            error=result.error,
            tool_calls=[{
                "tool": tool_name,
                "params": params,
                "status": result.status.value,
                "duration_ms": duration_ms,
            }],
            cost=cost,
            duration_ms=duration_ms,
        )
        try:
            await self.activity.append(entry)
        except Exception as exc:
            logger.error(f"Failed to record activity for tool '{tool_name}': {exc}")

        denied = result.status == ToolResultStatus.DENIED
        event = "tool_denied" if denied else "tool_executed"
        if denied:
            logger.warning(f"Tool '{tool_name}' denied for agent {configuration.agent_id}: {result.error}")
        await emit(self.callbacks, event, {
            "team_id": configuration.team_id,
            "agent_id": configuration.agent_id,
            "tool": tool_name,
            "status": result.status.value,
            "error": result.error,
            "duration_ms": duration_ms,
        })
        return result
