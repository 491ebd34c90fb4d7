"""Agent runner: budget check, context assembly, backend call, cost deduction, activity record."""

import json
import logging
import time
from typing import Any, Optional

from pydantic import BaseModel, Field

from foreman.callbacks.base import emit
from foreman.config import config
from foreman.context.agent_context import AgentContext
from foreman.core.activity import ActivityLog
from foreman.core.budget import BudgetLedger
from foreman.types import ActivityEntry, Agent, AgentConfiguration, EntityRef

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED = "Budget exceeded: insufficient daily or monthly budget remaining"


class AgentRunResult(BaseModel):
    success: bool
    output: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    tokens_used: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    context_accessed: list[str] = Field(default_factory=list)


class AgentRunner:
    """Executes one agent run end to end.

    Inputs naming a ``tool`` (with optional ``tool_params``) are routed through
    the ToolGateway as a direct tool call; everything else goes to the agent
    backend. Backend and tool errors are captured in the result, never raised.

    Args:
        ledger: BudgetLedger for the pre-run check and the post-run deduction.
        backend: AgentBackend producing output from context + input.
        activity: ActivityLog receiving one ``agent_run`` entry per run.
        assembler: ContextAssembler used when no context is passed in. Optional.
        gateway: ToolGateway for direct tool calls. Optional.
        callbacks: Async callables ``cb(event, data)``.
    """

    def __init__(
        self,
        ledger: BudgetLedger,
        backend,
        activity: ActivityLog,
        assembler=None,
        gateway=None,
        callbacks: list = None,
        base_cost: float = None,
        cost_per_input_char: float = None,
        cost_per_1k_tokens: float = None,
        max_context_tokens: int = None,
    ):
        self.ledger = ledger
        self.backend = backend
        self.activity = activity
        self.assembler = assembler
        self.gateway = gateway
        self.callbacks = callbacks or []
        self.base_cost = config.runner_base_cost if base_cost is None else base_cost
        self.cost_per_input_char = (
            config.runner_cost_per_input_char if cost_per_input_char is None else cost_per_input_char
        )
        self.cost_per_1k_tokens = config.cost_per_1k_tokens if cost_per_1k_tokens is None else cost_per_1k_tokens
        self.max_context_tokens = max_context_tokens or config.context_max_tokens

    def estimate_cost(self, input: dict) -> float:
        return self.base_cost + len(json.dumps(input, default=str)) * self.cost_per_input_char

    async def run(
        self,
        agent: Agent,
        configuration: AgentConfiguration,
        input: dict,
        entity: Optional[EntityRef] = None,
        context: Optional[AgentContext] = None,
    ) -> AgentRunResult:
        started = time.monotonic()
        estimated = self.estimate_cost(input)

        if not await self.ledger.can_run(configuration, estimated):
            logger.warning(f"Agent run denied for {agent.id}: estimated cost {estimated:.6f} over budget")
            result = AgentRunResult(success=False, error=BUDGET_EXCEEDED)
            return await self._finish(agent, configuration, input, result, started)

        try:
            if context is None:
                context = await self._build_context(agent, entity)
            accessed = context.accessed_tiers()

            if input.get("tool") and self.gateway is not None:
                result = await self._run_tool(configuration, input, estimated)
            else:
                output = await self.backend.run(agent, context, input)
                cost = output.cost if output.cost is not None else (
                    output.tokens_used / 1000 * self.cost_per_1k_tokens
                )
                await self.ledger.deduct_cost(configuration, cost)
                result = AgentRunResult(
                    success=True,
                    output=output.output,
                    tokens_used=output.tokens_used,
                    cost=cost,
                )
            result.context_accessed = accessed
        except Exception as exc:
            logger.exception(f"Agent run failed for {agent.id}: {exc}")
            result = AgentRunResult(success=False, error=str(exc) or type(exc).__name__)

        return await self._finish(agent, configuration, input, result, started)

    async def _build_context(self, agent: Agent, entity: Optional[EntityRef]) -> AgentContext:
        if entity is None or self.assembler is None:
            return AgentContext()
        return await self.assembler.build(entity, agent.id, self.max_context_tokens)

    async def _run_tool(self, configuration: AgentConfiguration, input: dict, estimated: float) -> AgentRunResult:
        # the gateway deducts the cost itself on success
        tool_result = await self.gateway.execute(
            configuration, input["tool"], input.get("tool_params") or {}, estimated_cost=estimated,
        )
        return AgentRunResult(
            success=tool_result.success,
            output={
                "tool": input["tool"],
                "status": tool_result.status.value,
                "data": tool_result.data,
            },
            error=tool_result.error,
            cost=estimated if tool_result.success else 0.0,
        )

    async def _finish(
        self,
        agent: Agent,
        configuration: AgentConfiguration,
        input: dict,
        result: AgentRunResult,
        started: float,
    ) -> AgentRunResult:
        result.duration_ms = int((time.monotonic() - started) * 1000)
        await self.activity.append(ActivityEntry(
            team_id=configuration.team_id,
            agent_id=agent.id,
            run_type="agent_run",
            input=json.dumps(input, default=str),
            output=json.dumps(result.output, default=str) if result.success else None,
            error=result.error,
            tool_calls=[{"tool": input["tool"]}] if input.get("tool") else [],
            context_accessed=result.context_accessed,
            tokens_used=result.tokens_used,
            cost=result.cost,
            duration_ms=result.duration_ms,
        ))
        await emit(self.callbacks, "agent_run", {
            "team_id": configuration.team_id,
            "agent_id": agent.id,
            "success": result.success,
            "tokens_used": result.tokens_used,
            "cost": result.cost,
            "error": result.error,
        })
        return result
