"""Tests for AgentRunner: budget gate, cost accounting, tool path, activity."""

import json

import pytest

from foreman.core.activity import ActivityLog
from foreman.core.runner import AgentRunner, BUDGET_EXCEEDED
from foreman.tools.gateway import ToolGateway
from foreman.tools.registry import ToolRegistry
from foreman.types import AgentConfiguration, EntityRef, ToolDefinition


async def create_task(title: str) -> dict:
    return {"id": "task-9", "title": title}


@pytest.fixture
def run_activity():
    return ActivityLog()


@pytest.fixture
def make_runner(ledger, backend, run_activity, assembler, recorder):
    def factory(base_cost=0.01, gateway=None):
        return AgentRunner(
            ledger, backend, run_activity,
            assembler=assembler,
            gateway=gateway,
            callbacks=[recorder],
            base_cost=base_cost,
            cost_per_input_char=0.0,
            cost_per_1k_tokens=0.002,
        )
    return factory


class TestRun:
    async def test_success_derives_cost_from_tokens(self, make_runner, agent, agent_config, repo, backend):
        result = await make_runner().run(
            agent, agent_config, {"task": "summarize"}, entity=EntityRef(kind="project", id="proj-1"),
        )
        assert result.success
        assert result.output == {"summary": "done"}
        assert result.tokens_used == 100
        assert result.cost == pytest.approx(0.0002)
        assert result.context_accessed == ["project_context", "client_context", "org_context"]

        cfg = await repo.get_agent_configuration(agent_config.id)
        assert cfg.current_month_spend == pytest.approx(0.0002)
        assert backend.calls[0]["context"].project_context["name"] == "Website Relaunch"

    async def test_backend_cost_wins(self, make_runner, agent, agent_config, backend):
        backend.cost = 0.05
        result = await make_runner().run(agent, agent_config, {})
        assert result.cost == 0.05
        assert result.context_accessed == []

    async def test_budget_denied_before_backend(self, make_runner, agent, agent_config, backend, run_activity):
        result = await make_runner(base_cost=20.0).run(agent, agent_config, {})
        assert not result.success
        assert result.error == BUDGET_EXCEEDED
        assert backend.calls == []
        assert run_activity.entries()[0].error == BUDGET_EXCEEDED

    async def test_backend_error_captured(self, make_runner, agent, agent_config, backend, repo):
        backend.error = RuntimeError("model overloaded")
        result = await make_runner().run(agent, agent_config, {})
        assert not result.success
        assert result.error == "model overloaded"
        cfg = await repo.get_agent_configuration(agent_config.id)
        assert cfg.current_month_spend == 0.0

    async def test_activity_and_event(self, make_runner, agent, agent_config, run_activity, recorder):
        await make_runner().run(agent, agent_config, {"task": "x"})
        entry = run_activity.entries()[0]
        assert entry.run_type == "agent_run"
        assert json.loads(entry.input) == {"task": "x"}
        assert json.loads(entry.output) == {"summary": "done"}
        assert entry.tokens_used == 100
        assert recorder.names() == ["agent_run"]

    async def test_uncapped_configuration(self, make_runner, agent, repo):
        cfg = await repo.save_agent_configuration(AgentConfiguration(team_id="team-acme", agent_id=agent.id))
        result = await make_runner(base_cost=1_000.0).run(agent, cfg, {})
        assert result.success


class TestToolPath:
    @pytest.fixture
    def gateway(self, ledger, repo):
        registry = ToolRegistry()
        registry.register(ToolDefinition(name="create_task", description="Create", category="tasks"), create_task)
        return ToolGateway(registry, ActivityLog(), ledger=ledger, repository=repo)

    async def test_tool_call_routed_through_gateway(self, make_runner, gateway, agent, agent_config, repo, backend):
        runner = make_runner(gateway=gateway)
        result = await runner.run(agent, agent_config, {"tool": "create_task", "tool_params": {"title": "Copy"}})
        assert result.success
        assert result.output == {
            "tool": "create_task",
            "status": "success",
            "data": {"id": "task-9", "title": "Copy"},
        }
        assert backend.calls == []
        cfg = await repo.get_agent_configuration(agent_config.id)
        assert cfg.current_month_spend == pytest.approx(0.01)

    async def test_denied_tool_is_unsuccessful(self, make_runner, gateway, agent, repo):
        cfg = await repo.save_agent_configuration(AgentConfiguration(team_id="team-acme", agent_id=agent.id))
        result = await make_runner(gateway=gateway).run(agent, cfg, {"tool": "create_task", "tool_params": {"title": "x"}})
        assert not result.success
        assert result.output["status"] == "denied"
        assert result.cost == 0.0
