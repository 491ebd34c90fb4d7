"""Persistence tests for the Repository against in-memory SQLite."""

from datetime import datetime, timedelta, timezone

from foreman.types import (
    ActivityEntry, AgentChain, AgentConfiguration, ApprovalRequest, ApprovalStatus, BranchRule,
    ChainExecutionStatus, ChainRun, ChainStepRecord, EntityRef, ExecutionMode, GlobalAISettings,
    GotoAction, StepConfig, StepStatus, WorkflowCustomization, WorkflowRun,
)

TEAM_ID = "team-acme"
AGENT_ID = "agent-pm"


# ── Agents & configuration ───────────────────────────────────────────────────


class TestConfiguration:
    async def test_agent_round_trip(self, repo, agent):
        loaded = await repo.get_agent(AGENT_ID)
        assert loaded.code == "pm_copilot"
        assert await repo.get_agent("nope") is None

    async def test_configuration_lookup(self, repo, agent_config):
        loaded = await repo.get_configuration_for(TEAM_ID, AGENT_ID)
        assert loaded.id == agent_config.id
        assert loaded.monthly_budget_cap == 10.0
        assert loaded.can_modify_tasks is True
        assert loaded.can_send_emails is False
        assert await repo.get_configuration_for("team-other", AGENT_ID) is None

    async def test_save_overwrites(self, repo, agent_config):
        await repo.save_agent_configuration(agent_config.model_copy(update={"can_send_emails": True}))
        loaded = await repo.get_agent_configuration(agent_config.id)
        assert loaded.can_send_emails is True

    async def test_add_spend_accumulates(self, repo, agent_config):
        await repo.add_spend(agent_config.id, 1.25)
        updated = await repo.add_spend(agent_config.id, 0.75)
        assert updated.daily_spend == 2.0
        assert updated.current_month_spend == 2.0

    async def test_add_spend_unknown_config(self, repo):
        assert await repo.add_spend("missing", 1.0) is None

    async def test_global_settings_round_trip(self, repo):
        assert await repo.get_global_settings(TEAM_ID) is None
        await repo.save_global_settings(GlobalAISettings(team_id=TEAM_ID, require_approval_financial=True))
        await repo.save_global_settings(
            GlobalAISettings(team_id=TEAM_ID, require_approval_financial=True, auto_approval_threshold=0.9)
        )
        loaded = await repo.get_global_settings(TEAM_ID)
        assert loaded.require_approval_financial is True
        assert loaded.auto_approval_threshold == 0.9


# ── Workflows ────────────────────────────────────────────────────────────────


class TestWorkflows:
    async def test_enabled_customization(self, repo):
        await repo.save_customization(WorkflowCustomization(team_id=TEAM_ID, workflow_kind="triage", enabled=False))
        assert await repo.find_enabled_customization(TEAM_ID, "triage") is None

        saved = await repo.save_customization(
            WorkflowCustomization(team_id=TEAM_ID, workflow_kind="triage", disabled_steps=["notify"])
        )
        found = await repo.find_enabled_customization(TEAM_ID, "triage")
        assert found.id == saved.id
        assert found.is_step_disabled("notify")

    async def test_runs_awaiting_approval(self, repo):
        now = datetime.now(timezone.utc)
        waiting = await repo.create_workflow_run(WorkflowRun(team_id=TEAM_ID, workflow_kind="triage"))
        await repo.update_workflow_run(waiting.id, {"paused_at": now, "approval_required": True})
        paused_only = await repo.create_workflow_run(WorkflowRun(team_id=TEAM_ID, workflow_kind="triage"))
        await repo.update_workflow_run(paused_only.id, {"paused_at": now})

        runs = await repo.list_runs_awaiting_approval(TEAM_ID)
        assert [r.id for r in runs] == [waiting.id]


# ── Chains ───────────────────────────────────────────────────────────────────


class TestChains:
    async def test_chain_round_trip(self, repo):
        chain = AgentChain(team_id=TEAM_ID, name="intake", steps=[
            StepConfig(
                agent_id=AGENT_ID,
                next_step_conditions=[BranchRule(condition='route == "x"', action=GotoAction(target_step=1))],
            ),
            StepConfig(agent_id="agent-qa", execution_mode=ExecutionMode.PARALLEL, step_group="review"),
        ])
        await repo.save_chain(chain)

        loaded = await repo.get_chain(chain.id)
        assert loaded.name == "intake"
        assert loaded.steps[0].next_step_conditions[0].action == GotoAction(target_step=1)
        assert loaded.steps[1].execution_mode == ExecutionMode.PARALLEL
        assert loaded.steps[1].step_group == "review"

    async def test_run_update_and_triggerable(self, repo):
        run = await repo.create_chain_run(ChainRun(
            team_id=TEAM_ID, chain_id="chain-1", triggerable=EntityRef(kind="task", id="task-1"),
        ))
        assert run.triggerable == EntityRef(kind="task", id="task-1")

        updated = await repo.update_chain_run(run.id, {
            "status": ChainExecutionStatus.PAUSED,
            "current_step_index": 1,
            "chain_context": {"accumulated_context": {"a": 1}},
        })
        assert updated.status == ChainExecutionStatus.PAUSED
        assert updated.current_step_index == 1
        assert updated.chain_context == {"accumulated_context": {"a": 1}}
        assert await repo.update_chain_run("missing", {"current_step_index": 2}) is None

    async def test_list_runs_by_status(self, repo):
        started = datetime.now(timezone.utc)
        running = await repo.create_chain_run(ChainRun(team_id=TEAM_ID, chain_id="c", started_at=started))
        done = await repo.create_chain_run(ChainRun(
            team_id=TEAM_ID, chain_id="c", status=ChainExecutionStatus.COMPLETED,
            started_at=started + timedelta(minutes=1),
        ))
        await repo.create_chain_run(ChainRun(team_id="team-other", chain_id="c", started_at=started))

        assert [r.id for r in await repo.list_chain_runs(TEAM_ID)] == [done.id, running.id]
        completed = await repo.list_chain_runs(TEAM_ID, status=ChainExecutionStatus.COMPLETED)
        assert [r.id for r in completed] == [done.id]

    async def test_step_records(self, repo):
        first = await repo.create_step_record(ChainStepRecord(
            chain_run_id="run-1", step_index=0, status=StepStatus.COMPLETED, output={"a": 1},
        ))
        await repo.create_step_record(ChainStepRecord(chain_run_id="run-1", step_index=0, status=StepStatus.FAILED))
        await repo.create_step_record(ChainStepRecord(chain_run_id="run-1", step_index=1))

        completed = await repo.get_step_record("run-1", 0, status=StepStatus.COMPLETED)
        assert completed.id == first.id
        assert completed.output == {"a": 1}
        assert await repo.get_step_record("run-1", 5) is None

        records = await repo.list_step_records("run-1", step_indices=[1])
        assert [r.step_index for r in records] == [1]
        assert len(await repo.list_step_records("run-1")) == 3

    async def test_step_record_workflow_link(self, repo):
        record = await repo.create_step_record(ChainStepRecord(chain_run_id="run-1", step_index=0))
        updated = await repo.update_step_record(record.id, {
            "status": StepStatus.RUNNING, "workflow_run_id": "wf-1",
        })
        assert updated.status == StepStatus.RUNNING
        assert updated.workflow_run_id == "wf-1"


# ── Approvals & activity ─────────────────────────────────────────────────────


class TestApprovalsAndActivity:
    async def test_find_pending_approval(self, repo):
        ref = EntityRef(kind="workflow_run", id="wf-1")
        request = await repo.create_approval_request(ApprovalRequest(team_id=TEAM_ID, title="Send invoice", approvable=ref))
        assert (await repo.find_pending_approval(ref)).id == request.id

        await repo.update_approval_request(request.id, {"status": ApprovalStatus.APPROVED, "resolved_by": "user-1"})
        assert await repo.find_pending_approval(ref) is None
        assert await repo.list_pending_approvals(TEAM_ID) == []
        assert (await repo.get_approval_request(request.id)).resolved_by == "user-1"

    async def test_activity_filters(self, repo):
        await repo.append_activity(ActivityEntry(team_id=TEAM_ID, agent_id=AGENT_ID, run_type="agent_run", cost=0.5))
        await repo.append_activity(ActivityEntry(
            team_id=TEAM_ID, agent_id=AGENT_ID, run_type="tool_execution", tool_calls=[{"tool": "create_task"}],
        ))
        await repo.append_activity(ActivityEntry(team_id=TEAM_ID, agent_id="agent-qa", run_type="agent_run"))

        assert len(await repo.list_activity(TEAM_ID)) == 3
        mine = await repo.list_activity(TEAM_ID, agent_id=AGENT_ID)
        assert [e.run_type for e in mine] == ["agent_run", "tool_execution"]
        tools = await repo.list_activity(TEAM_ID, run_type="tool_execution")
        assert tools[0].tool_calls == [{"tool": "create_task"}]
