"""Tests for WorkflowEngine lifecycle, customization and AgentWorkflow."""

import pytest

from foreman.core.workflow_engine import AgentWorkflow, COMPLETED_NODE
from foreman.exceptions import WorkflowRunNotFound
from foreman.types import WorkflowCustomization

TEAM_ID = "team-acme"


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestLifecycle:
    async def test_start(self, workflows, recorder, activity):
        run = await workflows.start("triage", {"task_id": "task-1"}, TEAM_ID, "agent-pm")
        assert run.current_node == "start"
        assert run.state_data["input"] == {"task_id": "task-1"}
        assert run.state_data["customization_id"] is None
        assert recorder.names() == ["workflow_started"]
        assert activity.entries()[0].input == "triage:started"

    async def test_pause_and_resume(self, workflows):
        run = await workflows.start("triage", {}, TEAM_ID)
        paused = await workflows.pause(run, "Needs a human")
        assert paused.is_paused
        assert paused.approval_required is True
        assert paused.pause_reason == "Needs a human"
        assert [r.id for r in await workflows.pending_approvals(TEAM_ID)] == [run.id]

        resumed = await workflows.resume(paused, {"approved": True})
        assert not resumed.is_paused
        assert resumed.resumed_at is not None
        assert resumed.approval_required is False
        assert resumed.state_data["approval_data"] == {"approved": True}
        assert await workflows.pending_approvals(TEAM_ID) == []

    async def test_update_node_merges_state(self, workflows):
        run = await workflows.start("triage", {"a": 1}, TEAM_ID)
        run = await workflows.update_node(run, "classify", {"label": "bug"})
        assert run.current_node == "classify"
        assert run.state_data["label"] == "bug"
        assert run.state_data["input"] == {"a": 1}

    async def test_complete(self, workflows, recorder):
        run = await workflows.start("triage", {}, TEAM_ID)
        done = await workflows.complete(run, {"label": "bug"})
        assert done.is_terminal
        assert done.current_node == COMPLETED_NODE
        assert done.state_data["result"] == {"label": "bug"}
        assert recorder.names()[-1] == "workflow_completed"

    async def test_transitions_after_completion_are_noops(self, workflows, recorder):
        run = await workflows.start("triage", {}, TEAM_ID)
        done = await workflows.complete(run, {"x": 1})
        fired = len(recorder.events)

        assert (await workflows.pause(done, "late")).paused_at is None
        assert (await workflows.resume(done)).state_data.get("approval_data") is None
        assert (await workflows.update_node(done, "other")).current_node == COMPLETED_NODE
        again = await workflows.complete(done, {"x": 2})
        assert again.state_data["result"] == {"x": 1}
        assert len(recorder.events) == fired

    async def test_get_missing(self, workflows):
        with pytest.raises(WorkflowRunNotFound):
            await workflows.get("missing")


# ── Customization ────────────────────────────────────────────────────────────


class TestCustomization:
    async def test_customization_stashed_and_consulted(self, workflows, repo):
        custom = await repo.save_customization(WorkflowCustomization(
            team_id=TEAM_ID, workflow_kind="triage", disabled_steps=["notify"], parameters={"tone": "brief"},
        ))
        run = await workflows.start("triage", {}, TEAM_ID)
        assert run.state_data["customization_id"] == custom.id
        assert await workflows.should_skip_step(run, "notify") is True
        assert await workflows.should_skip_step(run, "classify") is False
        assert await workflows.get_parameter(run, "tone") == "brief"
        assert await workflows.get_parameter(run, "missing", "x") == "x"

    async def test_disabled_customization_ignored(self, workflows, repo):
        await repo.save_customization(WorkflowCustomization(
            team_id=TEAM_ID, workflow_kind="triage", enabled=False, disabled_steps=["notify"],
        ))
        run = await workflows.start("triage", {}, TEAM_ID)
        assert await workflows.should_skip_step(run, "notify") is False
        assert await workflows.get_parameter(run, "tone", "default") == "default"


# ── AgentWorkflow ────────────────────────────────────────────────────────────


class TriageWorkflow(AgentWorkflow):
    kind = "triage"

    def __init__(self, engine, approvals=None):
        super().__init__(engine)
        self.approvals = approvals
        self.visited = []

    def define_steps(self):
        return {"classify": self.classify, "review": self.review, "notify": self.notify}

    async def classify(self, run):
        self.visited.append("classify")
        await self.engine.update_node(run, "classify", {"label": "bug"})

    async def review(self, run):
        self.visited.append("review")
        if self.approvals is not None and not run.state_data.get("approval_data"):
            await self.approvals.request_approval(run, "Reassign to design team")

    async def notify(self, run):
        self.visited.append("notify")


class TestAgentWorkflow:
    async def test_runs_all_steps_then_completes(self, workflows):
        flow = TriageWorkflow(workflows)
        await flow.start({}, TEAM_ID)
        run = await flow.run_to_pause()
        assert flow.visited == ["classify", "review", "notify"]
        assert run.is_terminal
        assert run.state_data["label"] == "bug"

    async def test_skips_disabled_step(self, workflows, repo):
        await repo.save_customization(WorkflowCustomization(
            team_id=TEAM_ID, workflow_kind="triage", disabled_steps=["review"],
        ))
        flow = TriageWorkflow(workflows)
        await flow.start({}, TEAM_ID)
        await flow.run_to_pause()
        assert flow.visited == ["classify", "notify"]

    async def test_pauses_for_approval_and_resumes(self, workflows, approvals):
        flow = TriageWorkflow(workflows, approvals)
        await flow.start({}, TEAM_ID)
        run = await flow.run_to_pause()
        assert run.is_paused
        assert flow.visited == ["classify", "review"]

        await flow.resume(run, {"approved": True})
        run = await flow.run_to_pause()
        assert run.is_terminal
        assert flow.visited == ["classify", "review", "notify"]

    async def test_not_started(self, workflows):
        with pytest.raises(RuntimeError):
            await TriageWorkflow(workflows).execute_next_step()
