"""Workflow engine: durable bookkeeping for single-agent workflow runs.

A WorkflowRun progresses through caller-defined checkpoint nodes. The engine
owns the lifecycle (start, pause, resume, complete, update_node); the
workflow's own logic lives in an ``AgentWorkflow`` subclass or in external
code that calls ``update_node`` as it progresses.

state_data uses reserved top-level keys per writer:
    input             start()
    customization_id  start()
    approval_data     resume()
    result            complete()
Anything else is merged by update_node().
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from foreman.callbacks.base import emit
from foreman.core.activity import ActivityLog
from foreman.exceptions import WorkflowRunNotFound
from foreman.types import ActivityEntry, WorkflowCustomization, WorkflowRun, utcnow

logger = logging.getLogger(__name__)

COMPLETED_NODE = "completed"


class WorkflowEngine:
    """Lifecycle transitions for WorkflowRuns.

    Every transition re-reads the run, applies the change and persists it as
    one unit. Transitions on a completed run are no-ops that return the
    stored run unchanged.

    Args:
        repository: Repository used for persistence.
        activity: ActivityLog receiving one entry per transition. Optional.
        callbacks: Async callables ``cb(event, data)`` fired after each transition.
    """

    def __init__(self, repository, activity: ActivityLog = None, callbacks: list = None):
        self.repository = repository
        self.activity = activity
        self.callbacks = callbacks or []

    # ── Lifecycle ──

    async def start(
        self,
        workflow_kind: str,
        input: dict,
        team_id: str,
        agent_id: Optional[str] = None,
    ) -> WorkflowRun:
        """Create a run at node ``start``, stashing any enabled customization id."""
        customization = await self.repository.find_enabled_customization(team_id, workflow_kind)
        run = WorkflowRun(
            team_id=team_id,
            agent_id=agent_id,
            workflow_kind=workflow_kind,
            state_data={
                "input": dict(input or {}),
                "customization_id": customization.id if customization else None,
                "started_at": utcnow().isoformat(),
            },
        )
        run = await self.repository.create_workflow_run(run)
        logger.info(f"Workflow run {run.id} started: kind={workflow_kind} team={team_id}")
        await self._record(run, "started")
        await self._fire("workflow_started", run)
        return run

    async def pause(self, run: WorkflowRun, reason: str) -> WorkflowRun:
        current = await self._load(run.id)
        if current.is_terminal:
            logger.warning(f"Workflow run {run.id} is completed; pause ignored")
            return current
        current = await self.repository.update_workflow_run(run.id, {
            "paused_at": utcnow(),
            "pause_reason": reason,
            "approval_required": True,
        })
        logger.info(f"Workflow run {run.id} paused: {reason}")
        await self._record(current, "paused", detail=reason)
        await self._fire("workflow_paused", current, reason=reason)
        return current

    async def resume(self, run: WorkflowRun, approval_data: Optional[dict] = None) -> WorkflowRun:
        current = await self._load(run.id)
        if current.is_terminal:
            logger.warning(f"Workflow run {run.id} is completed; resume ignored")
            return current
        state_data = {**current.state_data, "approval_data": dict(approval_data or {})}
        current = await self.repository.update_workflow_run(run.id, {
            "state_data": state_data,
            "resumed_at": utcnow(),
            "paused_at": None,
            "pause_reason": None,
            "approval_required": False,
        })
        logger.info(f"Workflow run {run.id} resumed")
        await self._record(current, "resumed")
        await self._fire("workflow_resumed", current)
        return current

    async def complete(self, run: WorkflowRun, result: Optional[dict] = None) -> WorkflowRun:
        current = await self._load(run.id)
        if current.is_terminal:
            logger.warning(f"Workflow run {run.id} already completed")
            return current
        state_data = {**current.state_data, "result": dict(result or {})}
        current = await self.repository.update_workflow_run(run.id, {
            "state_data": state_data,
            "current_node": COMPLETED_NODE,
            "completed_at": utcnow(),
        })
        logger.info(f"Workflow run {run.id} completed")
        await self._record(current, "completed")
        await self._fire("workflow_completed", current)
        return current

    async def update_node(self, run: WorkflowRun, node: str, data: Optional[dict] = None) -> WorkflowRun:
        """Advance the checkpoint label and merge ``data`` into state_data."""
        current = await self._load(run.id)
        if current.is_terminal:
            logger.warning(f"Workflow run {run.id} is completed; node update to '{node}' ignored")
            return current
        current = await self.repository.update_workflow_run(run.id, {
            "current_node": node,
            "state_data": {**current.state_data, **(data or {})},
        })
        logger.debug(f"Workflow run {run.id} at node '{node}'")
        await self._record(current, "node_updated", detail=node)
        await self._fire("workflow_node_updated", current, node=node)
        return current

    # ── Customization ──

    async def load_customization(self, run: WorkflowRun) -> Optional[WorkflowCustomization]:
        customization_id = run.state_data.get("customization_id")
        if not customization_id:
            return None
        return await self.repository.get_customization(customization_id)

    async def should_skip_step(self, run: WorkflowRun, step_name: str) -> bool:
        customization = await self.load_customization(run)
        return customization is not None and customization.is_step_disabled(step_name)

    async def get_parameter(self, run: WorkflowRun, key: str, default: Any = None) -> Any:
        customization = await self.load_customization(run)
        if customization is None:
            return default
        return customization.parameters.get(key, default)

    # ── Queries ──

    async def get(self, run_id: str) -> WorkflowRun:
        return await self._load(run_id)

    async def pending_approvals(self, team_id: str) -> list[WorkflowRun]:
        """Paused runs of a team that are waiting on a human."""
        return await self.repository.list_runs_awaiting_approval(team_id)

    # ── Internal ──

    async def _load(self, run_id: str) -> WorkflowRun:
        run = await self.repository.get_workflow_run(run_id)
        if run is None:
            raise WorkflowRunNotFound(f"Workflow run '{run_id}' not found", workflow_run_id=run_id)
        return run

    async def _record(self, run: WorkflowRun, transition: str, detail: str = None) -> None:
        if self.activity is None:
            return
        await self.activity.append(ActivityEntry(
            team_id=run.team_id,
            agent_id=run.agent_id,
            run_type="workflow",
            input=f"{run.workflow_kind}:{transition}",
            output=detail,
        ))

    async def _fire(self, event: str, run: WorkflowRun, **extra: Any) -> None:
        await emit(self.callbacks, event, {
            "workflow_run_id": run.id,
            "team_id": run.team_id,
            "agent_id": run.agent_id,
            "workflow_kind": run.workflow_kind,
            "node": run.current_node,
            **extra,
        })


StepHandler = Callable[[WorkflowRun], Awaitable[Any]]


class AgentWorkflow:
    """Base class for workflows expressed as an ordered list of named steps.

    Subclasses implement ``define_steps`` returning ``{node_name: handler}`` in
    execution order. Each handler receives the current run; it may pause the
    run (e.g. via ApprovalService) or complete it. Steps disabled by the
    team's customization are skipped.

        class TriageWorkflow(AgentWorkflow):
            kind = "triage"

            def define_steps(self):
                return {"classify": self.classify, "route": self.route}
    """

    kind: str = ""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self.run: Optional[WorkflowRun] = None

    def define_steps(self) -> dict[str, StepHandler]:
        raise NotImplementedError

    async def start(self, input: dict, team_id: str, agent_id: Optional[str] = None) -> WorkflowRun:
        self.run = await self.engine.start(self.kind, input, team_id, agent_id)
        return self.run

    async def resume(self, run: WorkflowRun, approval_data: Optional[dict] = None) -> WorkflowRun:
        self.run = await self.engine.resume(run, approval_data)
        return self.run

    async def execute_next_step(self) -> bool:
        """Run the step after the current node.

        Returns:
            True if the workflow can continue, False once paused or completed.
        """
        if self.run is None:
            raise RuntimeError("Workflow has not been started")
        self.run = await self.engine.get(self.run.id)
        if self.run.is_terminal or self.run.is_paused:
            return False

        steps = self.define_steps()
        names = list(steps)
        while True:
            position = names.index(self.run.current_node) if self.run.current_node in names else -1
            if position + 1 >= len(names):
                self.run = await self.engine.complete(self.run)
                return False
            next_name = names[position + 1]
            self.run = await self.engine.update_node(self.run, next_name)
            if not await self.engine.should_skip_step(self.run, next_name):
                break
            logger.info(f"Workflow run {self.run.id}: step '{next_name}' disabled by customization")

        await steps[next_name](self.run)
        self.run = await self.engine.get(self.run.id)
        return not self.run.is_paused and not self.run.is_terminal

    async def run_to_pause(self) -> WorkflowRun:
        """Execute steps until the workflow pauses or completes."""
        while await self.execute_next_step():
            pass
        return self.run
