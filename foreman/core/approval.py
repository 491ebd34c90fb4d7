"""Human-approval requests for paused workflow runs.

The approval inbox itself (listing, UI, notifications) lives outside this
core. This service creates the request record that points back at the
WorkflowRun, and later resumes or annotates the run when a person decides.
"""

import json
import logging
from typing import Optional

from foreman.callbacks.base import emit
from foreman.context.assembler import truncate_text
from foreman.core.workflow_engine import WorkflowEngine
from foreman.exceptions import ApprovalError, ApprovalNotFound
from foreman.types import (
    ApprovalRequest, ApprovalStatus, EntityKind, EntityRef, Urgency, WorkflowRun, utcnow,
)

logger = logging.getLogger(__name__)

PAUSE_REASON = "Awaiting human approval"
TITLE_PREFIX = "Agent action requires approval: "


class ApprovalService:
    """Creates and resolves approval requests against WorkflowRuns.

    Args:
        repository: Repository used for approval requests and agent lookups.
        workflows: WorkflowEngine used to pause and resume the run.
        callbacks: Async callables ``cb(event, data)``.
    """

    def __init__(self, repository, workflows: WorkflowEngine, callbacks: list = None):
        self.repository = repository
        self.workflows = workflows
        self.callbacks = callbacks or []

    async def request_approval(
        self,
        run: WorkflowRun,
        description: str,
        urgency: Urgency = Urgency.NORMAL,
    ) -> ApprovalRequest:
        """Pause ``run`` and raise an approval request pointing back at it.

        Raises:
            ApprovalError: run is already completed
        """
        run = await self.workflows.pause(run, PAUSE_REASON)
        if run.is_terminal:
            raise ApprovalError(f"Workflow run '{run.id}' is completed; approval not requested")
        agent = await self.repository.get_agent(run.agent_id) if run.agent_id else None
        agent_name = agent.name if agent else "Unknown Agent"

        request = await self.repository.create_approval_request(ApprovalRequest(
            team_id=run.team_id,
            title=TITLE_PREFIX + truncate_text(description, 50),
            content_preview=f"{agent_name} requests approval: {description}",
            full_content=self._full_content(run, agent_name, description),
            urgency=urgency,
            source_type="ai_agent",
            source_id=f"agent-{run.agent_id or 'unknown'}",
            source_name=agent_name,
            approvable=EntityRef(kind=EntityKind.WORKFLOW_RUN.value, id=run.id),
        ))
        await self.workflows.update_node(run, run.current_node, {
            "approval_request_id": request.id,
            "approval_requested_at": utcnow().isoformat(),
        })
        logger.info(
            f"Approval requested: workflow_run={run.id} request={request.id} agent={run.agent_id}"
        )
        await emit(self.callbacks, "approval_requested", {
            "approval_request_id": request.id,
            "workflow_run_id": run.id,
            "team_id": run.team_id,
            "agent_id": run.agent_id,
            "urgency": urgency.value,
        })
        return request

    async def handle_approval(
        self, request_id: str, approver_id: str, approver_name: str = "",
    ) -> ApprovalRequest:
        """Resume the run with approval data and mark the request approved."""
        request = await self._pending(request_id)
        run = await self._run_for(request)
        if run is not None:
            await self.workflows.resume(run, {
                "approved": True,
                "approver_id": approver_id,
                "approver_name": approver_name,
                "approved_at": utcnow().isoformat(),
            })
        request = await self.repository.update_approval_request(request.id, {
            "status": ApprovalStatus.APPROVED,
            "resolved_by": approver_id,
            "resolved_at": utcnow(),
        })
        logger.info(f"Approval {request.id} approved by {approver_id}")
        await self._fire_resolved(request, run)
        return request

    async def handle_rejection(self, request_id: str, rejector_id: str, reason: str) -> ApprovalRequest:
        """Record the rejection on the run's state data. The run stays paused."""
        request = await self._pending(request_id)
        run = await self._run_for(request)
        if run is not None:
            await self.workflows.update_node(run, run.current_node, {
                "rejected": True,
                "rejection_reason": reason,
                "rejected_by": rejector_id,
                "rejected_at": utcnow().isoformat(),
            })
        request = await self.repository.update_approval_request(request.id, {
            "status": ApprovalStatus.REJECTED,
            "resolved_by": rejector_id,
            "resolution_note": reason,
            "resolved_at": utcnow(),
        })
        logger.info(f"Approval {request.id} rejected by {rejector_id}: {reason}")
        await self._fire_resolved(request, run)
        return request

    async def find_pending_approval(self, run: WorkflowRun) -> Optional[ApprovalRequest]:
        return await self.repository.find_pending_approval(
            EntityRef(kind=EntityKind.WORKFLOW_RUN.value, id=run.id)
        )

    async def has_pending_approval(self, run: WorkflowRun) -> bool:
        return await self.find_pending_approval(run) is not None

    async def pending_approvals(self, team_id: str) -> list[ApprovalRequest]:
        return await self.repository.list_pending_approvals(team_id)

    # ── Internal ──

    async def _pending(self, request_id: str) -> ApprovalRequest:
        request = await self.repository.get_approval_request(request_id)
        if request is None:
            raise ApprovalNotFound(f"Approval request '{request_id}' not found", approval_id=request_id)
        if request.status != ApprovalStatus.PENDING:
            raise ApprovalError(
                f"Approval request '{request_id}' is already {request.status.value}",
                details={"approval_id": request_id},
            )
        return request

    async def _run_for(self, request: ApprovalRequest) -> Optional[WorkflowRun]:
        if request.approvable is None or request.approvable.kind != EntityKind.WORKFLOW_RUN.value:
            return None
        return await self.repository.get_workflow_run(request.approvable.id)

    @staticmethod
    def _full_content(run: WorkflowRun, agent_name: str, description: str) -> str:
        lines = [
            f"Agent: {agent_name}",
            f"Workflow: {run.workflow_kind}",
            f"Current Step: {run.current_node}",
            "",
            "Action Requiring Approval:",
            description,
            "",
        ]
        if "input" in run.state_data:
            lines.append("Input Data:")
            lines.append(json.dumps(run.state_data["input"], indent=2, default=str))
        return "\n".join(lines) + "\n"

    async def _fire_resolved(self, request: ApprovalRequest, run: Optional[WorkflowRun]) -> None:
        await emit(self.callbacks, "approval_resolved", {
            "approval_request_id": request.id,
            "workflow_run_id": run.id if run else None,
            "team_id": request.team_id,
            "status": request.status.value,
        })
