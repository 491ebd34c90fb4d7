"""Tests for ApprovalService: request, approve, reject."""

import pytest

from foreman.exceptions import ApprovalError, ApprovalNotFound
from foreman.types import ApprovalStatus, Urgency

TEAM_ID = "team-acme"


@pytest.fixture
async def paused_request(workflows, approvals, agent):
    run = await workflows.start("invoice_review", {"invoice_id": "inv-7"}, TEAM_ID, agent.id)
    run = await workflows.update_node(run, "draft_email")
    request = await approvals.request_approval(run, "Send invoice reminder to Globex", Urgency.HIGH)
    return run, request


async def test_request_pauses_run_and_builds_record(paused_request, workflows):
    run, request = paused_request
    stored = await workflows.get(run.id)
    assert stored.is_paused
    assert stored.pause_reason == "Awaiting human approval"
    assert stored.state_data["approval_request_id"] == request.id

    assert request.title == "Agent action requires approval: Send invoice reminder to Globex"
    assert request.content_preview == "PM Copilot requests approval: Send invoice reminder to Globex"
    assert request.source_type == "ai_agent"
    assert request.source_id == "agent-agent-pm"
    assert request.urgency == Urgency.HIGH
    assert request.approvable.kind == "workflow_run"
    assert request.approvable.id == run.id
    assert "Current Step: draft_email" in request.full_content
    assert '"invoice_id": "inv-7"' in request.full_content


async def test_long_description_truncated_in_title(workflows, approvals):
    run = await workflows.start("x", {}, TEAM_ID)
    request = await approvals.request_approval(run, "a" * 80)
    assert request.title == "Agent action requires approval: " + "a" * 47 + "..."
    assert request.source_name == "Unknown Agent"


async def test_approval_resumes_run(paused_request, approvals, workflows, recorder):
    run, request = paused_request
    resolved = await approvals.handle_approval(request.id, "user-1", "Dana")
    assert resolved.status == ApprovalStatus.APPROVED
    assert resolved.resolved_by == "user-1"

    stored = await workflows.get(run.id)
    assert not stored.is_paused
    assert stored.state_data["approval_data"]["approved"] is True
    assert stored.state_data["approval_data"]["approver_name"] == "Dana"
    assert recorder.names()[-1] == "approval_resolved"


async def test_rejection_leaves_run_paused(paused_request, approvals, workflows, activity, recorder):
    run, request = paused_request
    resolved = await approvals.handle_rejection(request.id, "user-1", "Too aggressive")
    assert resolved.status == ApprovalStatus.REJECTED
    assert resolved.resolution_note == "Too aggressive"

    stored = await workflows.get(run.id)
    assert stored.is_paused
    assert stored.state_data["rejected"] is True
    assert stored.state_data["rejection_reason"] == "Too aggressive"
    assert stored.state_data["rejected_by"] == "user-1"
    last_workflow_entry = activity.entries(run_type="workflow")[-1]
    assert last_workflow_entry.input == "invoice_review:node_updated"
    assert last_workflow_entry.output == "draft_email"
    assert recorder.names()[-2:] == ["workflow_node_updated", "approval_resolved"]


async def test_resolving_twice_raises(paused_request, approvals):
    _, request = paused_request
    await approvals.handle_approval(request.id, "user-1")
    with pytest.raises(ApprovalError, match="already approved"):
        await approvals.handle_rejection(request.id, "user-2", "late")


async def test_unknown_request(approvals):
    with pytest.raises(ApprovalNotFound):
        await approvals.handle_approval("missing", "user-1")


async def test_pending_queries(paused_request, approvals):
    run, request = paused_request
    assert await approvals.has_pending_approval(run) is True
    assert [r.id for r in await approvals.pending_approvals(TEAM_ID)] == [request.id]
    await approvals.handle_approval(request.id, "user-1")
    assert await approvals.has_pending_approval(run) is False


async def test_completed_run_gets_no_request(workflows, approvals):
    run = await workflows.start("invoice_review", {}, TEAM_ID)
    await workflows.complete(run, {"sent": True})
    with pytest.raises(ApprovalError, match="is completed"):
        await approvals.request_approval(run, "Send invoice reminder")
    assert await approvals.pending_approvals(TEAM_ID) == []
