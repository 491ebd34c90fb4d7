"""All ORM models. These map 1:1 to the Pydantic types but are SQLAlchemy models.

Tables: agents, agent_configurations, global_ai_settings, workflow_customizations,
workflow_runs, agent_chains, chain_runs, chain_step_records, agent_memories,
approval_requests, activity_logs.
All team-owned tables carry team_id. Polymorphic pointers are (type, id) column pairs.
"""

from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Boolean, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class AgentModel(Base):
    __tablename__ = "agents"
    id = Column(String, primary_key=True, default=_uuid)
    code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=_now)


class AgentConfigurationModel(Base):
    __tablename__ = "agent_configurations"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False)
    enabled = Column(Boolean, default=True)
    monthly_budget_cap = Column(Float, nullable=True)
    daily_spend = Column(Float, nullable=False, default=0.0)
    current_month_spend = Column(Float, nullable=False, default=0.0)
    can_modify_tasks = Column(Boolean, default=False)
    can_create_work_orders = Column(Boolean, default=False)
    can_access_client_data = Column(Boolean, default=False)
    can_send_emails = Column(Boolean, default=False)
    can_modify_deliverables = Column(Boolean, default=False)
    can_access_financial_data = Column(Boolean, default=False)
    can_modify_playbooks = Column(Boolean, default=False)
    tool_permissions = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (UniqueConstraint("team_id", "agent_id", name="uq_agent_config_team_agent"),)


class GlobalAISettingsModel(Base):
    __tablename__ = "global_ai_settings"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, unique=True)
    total_monthly_budget = Column(Float, default=0.0)
    current_month_spend = Column(Float, default=0.0)
    require_approval_external_sends = Column(Boolean, default=False)
    require_approval_financial = Column(Boolean, default=False)
    require_approval_contracts = Column(Boolean, default=False)
    require_approval_scope_changes = Column(Boolean, default=False)
    approval_client_facing_content = Column(Boolean, default=False)
    approval_financial_data = Column(Boolean, default=False)
    approval_contractual_changes = Column(Boolean, default=False)
    approval_work_order_creation = Column(Boolean, default=False)
    approval_task_assignment = Column(Boolean, default=False)
    auto_approval_threshold = Column(Float, default=0.8)


class WorkflowCustomizationModel(Base):
    __tablename__ = "workflow_customizations"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    workflow_kind = Column(String, nullable=False)
    enabled = Column(Boolean, default=True)
    disabled_steps = Column(JSON, default=list)
    parameters = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_customization_team_kind", "team_id", "workflow_kind"),)


# ── Runs ─────────────────────────────────────────────────────────────────────


class WorkflowRunModel(Base):
    __tablename__ = "workflow_runs"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=True)
    workflow_kind = Column(String, nullable=False)
    current_node = Column(String, nullable=False, default="start")
    state_data = Column(JSON, default=dict)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    pause_reason = Column(Text, nullable=True)
    approval_required = Column(Boolean, default=False)
    resumed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_workflow_run_team_approval", "team_id", "approval_required"),)


class AgentChainModel(Base):
    __tablename__ = "agent_chains"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    steps = Column(JSON, nullable=False, default=list)
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class ChainRunModel(Base):
    __tablename__ = "chain_runs"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    chain_id = Column(String, ForeignKey("agent_chains.id"), nullable=False, index=True)
    current_step_index = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="running")
    chain_context = Column(JSON, default=dict)
    triggerable_type = Column(String, nullable=True)
    triggerable_id = Column(String, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    resumed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (Index("ix_chain_run_team_status", "team_id", "status"),)


class ChainStepRecordModel(Base):
    __tablename__ = "chain_step_records"
    id = Column(String, primary_key=True, default=_uuid)
    chain_run_id = Column(String, ForeignKey("chain_runs.id"), nullable=False, index=True)
    step_index = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    output = Column(JSON, default=dict)
    workflow_run_type = Column(String, nullable=True)
    workflow_run_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_step_record_run_index", "chain_run_id", "step_index"),)


# ── Memory ───────────────────────────────────────────────────────────────────


class AgentMemoryModel(Base):
    __tablename__ = "agent_memories"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False)
    agent_id = Column(String, nullable=True)
    scope = Column(String, nullable=False)          # MemoryScope value
    scope_id = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("team_id", "scope", "scope_id", "key", name="uq_memory_team_scope_key"),
        Index("ix_memory_expires", "expires_at"),
    )


# ── Approvals & activity ─────────────────────────────────────────────────────


class ApprovalRequestModel(Base):
    __tablename__ = "approval_requests"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    content_preview = Column(Text, default="")
    full_content = Column(Text, default="")
    urgency = Column(String, default="normal")
    source_type = Column(String, default="agent")
    source_id = Column(String, nullable=True)
    source_name = Column(String, default="")
    approvable_type = Column(String, nullable=True)
    approvable_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    resolved_by = Column(String, nullable=True)
    resolution_note = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_approval_approvable", "approvable_type", "approvable_id", "status"),)


class ActivityLogModel(Base):
    __tablename__ = "activity_logs"
    id = Column(String, primary_key=True, default=_uuid)
    team_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=True, index=True)
    run_type = Column(String, nullable=False)
    input = Column(Text, nullable=True)
    output = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    tool_calls = Column(JSON, default=list)
    context_accessed = Column(JSON, default=list)
    tokens_used = Column(Integer, default=0)
    cost = Column(Float, default=0.0)
    duration_ms = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=_now)
