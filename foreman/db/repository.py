"""Data access layer. Every query is team-scoped where the table is team-owned.

This is the ONLY layer that talks to the database.
Each mutating method is one read-modify-write committed as a single unit.
Methods return Pydantic shapes from foreman.types, never ORM rows.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, update, or_

from foreman.db.models import (
    AgentModel, AgentConfigurationModel, GlobalAISettingsModel, WorkflowCustomizationModel,
    WorkflowRunModel, AgentChainModel, ChainRunModel, ChainStepRecordModel,
    AgentMemoryModel, ApprovalRequestModel, ActivityLogModel,
)
from foreman.types import (
    Agent, AgentConfiguration, GlobalAISettings, WorkflowCustomization,
    WorkflowRun, AgentChain, ChainRun, ChainStepRecord, ChainExecutionStatus, StepStatus,
    MemoryEntry, MemoryScope, ApprovalRequest, ApprovalStatus, Urgency, ActivityEntry, EntityRef,
    EntityKind,
)


def _column_values(updates: dict) -> dict:
    """Unwrap enums so values can be written to plain String columns."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in updates.items()}


def _ref(kind: Optional[str], ref_id: Optional[str]) -> Optional[EntityRef]:
    if kind is None or ref_id is None:
        return None
    return EntityRef(kind=kind, id=ref_id)


class Repository:
    """All database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_row(self, model, row_id: str):
        result = await self.session.execute(select(model).where(model.id == row_id))
        return result.scalar_one_or_none()

    # ── Agents ──
    @staticmethod
    def _model_to_agent(m: AgentModel) -> Agent:
        return Agent(id=m.id, code=m.code, name=m.name, description=m.description or "")

    async def create_agent(self, agent: Agent) -> Agent:
        """Persist a new agent."""
        record = AgentModel(id=agent.id, code=agent.code, name=agent.name, description=agent.description)
        self.session.add(record)
        await self.session.commit()
        return agent

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        """Get agent by ID."""
        m = await self._get_row(AgentModel, agent_id)
        return self._model_to_agent(m) if m is not None else None

    # ── Agent configurations ──
    @staticmethod
    def _model_to_configuration(m: AgentConfigurationModel) -> AgentConfiguration:
        return AgentConfiguration(
            id=m.id,
            team_id=m.team_id,
            agent_id=m.agent_id,
            enabled=bool(m.enabled),
            monthly_budget_cap=m.monthly_budget_cap,
            daily_spend=m.daily_spend or 0.0,
            current_month_spend=m.current_month_spend or 0.0,
            can_modify_tasks=bool(m.can_modify_tasks),
            can_create_work_orders=bool(m.can_create_work_orders),
            can_access_client_data=bool(m.can_access_client_data),
            can_send_emails=bool(m.can_send_emails),
            can_modify_deliverables=bool(m.can_modify_deliverables),
            can_access_financial_data=bool(m.can_access_financial_data),
            can_modify_playbooks=bool(m.can_modify_playbooks),
            tool_permissions=m.tool_permissions or {},
        )

    async def save_agent_configuration(self, cfg: AgentConfiguration) -> AgentConfiguration:
        """Create or overwrite an agent configuration."""
        record = await self._get_row(AgentConfigurationModel, cfg.id)
        if record is None:
            record = AgentConfigurationModel(id=cfg.id)
            self.session.add(record)
        for key, value in cfg.model_dump(exclude={"id"}).items():
            setattr(record, key, value)
        await self.session.commit()
        return cfg

    async def get_agent_configuration(self, config_id: str) -> Optional[AgentConfiguration]:
        """Get configuration by ID."""
        m = await self._get_row(AgentConfigurationModel, config_id)
        return self._model_to_configuration(m) if m is not None else None

    async def get_configuration_for(self, team_id: str, agent_id: str) -> Optional[AgentConfiguration]:
        """Get the configuration for one (team, agent) pair."""
        result = await self.session.execute(
            select(AgentConfigurationModel).where(
                AgentConfigurationModel.team_id == team_id,
                AgentConfigurationModel.agent_id == agent_id,
            )
        )
        m = result.scalar_one_or_none()
        return self._model_to_configuration(m) if m is not None else None

    async def add_spend(self, config_id: str, cost: float) -> Optional[AgentConfiguration]:
        """Increment daily and monthly spend in one UPDATE.

        The increment is evaluated by the database, so concurrent deductions
        accumulate without a read-modify-write race.
        """
        await self.session.execute(
            update(AgentConfigurationModel)
            .where(AgentConfigurationModel.id == config_id)
            .values(
                daily_spend=AgentConfigurationModel.daily_spend + cost,
                current_month_spend=AgentConfigurationModel.current_month_spend + cost,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        m = await self._get_row(AgentConfigurationModel, config_id)
        if m is None:
            return None
        await self.session.refresh(m)
        return self._model_to_configuration(m)

    # ── Global AI settings ──
    async def save_global_settings(self, settings: GlobalAISettings) -> GlobalAISettings:
        """Create or overwrite the settings row for a team."""
        result = await self.session.execute(
            select(GlobalAISettingsModel).where(GlobalAISettingsModel.team_id == settings.team_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = GlobalAISettingsModel(team_id=settings.team_id)
            self.session.add(record)
        for key, value in settings.model_dump(exclude={"team_id"}).items():
            setattr(record, key, value)
        await self.session.commit()
        return settings

    async def get_global_settings(self, team_id: str) -> Optional[GlobalAISettings]:
        result = await self.session.execute(
            select(GlobalAISettingsModel).where(GlobalAISettingsModel.team_id == team_id)
        )
        m = result.scalar_one_or_none()
        if m is None:
            return None
        return GlobalAISettings.model_validate(
            {c.name: getattr(m, c.name) for c in GlobalAISettingsModel.__table__.columns if c.name != "id"}
        )

    # ── Workflow customizations ──
    @staticmethod
    def _model_to_customization(m: WorkflowCustomizationModel) -> WorkflowCustomization:
        return WorkflowCustomization(
            id=m.id,
            team_id=m.team_id,
            workflow_kind=m.workflow_kind,
            enabled=bool(m.enabled),
            disabled_steps=list(m.disabled_steps or []),
            parameters=dict(m.parameters or {}),
        )

    async def save_customization(self, customization: WorkflowCustomization) -> WorkflowCustomization:
        record = WorkflowCustomizationModel(**customization.model_dump())
        self.session.add(record)
        await self.session.commit()
        return customization

    async def get_customization(self, customization_id: str) -> Optional[WorkflowCustomization]:
        m = await self._get_row(WorkflowCustomizationModel, customization_id)
        return self._model_to_customization(m) if m is not None else None

    async def find_enabled_customization(self, team_id: str, workflow_kind: str) -> Optional[WorkflowCustomization]:
        """Most recent enabled customization for (team, workflow kind)."""
        result = await self.session.execute(
            select(WorkflowCustomizationModel)
            .where(
                WorkflowCustomizationModel.team_id == team_id,
                WorkflowCustomizationModel.workflow_kind == workflow_kind,
                WorkflowCustomizationModel.enabled.is_(True),
            )
            .order_by(WorkflowCustomizationModel.created_at.desc())
            .limit(1)
        )
        m = result.scalar_one_or_none()
        return self._model_to_customization(m) if m is not None else None

    # ── Workflow runs ──
    @staticmethod
    def _model_to_workflow_run(m: WorkflowRunModel) -> WorkflowRun:
        return WorkflowRun(
            id=m.id,
            team_id=m.team_id,
            agent_id=m.agent_id,
            workflow_kind=m.workflow_kind,
            current_node=m.current_node,
            state_data=dict(m.state_data or {}),
            paused_at=m.paused_at,
            pause_reason=m.pause_reason,
            approval_required=bool(m.approval_required),
            resumed_at=m.resumed_at,
            completed_at=m.completed_at,
            created_at=m.created_at,
        )

    async def create_workflow_run(self, run: WorkflowRun) -> WorkflowRun:
        """Persist a new workflow run."""
        record = WorkflowRunModel(**run.model_dump())
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_workflow_run(record)

    async def get_workflow_run(self, run_id: str) -> Optional[WorkflowRun]:
        m = await self._get_row(WorkflowRunModel, run_id)
        return self._model_to_workflow_run(m) if m is not None else None

    async def update_workflow_run(self, run_id: str, updates: dict) -> Optional[WorkflowRun]:
        """Apply ``updates`` to one workflow run and commit."""
        record = await self._get_row(WorkflowRunModel, run_id)
        if record is None:
            return None
        for key, value in _column_values(updates).items():
            setattr(record, key, value)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_workflow_run(record)

    async def list_runs_awaiting_approval(self, team_id: str) -> list[WorkflowRun]:
        """Paused, not completed runs flagged approval-required."""
        result = await self.session.execute(
            select(WorkflowRunModel)
            .where(
                WorkflowRunModel.team_id == team_id,
                WorkflowRunModel.approval_required.is_(True),
                WorkflowRunModel.paused_at.is_not(None),
                WorkflowRunModel.completed_at.is_(None),
            )
            .order_by(WorkflowRunModel.paused_at)
        )
        return [self._model_to_workflow_run(m) for m in result.scalars().all()]

    # ── Chains ──
    @staticmethod
    def _model_to_chain(m: AgentChainModel) -> AgentChain:
        return AgentChain(
            id=m.id,
            team_id=m.team_id,
            name=m.name,
            description=m.description or "",
            steps=list(m.steps or []),
            enabled=bool(m.enabled),
        )

    async def save_chain(self, chain: AgentChain) -> AgentChain:
        """Persist a chain definition."""
        record = AgentChainModel(
            id=chain.id,
            team_id=chain.team_id,
            name=chain.name,
            description=chain.description,
            steps=[s.model_dump(mode="json") for s in chain.steps],
            enabled=chain.enabled,
        )
        self.session.add(record)
        await self.session.commit()
        return chain

    async def get_chain(self, chain_id: str) -> Optional[AgentChain]:
        m = await self._get_row(AgentChainModel, chain_id)
        return self._model_to_chain(m) if m is not None else None

    # ── Chain runs ──
    @staticmethod
    def _model_to_chain_run(m: ChainRunModel) -> ChainRun:
        return ChainRun(
            id=m.id,
            team_id=m.team_id,
            chain_id=m.chain_id,
            current_step_index=m.current_step_index,
            status=ChainExecutionStatus(m.status),
            chain_context=dict(m.chain_context or {}),
            triggerable=_ref(m.triggerable_type, m.triggerable_id),
            started_at=m.started_at,
            paused_at=m.paused_at,
            resumed_at=m.resumed_at,
            completed_at=m.completed_at,
            failed_at=m.failed_at,
            error_message=m.error_message,
        )

    async def create_chain_run(self, run: ChainRun) -> ChainRun:
        """Persist a new chain run."""
        data = run.model_dump(exclude={"triggerable"})
        record = ChainRunModel(
            **_column_values(data),
            triggerable_type=run.triggerable.kind if run.triggerable else None,
            triggerable_id=run.triggerable.id if run.triggerable else None,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_chain_run(record)

    async def get_chain_run(self, run_id: str) -> Optional[ChainRun]:
        m = await self._get_row(ChainRunModel, run_id)
        return self._model_to_chain_run(m) if m is not None else None

    async def update_chain_run(self, run_id: str, updates: dict) -> Optional[ChainRun]:
        """Apply ``updates`` (index, status, context, timestamps) in one commit."""
        record = await self._get_row(ChainRunModel, run_id)
        if record is None:
            return None
        for key, value in _column_values(updates).items():
            setattr(record, key, value)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_chain_run(record)

    async def list_chain_runs(
        self,
        team_id: str,
        status: Optional[ChainExecutionStatus] = None,
        limit: int = 100,
    ) -> list[ChainRun]:
        query = select(ChainRunModel).where(ChainRunModel.team_id == team_id)
        if status is not None:
            query = query.where(ChainRunModel.status == status.value)
        result = await self.session.execute(query.order_by(ChainRunModel.started_at.desc()).limit(limit))
        return [self._model_to_chain_run(m) for m in result.scalars().all()]

    # ── Chain step records ──
    @staticmethod
    def _model_to_step_record(m: ChainStepRecordModel) -> ChainStepRecord:
        return ChainStepRecord(
            id=m.id,
            chain_run_id=m.chain_run_id,
            step_index=m.step_index,
            status=StepStatus(m.status),
            started_at=m.started_at,
            completed_at=m.completed_at,
            output=dict(m.output or {}),
            workflow_run_id=m.workflow_run_id,
        )

    async def create_step_record(self, record: ChainStepRecord) -> ChainStepRecord:
        row = ChainStepRecordModel(
            **_column_values(record.model_dump()),
            workflow_run_type=EntityKind.WORKFLOW_RUN.value if record.workflow_run_id else None,
        )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return self._model_to_step_record(row)

    async def get_step_record(
        self,
        chain_run_id: str,
        step_index: int,
        status: Optional[StepStatus] = None,
    ) -> Optional[ChainStepRecord]:
        """Latest record for a step index, optionally filtered by status."""
        query = select(ChainStepRecordModel).where(
            ChainStepRecordModel.chain_run_id == chain_run_id,
            ChainStepRecordModel.step_index == step_index,
        )
        if status is not None:
            query = query.where(ChainStepRecordModel.status == status.value)
        result = await self.session.execute(
            query.order_by(ChainStepRecordModel.created_at.desc()).limit(1)
        )
        m = result.scalars().first()
        return self._model_to_step_record(m) if m is not None else None

    async def update_step_record(self, record_id: str, updates: dict) -> Optional[ChainStepRecord]:
        row = await self._get_row(ChainStepRecordModel, record_id)
        if row is None:
            return None
        values = _column_values(updates)
        if values.get("workflow_run_id"):
            values["workflow_run_type"] = EntityKind.WORKFLOW_RUN.value
        for key, value in values.items():
            setattr(row, key, value)
        await self.session.commit()
        await self.session.refresh(row)
        return self._model_to_step_record(row)

    async def list_step_records(
        self,
        chain_run_id: str,
        step_indices: Optional[list[int]] = None,
    ) -> list[ChainStepRecord]:
        query = select(ChainStepRecordModel).where(ChainStepRecordModel.chain_run_id == chain_run_id)
        if step_indices is not None:
            query = query.where(ChainStepRecordModel.step_index.in_(step_indices))
        result = await self.session.execute(
            query.order_by(ChainStepRecordModel.step_index, ChainStepRecordModel.created_at)
        )
        return [self._model_to_step_record(m) for m in result.scalars().all()]

    # ── Memory ──
    @staticmethod
    def _model_to_memory(m: AgentMemoryModel) -> MemoryEntry:
        return MemoryEntry(
            id=m.id,
            team_id=m.team_id,
            scope=MemoryScope(m.scope),
            scope_id=m.scope_id,
            key=m.key,
            value=m.value,
            agent_id=m.agent_id,
            expires_at=m.expires_at,
            deleted_at=m.deleted_at,
            created_at=m.created_at,
            updated_at=m.updated_at,
        )

    @staticmethod
    def _visible(now: datetime):
        return (
            AgentMemoryModel.deleted_at.is_(None),
            or_(AgentMemoryModel.expires_at.is_(None), AgentMemoryModel.expires_at > now),
        )

    async def upsert_memory(
        self,
        team_id: str,
        scope: MemoryScope,
        scope_id: str,
        key: str,
        value: Any,
        agent_id: Optional[str],
        expires_at: Optional[datetime],
    ) -> MemoryEntry:
        """Insert or overwrite one memory row. Revives a tombstoned row."""
        result = await self.session.execute(
            select(AgentMemoryModel).where(
                AgentMemoryModel.team_id == team_id,
                AgentMemoryModel.scope == scope.value,
                AgentMemoryModel.scope_id == scope_id,
                AgentMemoryModel.key == key,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = AgentMemoryModel(team_id=team_id, scope=scope.value, scope_id=scope_id, key=key)
            self.session.add(record)
        record.value = value
        record.agent_id = agent_id
        record.expires_at = expires_at
        record.deleted_at = None
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_memory(record)

    async def get_memory(
        self, team_id: str, scope: MemoryScope, scope_id: str, key: str, now: datetime,
    ) -> Optional[MemoryEntry]:
        """Visible (not tombstoned, not expired) memory row."""
        result = await self.session.execute(
            select(AgentMemoryModel).where(
                AgentMemoryModel.team_id == team_id,
                AgentMemoryModel.scope == scope.value,
                AgentMemoryModel.scope_id == scope_id,
                AgentMemoryModel.key == key,
                *self._visible(now),
            )
        )
        m = result.scalar_one_or_none()
        return self._model_to_memory(m) if m is not None else None

    async def list_memories(
        self, team_id: str, scope: MemoryScope, now: datetime, scope_id: Optional[str] = None,
    ) -> list[MemoryEntry]:
        """Visible rows for one scope instance, or every instance of a scope level."""
        query = select(AgentMemoryModel).where(
            AgentMemoryModel.team_id == team_id,
            AgentMemoryModel.scope == scope.value,
            *self._visible(now),
        )
        if scope_id is not None:
            query = query.where(AgentMemoryModel.scope_id == scope_id)
        result = await self.session.execute(query.order_by(AgentMemoryModel.key))
        return [self._model_to_memory(m) for m in result.scalars().all()]

    async def tombstone_memory(
        self, team_id: str, scope: MemoryScope, scope_id: str, key: str, now: datetime,
    ) -> bool:
        """Soft-delete one row. Returns True if a live row was tombstoned."""
        result = await self.session.execute(
            update(AgentMemoryModel)
            .where(
                AgentMemoryModel.team_id == team_id,
                AgentMemoryModel.scope == scope.value,
                AgentMemoryModel.scope_id == scope_id,
                AgentMemoryModel.key == key,
                AgentMemoryModel.deleted_at.is_(None),
            )
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return (result.rowcount or 0) > 0

    async def delete_memories_for_scope(self, team_id: str, scope: MemoryScope, scope_id: str) -> int:
        """Hard-delete every row of one scope instance. Returns rows removed."""
        result = await self.session.execute(
            delete(AgentMemoryModel).where(
                AgentMemoryModel.team_id == team_id,
                AgentMemoryModel.scope == scope.value,
                AgentMemoryModel.scope_id == scope_id,
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    async def delete_expired_memories(self, now: datetime) -> int:
        """Hard-delete every row whose expiry has passed."""
        result = await self.session.execute(
            delete(AgentMemoryModel).where(
                AgentMemoryModel.expires_at.is_not(None),
                AgentMemoryModel.expires_at <= now,
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    # ── Approval requests ──
    @staticmethod
    def _model_to_approval(m: ApprovalRequestModel) -> ApprovalRequest:
        return ApprovalRequest(
            id=m.id,
            team_id=m.team_id,
            title=m.title,
            content_preview=m.content_preview or "",
            full_content=m.full_content or "",
            urgency=Urgency(m.urgency),
            source_type=m.source_type,
            source_id=m.source_id,
            source_name=m.source_name or "",
            approvable=_ref(m.approvable_type, m.approvable_id),
            status=ApprovalStatus(m.status),
            resolved_by=m.resolved_by,
            resolution_note=m.resolution_note,
            resolved_at=m.resolved_at,
            created_at=m.created_at,
        )

    async def create_approval_request(self, request: ApprovalRequest) -> ApprovalRequest:
        data = request.model_dump(exclude={"approvable"})
        record = ApprovalRequestModel(
            **_column_values(data),
            approvable_type=request.approvable.kind if request.approvable else None,
            approvable_id=request.approvable.id if request.approvable else None,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_approval(record)

    async def get_approval_request(self, request_id: str) -> Optional[ApprovalRequest]:
        m = await self._get_row(ApprovalRequestModel, request_id)
        return self._model_to_approval(m) if m is not None else None

    async def update_approval_request(self, request_id: str, updates: dict) -> Optional[ApprovalRequest]:
        record = await self._get_row(ApprovalRequestModel, request_id)
        if record is None:
            return None
        for key, value in _column_values(updates).items():
            setattr(record, key, value)
        await self.session.commit()
        await self.session.refresh(record)
        return self._model_to_approval(record)

    async def find_pending_approval(self, approvable: EntityRef) -> Optional[ApprovalRequest]:
        """Most recent pending request pointing at ``approvable``."""
        result = await self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.approvable_type == approvable.kind,
                ApprovalRequestModel.approvable_id == approvable.id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            )
            .order_by(ApprovalRequestModel.created_at.desc())
            .limit(1)
        )
        m = result.scalars().first()
        return self._model_to_approval(m) if m is not None else None

    async def list_pending_approvals(self, team_id: str) -> list[ApprovalRequest]:
        result = await self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.team_id == team_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            )
            .order_by(ApprovalRequestModel.created_at)
        )
        return [self._model_to_approval(m) for m in result.scalars().all()]

    # ── Activity log ──
    async def append_activity(self, entry: ActivityEntry) -> ActivityEntry:
        """Append one activity record. Rows are never updated."""
        record = ActivityLogModel(**entry.model_dump())
        self.session.add(record)
        await self.session.commit()
        return entry

    async def list_activity(
        self,
        team_id: str,
        agent_id: Optional[str] = None,
        run_type: Optional[str] = None,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        query = select(ActivityLogModel).where(ActivityLogModel.team_id == team_id)
        if agent_id is not None:
            query = query.where(ActivityLogModel.agent_id == agent_id)
        if run_type is not None:
            query = query.where(ActivityLogModel.run_type == run_type)
        result = await self.session.execute(query.order_by(ActivityLogModel.created_at).limit(limit))
        return [
            ActivityEntry.model_validate(
                {c.name: getattr(m, c.name) for c in ActivityLogModel.__table__.columns}
            )
            for m in result.scalars().all()
        ]
