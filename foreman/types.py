"""All shared types, enums, and type aliases. Everything imports from here."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ──────────────────────────────────────────────────────────────

class ChainExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ChainExecutionStatus.COMPLETED, ChainExecutionStatus.FAILED)

class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"

class MemoryScope(str, Enum):
    PROJECT = "project"
    CLIENT = "client"
    ORG = "org"
    CHAIN = "chain"

class ToolResultStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"   # permission, budget or approval gate refused

class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class EntityKind(str, Enum):
    PROJECT = "project"
    WORK_ORDER = "work_order"
    TASK = "task"
    PARTY = "party"
    TEAM = "team"
    WORKFLOW_RUN = "workflow_run"
    CHAIN_RUN = "chain_run"


# ── References ─────────────────────────────────────────────────────────

class EntityRef(BaseModel):
    """Tagged (kind, id) pointer to an entity owned elsewhere."""
    model_config = ConfigDict(frozen=True)

    kind: str
    id: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


# ── Branching ──────────────────────────────────────────────────────────

class SkipAction(BaseModel):
    kind: Literal["skip"] = "skip"

class GotoAction(BaseModel):
    kind: Literal["goto"] = "goto"
    target_step: Optional[int] = None   # None falls back to the next step

class TerminateAction(BaseModel):
    kind: Literal["terminate"] = "terminate"

class DefaultAction(BaseModel):
    kind: Literal["default"] = "default"

BranchAction = Annotated[
    Union[SkipAction, GotoAction, TerminateAction, DefaultAction],
    Field(discriminator="kind"),
]

_KNOWN_ACTIONS = {"skip", "goto", "terminate", "default"}


class BranchRule(BaseModel):
    """One (condition, action) rule evaluated after a step completes.

    Accepts both the nested form ``{"condition": ..., "action": {"kind": "goto", "target_step": 2}}``
    and the flat form used in chain definitions
    ``{"condition": ..., "action": "goto", "target_step": 2}``. Unrecognized action
    names become ``DefaultAction``.
    """
    condition: Optional[str] = None     # None always matches
    action: BranchAction = Field(default_factory=DefaultAction)

    @model_validator(mode="before")
    @classmethod
    def _coerce_flat_action(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        action = data.get("action")
        if action is None or isinstance(action, str):
            kind = action if action in _KNOWN_ACTIONS else "default"
            nested: dict[str, Any] = {"kind": kind}
            if kind == "goto":
                nested["target_step"] = data.get("target_step")
            return {"condition": data.get("condition"), "action": nested}
        return data


# ── Chain definitions ──────────────────────────────────────────────────

class ContextFilterRules(BaseModel):
    context_include: list[str] = Field(default_factory=list)   # dot-nested keys
    context_exclude: list[str] = Field(default_factory=list)


class StepConfig(BaseModel):
    """One step of a chain definition. Unknown keys pass through untouched."""
    model_config = ConfigDict(extra="allow")

    agent_id: Optional[str] = None
    workflow_kind: Optional[str] = None
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    step_group: Optional[str] = None
    next_step_conditions: list[BranchRule] = Field(default_factory=list)
    context_filter_rules: ContextFilterRules = Field(default_factory=ContextFilterRules)
    output_transformations: list[dict[str, Any]] = Field(default_factory=list)
    input: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_parallel(self) -> bool:
        return self.execution_mode == ExecutionMode.PARALLEL and bool(self.step_group)


class AgentChain(BaseModel):
    """A chain definition: ordered step list owned by a team."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    name: str
    description: str = ""
    steps: list[StepConfig] = Field(default_factory=list)
    enabled: bool = True

    def group_indices(self, group: str) -> list[int]:
        return [i for i, s in enumerate(self.steps) if s.step_group == group]


# ── Runs ───────────────────────────────────────────────────────────────

class WorkflowRun(BaseModel):
    """One durable execution of a single agent's workflow logic."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    agent_id: Optional[str] = None
    workflow_kind: str
    current_node: str = "start"
    state_data: dict[str, Any] = Field(default_factory=dict)
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    approval_required: bool = False
    resumed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.completed_at is not None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None


class ChainRun(BaseModel):
    """One execution of a chain definition's ordered step list."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    chain_id: str
    current_step_index: int = 0
    status: ChainExecutionStatus = ChainExecutionStatus.RUNNING
    chain_context: dict[str, Any] = Field(default_factory=dict)
    triggerable: Optional[EntityRef] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ChainStepRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    chain_run_id: str
    step_index: int
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: dict[str, Any] = Field(default_factory=dict)
    workflow_run_id: Optional[str] = None


class StepBatch(BaseModel):
    """Named set of queued single-step jobs observed as one unit."""
    name: str
    chain_run_id: str
    group: str
    step_indices: list[int]
    job_ids: list[Optional[str]] = Field(default_factory=list)


# ── Agents, configuration, settings ────────────────────────────────────

class Agent(BaseModel):
    id: str = Field(default_factory=_new_id)
    code: str
    name: str
    description: str = ""


class AgentConfiguration(BaseModel):
    """Per-(team, agent) permission flags and budget state."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    agent_id: str
    enabled: bool = True
    monthly_budget_cap: Optional[float] = None     # None means uncapped
    daily_spend: float = 0.0
    current_month_spend: float = 0.0
    can_modify_tasks: bool = False
    can_create_work_orders: bool = False
    can_access_client_data: bool = False
    can_send_emails: bool = False
    can_modify_deliverables: bool = False
    can_access_financial_data: bool = False
    can_modify_playbooks: bool = False
    tool_permissions: dict[str, bool] = Field(default_factory=dict)

    def has_permission(self, flag: str) -> bool:
        return bool(getattr(self, flag, False))


_APPROVAL_FIELDS = {
    "external_sends": "require_approval_external_sends",
    "financial": "require_approval_financial",
    "contracts": "require_approval_contracts",
    "scope_changes": "require_approval_scope_changes",
    "client_facing_content": "approval_client_facing_content",
    "financial_data": "approval_financial_data",
    "contractual_changes": "approval_contractual_changes",
    "work_order_creation": "approval_work_order_creation",
    "task_assignment": "approval_task_assignment",
}


class GlobalAISettings(BaseModel):
    """Team-level AI policy, read-only to this core."""
    team_id: str
    total_monthly_budget: float = 0.0
    current_month_spend: float = 0.0
    require_approval_external_sends: bool = False
    require_approval_financial: bool = False
    require_approval_contracts: bool = False
    require_approval_scope_changes: bool = False
    approval_client_facing_content: bool = False
    approval_financial_data: bool = False
    approval_contractual_changes: bool = False
    approval_work_order_creation: bool = False
    approval_task_assignment: bool = False
    auto_approval_threshold: float = 0.8

    def requires_approval_for(self, action_type: str) -> bool:
        """Unknown action types always require approval."""
        field = _APPROVAL_FIELDS.get(action_type)
        if field is None:
            return True
        return bool(getattr(self, field))

    def meets_auto_approval_threshold(self, confidence_score: float) -> bool:
        return confidence_score >= self.auto_approval_threshold

    @property
    def remaining_budget(self) -> float:
        return max(0.0, self.total_monthly_budget - self.current_month_spend)


class WorkflowCustomization(BaseModel):
    id: str = Field(default_factory=_new_id)
    team_id: str
    workflow_kind: str
    enabled: bool = True
    disabled_steps: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)

    def is_step_disabled(self, step_name: str) -> bool:
        return step_name in self.disabled_steps


# ── Memory ─────────────────────────────────────────────────────────────

class MemoryEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    team_id: str
    scope: MemoryScope
    scope_id: str
    key: str
    value: Any = None
    agent_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ── Tools ──────────────────────────────────────────────────────────────

class ToolDefinition(BaseModel):
    """Registration record for a tool an agent can use."""
    name: str                           # unique identifier
    description: str                    # what it does (used by the agent backend)
    parameters: dict[str, Any] = Field(default_factory=dict)   # JSON Schema for params
    category: Optional[str] = None      # drives permission + approval mapping
    timeout_seconds: int = 30


class ToolResult(BaseModel):
    """Outcome of one gateway-mediated invocation. Always produced."""
    status: ToolResultStatus
    data: Any = None
    error: Optional[str] = None
    execution_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == ToolResultStatus.SUCCESS

    @classmethod
    def succeeded(cls, data: Any = None, execution_time_ms: int = 0) -> "ToolResult":
        return cls(status=ToolResultStatus.SUCCESS, data=data, execution_time_ms=execution_time_ms)

    @classmethod
    def failed(cls, error: str, execution_time_ms: int = 0) -> "ToolResult":
        return cls(status=ToolResultStatus.FAILURE, error=error, execution_time_ms=execution_time_ms)

    @classmethod
    def denied(cls, error: str) -> "ToolResult":
        return cls(status=ToolResultStatus.DENIED, error=error)


# ── Approvals & activity ───────────────────────────────────────────────

class ApprovalRequest(BaseModel):
    """Record handed to the approval inbox."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    title: str
    content_preview: str = ""
    full_content: str = ""
    urgency: Urgency = Urgency.NORMAL
    source_type: str = "agent"
    source_id: Optional[str] = None
    source_name: str = ""
    approvable: Optional[EntityRef] = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ActivityEntry(BaseModel):
    """One append-only activity log record."""
    id: str = Field(default_factory=_new_id)
    team_id: str
    agent_id: Optional[str] = None
    run_type: str                       # "tool_execution", "agent_run", "workflow", "chain_step"
    input: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    context_accessed: list[str] = Field(default_factory=list)
    tokens_used: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)


# ── Domain snapshots (read-only inputs to context assembly) ────────────

class TeamSnapshot(BaseModel):
    id: str
    name: str

class PartySnapshot(BaseModel):
    id: str
    team_id: str
    name: str
    type: str = "client"
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    status: str = "active"
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

class ContactSnapshot(BaseModel):
    id: str
    party_id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None

class ProjectSnapshot(BaseModel):
    id: str
    team_id: str
    party_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    status: str = "active"
    start_date: Optional[str] = None
    target_end_date: Optional[str] = None
    progress: Optional[float] = None
    budget_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    tags: list[str] = Field(default_factory=list)
    archived: bool = False
    updated_at: datetime = Field(default_factory=utcnow)

class WorkOrderSnapshot(BaseModel):
    id: str
    team_id: str
    project_id: Optional[str] = None
    title: str
    status: str = "draft"
    task_count: int = 0
    completed_tasks: int = 0

class TaskSnapshot(BaseModel):
    id: str
    team_id: str
    project_id: Optional[str] = None
    work_order_id: Optional[str] = None
    title: str
    status: str = "todo"
    due_date: Optional[str] = None
    is_blocked: bool = False
