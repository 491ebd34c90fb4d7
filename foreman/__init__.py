"""foreman: agent orchestration core for project delivery teams.

Usage:
    from foreman import AgentChain, StepConfig, ChainExecutionStatus

    chain = AgentChain(team_id="acme", name="intake", steps=[StepConfig(agent_id="dispatcher")])
"""

from foreman.types import (
    AgentChain, ChainRun, ChainStepRecord, StepConfig, BranchRule, StepBatch,
    WorkflowRun, Agent, AgentConfiguration, GlobalAISettings, MemoryEntry,
    ToolDefinition, ToolResult, EntityRef, ActivityEntry,
    ChainExecutionStatus, StepStatus, ExecutionMode, MemoryScope, ToolResultStatus,
)
from foreman.exceptions import (
    ForemanError, ChainError, ChainNotFound, ChainRunNotFound, ChainDefinitionError,
    WorkflowError, WorkflowRunNotFound, ToolError, BudgetExceeded,
    ContextResolutionError, MemoryStoreError, ApprovalError, ApprovalNotFound,
)
from foreman.version import __version__

__all__ = [
    "AgentChain", "ChainRun", "ChainStepRecord", "StepConfig", "BranchRule", "StepBatch",
    "WorkflowRun", "Agent", "AgentConfiguration", "GlobalAISettings", "MemoryEntry",
    "ToolDefinition", "ToolResult", "EntityRef", "ActivityEntry",
    "ChainExecutionStatus", "StepStatus", "ExecutionMode", "MemoryScope", "ToolResultStatus",
    "ForemanError", "ChainError", "ChainNotFound", "ChainRunNotFound", "ChainDefinitionError",
    "WorkflowError", "WorkflowRunNotFound", "ToolError", "BudgetExceeded",
    "ContextResolutionError", "MemoryStoreError", "ApprovalError", "ApprovalNotFound",
    "__version__",
]
