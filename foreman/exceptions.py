"""Typed exception hierarchy. Every error foreman can raise."""


class ForemanError(Exception):
    """Base exception for all foreman errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Chains ───────────────────────────────────────────────────────────────────


class ChainError(ForemanError):
    """Base exception for chain-related errors."""
    pass


class ChainNotFound(ChainError):
    """Chain definition does not exist or is not accessible by this team."""
    def __init__(self, message: str, chain_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.chain_id = chain_id


class ChainRunNotFound(ChainError):
    """Chain run does not exist."""
    def __init__(self, message: str, chain_run_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.chain_run_id = chain_run_id


class ChainDefinitionError(ChainError):
    """Chain definition is malformed or disabled."""
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


# ── Workflows ────────────────────────────────────────────────────────────────


class WorkflowError(ForemanError):
    """Base exception for workflow-run errors."""
    pass


class WorkflowRunNotFound(WorkflowError):
    """Workflow run does not exist."""
    def __init__(self, message: str, workflow_run_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.workflow_run_id = workflow_run_id


# ── Tools, budget, agents ────────────────────────────────────────────────────


class ToolError(ForemanError):
    """Tool lookup or execution failed."""
    def __init__(self, message: str, tool_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class BudgetExceeded(ForemanError):
    """Agent configuration has insufficient daily or monthly budget."""
    pass


class AgentConfigurationNotFound(ForemanError):
    """No configuration exists for this (team, agent) pair."""
    pass


class AgentBackendError(ForemanError):
    """The agent execution backend failed to produce output."""
    pass


# ── Context & memory ─────────────────────────────────────────────────────────


class ContextResolutionError(ForemanError):
    """Entity reference cannot be resolved into a context hierarchy."""
    def __init__(self, message: str, entity_kind: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.entity_kind = entity_kind


class MemoryStoreError(ForemanError):
    """Invalid memory scope or key."""
    pass


# ── Approvals ────────────────────────────────────────────────────────────────


class ApprovalError(ForemanError):
    """Approval request could not be created or resolved."""
    pass


class ApprovalNotFound(ApprovalError):
    """Approval request does not exist."""
    def __init__(self, message: str, approval_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.approval_id = approval_id
