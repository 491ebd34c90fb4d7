"""Test fixtures: in-memory database, seeded team/agent, fake queue, fake backend, fixed clock.

All tests should use these fixtures for consistency.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from foreman.context.assembler import ContextAssembler
from foreman.context.entities import InMemoryDirectory
from foreman.core.activity import ActivityLog
from foreman.core.approval import ApprovalService
from foreman.core.budget import BudgetLedger
from foreman.core.chain_engine import ChainEngine
from foreman.core.memory import MemoryStore
from foreman.core.workflow_engine import WorkflowEngine
from foreman.db.models import Base
from foreman.db.repository import Repository
from foreman.llm.backend import AgentOutput
from foreman.types import (
    Agent, AgentChain, AgentConfiguration, PartySnapshot, ProjectSnapshot, StepBatch,
    StepConfig, TaskSnapshot, TeamSnapshot, WorkOrderSnapshot,
)

TEAM_ID = "team-acme"
AGENT_ID = "agent-pm"


# ── Database ──────────────────────────────────────────────────────────────────

@pytest.fixture
async def session():
    """In-memory SQLite async session with schema created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def repo(session):
    return Repository(session)


@pytest.fixture
def team_id():
    return TEAM_ID


@pytest.fixture
async def agent(repo):
    return await repo.create_agent(Agent(id=AGENT_ID, code="pm_copilot", name="PM Copilot"))


@pytest.fixture
async def agent_config(repo, agent):
    """Configuration with a 10.00 cap and task permissions only."""
    return await repo.save_agent_configuration(AgentConfiguration(
        team_id=TEAM_ID,
        agent_id=agent.id,
        monthly_budget_cap=10.0,
        can_modify_tasks=True,
    ))


# ── Clock ─────────────────────────────────────────────────────────────────────

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def memory(repo, clock):
    return MemoryStore(repo, clock=clock)


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeQueue:
    """StepQueue that records dispatched batches instead of enqueueing jobs."""

    def __init__(self):
        self.batches: list[StepBatch] = []

    async def dispatch_batch(self, batch: StepBatch) -> StepBatch:
        batch = batch.model_copy(update={
            "job_ids": [f"{batch.name}-{i}" for i in batch.step_indices],
        })
        self.batches.append(batch)
        return batch


class FakeBackend:
    """AgentBackend returning a canned output, or raising ``error`` when set."""

    def __init__(self, output: dict = None, tokens_used: int = 100, cost: float = None, error: Exception = None):
        self.output = output if output is not None else {"summary": "done"}
        self.tokens_used = tokens_used
        self.cost = cost
        self.error = error
        self.calls = []

    async def run(self, agent, context, input):
        self.calls.append({"agent": agent, "context": context, "input": input})
        if self.error is not None:
            raise self.error
        return AgentOutput(output=dict(self.output), tokens_used=self.tokens_used, cost=self.cost)


class EventRecorder:
    """Callback collecting (event, data) pairs."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, data: dict) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [e for e, _ in self.events]


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def recorder():
    return EventRecorder()


# ── Domain snapshots ──────────────────────────────────────────────────────────

@pytest.fixture
def directory():
    """One team, one client, one project with a work order and two tasks."""
    return InMemoryDirectory().add(
        TeamSnapshot(id=TEAM_ID, name="Acme Studio"),
        PartySnapshot(id="party-1", team_id=TEAM_ID, name="Globex", contact_name="Hank",
                      contact_email="hank@globex.test", notes="Prefers weekly updates"),
        ProjectSnapshot(id="proj-1", team_id=TEAM_ID, party_id="party-1", name="Website Relaunch",
                        description="Rebuild the marketing site", progress=40.0),
        WorkOrderSnapshot(id="wo-1", team_id=TEAM_ID, project_id="proj-1", title="Design phase",
                          status="active", task_count=2),
        TaskSnapshot(id="task-1", team_id=TEAM_ID, project_id="proj-1", work_order_id="wo-1",
                     title="Wireframes", due_date="2026-03-10"),
        TaskSnapshot(id="task-2", team_id=TEAM_ID, work_order_id="wo-1", title="Moodboard",
                     status="done"),
    )


# ── Engines ───────────────────────────────────────────────────────────────────

@pytest.fixture
def activity(repo):
    return ActivityLog(repo)


@pytest.fixture
def workflows(repo, activity, recorder):
    return WorkflowEngine(repo, activity=activity, callbacks=[recorder])


@pytest.fixture
def approvals(repo, workflows, recorder):
    return ApprovalService(repo, workflows, callbacks=[recorder])


@pytest.fixture
def ledger(repo):
    return BudgetLedger(repo)


@pytest.fixture
def assembler(directory, memory):
    return ContextAssembler(directory, memory=memory)


@pytest.fixture
def chain_engine(repo, workflows, assembler, memory, approvals, queue, activity, recorder):
    return ChainEngine(
        repo,
        workflows,
        assembler=assembler,
        memory=memory,
        approvals=approvals,
        queue=queue,
        activity=activity,
        callbacks=[recorder],
    )


def _make_chain(*steps: StepConfig, name: str = "intake", enabled: bool = True) -> AgentChain:
    return AgentChain(team_id=TEAM_ID, name=name, steps=list(steps), enabled=enabled)


@pytest.fixture
def make_chain(repo):
    """Build and persist a chain from StepConfigs."""
    async def factory(*steps: StepConfig, **kwargs) -> AgentChain:
        return await repo.save_chain(_make_chain(*steps, **kwargs))
    return factory
