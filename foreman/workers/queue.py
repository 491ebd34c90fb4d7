"""ARQ task functions and WorkerSettings for foreman background workers."""

from __future__ import annotations

import importlib
import logging
from typing import Any, Optional

from arq import Retry, cron
from arq.connections import RedisSettings
from arq.worker import func

from foreman.config import config, load_permissions_yaml
from foreman.context.assembler import ContextAssembler
from foreman.context.entities import InMemoryDirectory
from foreman.core.activity import ActivityLog
from foreman.core.approval import ApprovalService
from foreman.core.budget import BudgetLedger
from foreman.core.chain_engine import ChainEngine
from foreman.core.memory import MemoryStore
from foreman.core.runner import AgentRunner
from foreman.core.workflow_engine import WorkflowEngine
from foreman.db.repository import Repository
from foreman.types import EntityRef
from foreman.workers.dispatcher import ParallelStepDispatcher

logger = logging.getLogger(__name__)


# ── Engine wiring ─────────────────────────────────────────────────────────────

def load_directory(path: Optional[str]):
    """Import the EntityDirectory named by ``"module:attr"``; empty in-memory directory if unset."""
    if not path:
        return InMemoryDirectory()
    module_name, _, attr = path.partition(":")
    target = getattr(importlib.import_module(module_name), attr)
    return target() if isinstance(target, type) else target


def build_chain_engine(session, ctx: dict) -> ChainEngine:
    """Wire a ChainEngine and its collaborators around one database session."""
    repo = Repository(session)
    callbacks = ctx.get("callbacks", [])
    activity = ActivityLog(repo)
    memory = MemoryStore(repo)
    workflows = WorkflowEngine(repo, activity=activity, callbacks=callbacks)
    assembler = ContextAssembler(ctx["directory"], memory=memory)

    runner = None
    if ctx.get("backend") is not None:
        gateway = ctx.get("gateway_factory")
        runner = AgentRunner(
            BudgetLedger(repo),
            ctx["backend"],
            activity,
            assembler=assembler,
            gateway=gateway(repo, activity) if gateway else None,
            callbacks=callbacks,
        )

    return ChainEngine(
        repo,
        workflows,
        assembler=assembler,
        memory=memory,
        approvals=ApprovalService(repo, workflows, callbacks=callbacks),
        runner=runner,
        queue=ParallelStepDispatcher(ctx["redis"]) if ctx.get("redis") is not None else None,
        activity=activity,
        callbacks=callbacks,
    )


# ── Task functions ────────────────────────────────────────────────────────────

async def execute_chain_step_task(
    ctx: dict,
    chain_run_id: str,
    step_index: int,
    group: Optional[str] = None,
) -> dict:
    """Execute one step of a parallel group, then check the group barrier.

    Failures are retried by arq with a fixed deferral; on the last try the
    step record is marked failed and the error re-raised.
    """
    async with ctx["session_factory"]() as session:
        engine = build_chain_engine(session, ctx)
        try:
            record = await engine.execute_group_member(chain_run_id, step_index)
        except Exception as exc:
            job_try = ctx.get("job_try", 1)
            if job_try < config.step_job_max_tries:
                logger.warning(
                    "Step %s of chain run %s failed on try %s, retrying: %s",
                    step_index, chain_run_id, job_try, exc,
                )
                raise Retry(defer=config.step_job_retry_delay_seconds) from exc
            logger.exception("execute_chain_step_task failed for run=%s step=%s", chain_run_id, step_index)
            await engine.mark_step_failed(chain_run_id, step_index, str(exc) or type(exc).__name__)
            if group:
                await engine.on_group_member_finished(chain_run_id, group)
            raise

        group_completed = False
        if group:
            group_completed = await engine.on_group_member_finished(chain_run_id, group)

    return {
        "chain_run_id": chain_run_id,
        "step_index": step_index,
        "status": record.status.value if record else "skipped",
        "group_completed": group_completed,
    }


async def process_chain_trigger_task(
    ctx: dict,
    chain_id: str,
    team_id: str,
    trigger: str,
    entity: Optional[dict[str, Any]] = None,
    triggered_by: Optional[str] = None,
) -> dict:
    """Start a chain for a trigger and auto-run it while it stays running."""
    async with ctx["session_factory"]() as session:
        engine = build_chain_engine(session, ctx)
        chain = await engine.repository.get_chain(chain_id)
        if chain is None:
            logger.warning("Trigger %s references missing chain %s", trigger, chain_id)
            return {"chain_run_id": None, "status": "skipped"}

        ref = EntityRef(**entity) if entity else None
        run = await engine.start(
            chain,
            team_id,
            initial_context={
                "trigger": trigger,
                "entity": entity,
                "triggered_by": triggered_by,
            },
            triggered_by=ref,
        )
        run = await engine.advance(run, max_steps=config.chain_max_auto_steps)

    logger.info("Trigger %s ran chain %s: run=%s status=%s", trigger, chain_id, run.id, run.status.value)
    return {"chain_run_id": run.id, "status": run.status.value, "current_step_index": run.current_step_index}


async def sweep_expired_memories_task(ctx: dict) -> dict:
    """Hard-delete memory rows past their expiry."""
    async with ctx["session_factory"]() as session:
        deleted = await MemoryStore(Repository(session)).clear_expired()
    logger.info("Memory sweep removed %s expired entries", deleted)
    return {"deleted": deleted}


# ── Worker lifecycle ──────────────────────────────────────────────────────────

async def startup(ctx: dict) -> None:
    """Initialize shared components for the worker process."""
    from foreman.callbacks.logging import LoggingCallback
    from foreman.db.database import async_session, init_db
    from foreman.llm.backend import LLMAgentBackend
    from foreman.tools.gateway import ToolGateway
    from foreman.tools.permissions import PermissionPolicy
    from foreman.tools.registry import ToolRegistry

    logger.info("foreman worker starting up...")
    await init_db()

    registry = ToolRegistry()
    registry.load_decorated()
    policy = load_permissions_yaml(config.permissions_file) if config.permissions_file else PermissionPolicy()

    def gateway_factory(repo, activity):
        return ToolGateway(
            registry, activity, policy=policy, ledger=BudgetLedger(repo),
            repository=repo, callbacks=ctx["callbacks"],
        )

    ctx["session_factory"] = async_session
    ctx["directory"] = load_directory(config.entity_directory)
    ctx["backend"] = LLMAgentBackend()
    ctx["gateway_factory"] = gateway_factory
    ctx["callbacks"] = [LoggingCallback()]

    logger.info("foreman worker startup complete, %d tools registered", len(registry.list_tools()))


async def shutdown(ctx: dict) -> None:
    logger.info("foreman worker shutting down...")


# ── WorkerSettings ────────────────────────────────────────────────────────────

class WorkerSettings:
    functions = [
        func(execute_chain_step_task, max_tries=config.step_job_max_tries),
        func(process_chain_trigger_task, max_tries=1),
    ]
    cron_jobs = [
        cron(sweep_expired_memories_task, minute=config.memory_sweep_minute, run_at_startup=False),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(config.task_queue_url)
    max_jobs = config.worker_concurrency
    job_timeout = 3600
    keep_result = 86400
