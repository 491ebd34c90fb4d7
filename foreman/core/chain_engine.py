"""Chain engine: state machine driving a ChainRun through its step list.

Status transitions:
    running -> paused      pause()
    paused  -> running     resume()
    running -> completed   index past the last step, or a terminate branch
    running -> failed      fail()
Transitions on a completed or failed run are ignored.

Sequential steps execute in-process through ``execute_step``. A step tagged
``execution_mode: parallel`` with a ``step_group`` fans out: one pending
record per group member, one queued job per member (a named batch), and a
barrier (``on_group_member_finished``) that fires ``complete_parallel_group``
once every member is completed or failed.
"""

import json
import logging
import uuid
from typing import Any, Optional, Protocol, runtime_checkable

from foreman.callbacks.base import emit
from foreman.config import config
from foreman.context.agent_context import AgentContext
from foreman.core.activity import ActivityLog
from foreman.core.chain_context import ChainContext
from foreman.core.conditions import ConditionEvaluator, evaluate_condition
from foreman.core.workflow_engine import WorkflowEngine
from foreman.exceptions import ChainDefinitionError, ChainError, ChainNotFound, ChainRunNotFound
from foreman.types import (
    ActivityEntry, Agent, AgentChain, ChainExecutionStatus, ChainRun, ChainStepRecord,
    EntityRef, GotoAction, SkipAction, StepBatch, StepConfig, StepStatus, TerminateAction,
    utcnow,
)

logger = logging.getLogger(__name__)

TERMINATE = -1
_FINISHED = (StepStatus.COMPLETED, StepStatus.FAILED)


@runtime_checkable
class StepQueue(Protocol):
    """External job queue executing single chain steps asynchronously."""

    async def dispatch_batch(self, batch: StepBatch) -> StepBatch:
        """Enqueue one job per ``batch.step_indices`` entry; return the batch with job ids."""
        ...


def batch_name(chain_run_id: str, dispatch_id: str) -> str:
    """One name per dispatch; a group re-entered through a goto gets fresh job ids."""
    return f"chain-execution-{chain_run_id}-parallel-group-{dispatch_id}"


class ChainEngine:
    """Executes chain runs step by step.

    Args:
        repository: Repository used for chains, runs and step records.
        workflows: WorkflowEngine starting a WorkflowRun for steps that name one.
        assembler: ContextAssembler building each step's AgentContext. Optional.
        memory: MemoryStore; chain-scoped memory is cleared on completion/failure. Optional.
        approvals: ApprovalService used by request_approval. Optional.
        runner: AgentRunner producing step output when none is supplied. Optional.
        queue: StepQueue for parallel groups. Required only for parallel steps.
        evaluator: Branch condition evaluator ``(expression, snapshot) -> bool``.
        activity: ActivityLog receiving one ``chain_step`` entry per executed step.
        callbacks: Async callables ``cb(event, data)``.
        max_context_tokens: Token budget for step contexts.
    """

    def __init__(
        self,
        repository,
        workflows: WorkflowEngine,
        assembler=None,
        memory=None,
        approvals=None,
        runner=None,
        queue: Optional[StepQueue] = None,
        evaluator: ConditionEvaluator = evaluate_condition,
        activity: ActivityLog = None,
        callbacks: list = None,
        max_context_tokens: int = None,
    ):
        self.repository = repository
        self.workflows = workflows
        self.assembler = assembler
        self.memory = memory
        self.approvals = approvals
        self.runner = runner
        self.queue = queue
        self.evaluator = evaluator
        self.activity = activity
        self.callbacks = callbacks or []
        self.max_context_tokens = max_context_tokens or config.context_max_tokens

    # ── Start ──

    async def start(
        self,
        chain: AgentChain,
        team_id: str,
        initial_context: Optional[dict] = None,
        triggered_by: Optional[EntityRef] = None,
    ) -> ChainRun:
        """Create a running ChainRun at step 0 with a fresh chain context.

        Raises:
            ChainNotFound: chain belongs to another team
            ChainDefinitionError: chain is disabled
        """
        if chain.team_id != team_id:
            raise ChainNotFound(f"Chain '{chain.id}' not found for team '{team_id}'", chain_id=chain.id)
        if not chain.enabled:
            raise ChainDefinitionError(f"Chain '{chain.name}' is disabled", violations=["disabled"])

        context = ChainContext.start(chain.name, initial_context)
        run = await self.repository.create_chain_run(ChainRun(
            team_id=team_id,
            chain_id=chain.id,
            current_step_index=0,
            status=ChainExecutionStatus.RUNNING,
            chain_context=context.to_storage(),
            triggerable=triggered_by,
            started_at=utcnow(),
        ))
        logger.info(
            f"Chain run {run.id} started: chain={chain.name} team={team_id} "
            f"triggerable={triggered_by or '-'}"
        )
        await self._fire("chain_started", run, chain_name=chain.name)
        return run

    # ── Sequential execution ──

    async def execute_step(self, run: ChainRun, step_output: Optional[dict] = None) -> Optional[ChainStepRecord]:
        """Execute the step at ``current_step_index`` and advance the run.

        ``step_output`` wins when given; otherwise the runner (if wired and
        the step names an agent) produces the output; otherwise it is empty.

        Returns:
            The step record, or None when the run is terminal, paused or
            already past its last step.
        """
        run = await self._load(run.id)
        if run.is_terminal:
            logger.warning(f"Chain run {run.id} is {run.status.value}; execute_step ignored")
            return None
        if run.status == ChainExecutionStatus.PAUSED:
            logger.warning(f"Chain run {run.id} is paused; execute_step ignored")
            return None

        chain = await self._chain(run)
        index = run.current_step_index
        if index >= len(chain.steps):
            await self.complete(run)
            return None

        step = chain.steps[index]
        record = await self.repository.create_step_record(ChainStepRecord(
            chain_run_id=run.id,
            step_index=index,
            status=StepStatus.RUNNING,
            started_at=utcnow(),
        ))
        logger.info(f"Chain run {run.id}: step {index} started (agent={step.agent_id})")

        record, output, error = await self._produce_output(run, step, index, record, step_output)
        if error is not None:
            await self._record_step(run, step, index, None, error)
            await self.fail(run, error)
            return await self.repository.get_step_record(run.id, index)

        record = await self.repository.update_step_record(record.id, {
            "status": StepStatus.COMPLETED,
            "completed_at": utcnow(),
            "output": output,
        })
        context = ChainContext.from_dict(run.chain_context).with_step_output(index, output, step.agent_id)
        next_index = self.evaluate_next_step(step, index, len(chain.steps), context)

        if next_index == TERMINATE:
            await self._finish(run, context)
        elif next_index >= len(chain.steps):
            await self._finish(run, context, current_step_index=next_index)
        else:
            await self.repository.update_chain_run(run.id, {
                "current_step_index": next_index,
                "chain_context": context.to_storage(),
            })
        logger.info(f"Chain run {run.id}: step {index} completed, next={next_index}")
        await self._record_step(run, step, index, output, None)
        await self._fire("chain_step_completed", run, step_index=index, next_step_index=next_index)
        return record

    def evaluate_next_step(self, step: StepConfig, index: int, total_steps: int, context: ChainContext) -> int:
        """Index of the step to run after ``index``.

        The first rule whose condition is absent or true decides: skip -> index+2,
        goto -> target (index+1 if unset), terminate -> -1, anything else ->
        index+1. No match, or no rules, means index+1. After the last step the
        rules are not consulted.
        """
        default = index + 1
        if default >= total_steps or not step.next_step_conditions:
            return default

        for rule in step.next_step_conditions:
            if rule.condition is not None and not context.evaluate_condition(rule.condition, self.evaluator):
                continue
            action = rule.action
            logger.info(f"Branch matched at step {index}: condition={rule.condition!r} action={action.kind}")
            if isinstance(action, SkipAction):
                return default + 1
            if isinstance(action, GotoAction):
                return action.target_step if action.target_step is not None else default
            if isinstance(action, TerminateAction):
                return TERMINATE
            return default
        return default

    async def advance(self, run: ChainRun, max_steps: int = None) -> ChainRun:
        """Execute steps while the run is running, up to ``max_steps``.

        Stops after dispatching a parallel group; the batch barrier resumes it.
        """
        max_steps = max_steps or config.chain_max_auto_steps
        run = await self._load(run.id)
        for _ in range(max_steps):
            if run.status != ChainExecutionStatus.RUNNING:
                break
            chain = await self._chain(run)
            index = run.current_step_index
            if index < len(chain.steps) and chain.steps[index].is_parallel:
                await self.execute_parallel_step_group(run)
                return await self._load(run.id)
            await self.execute_step(run)
            run = await self._load(run.id)
        else:
            if run.status == ChainExecutionStatus.RUNNING:
                logger.warning(f"Chain run {run.id} still running after {max_steps} auto steps")
        return run

    # ── Parallel groups ──

    async def execute_parallel_step_group(self, run: ChainRun) -> Optional[StepBatch]:
        """Fan the current step's group out to the queue as one named batch.

        Delegates to ``execute_step`` when the current step is not parallel.
        """
        run = await self._load(run.id)
        if run.is_terminal or run.status == ChainExecutionStatus.PAUSED:
            return None

        chain = await self._chain(run)
        index = run.current_step_index
        if index >= len(chain.steps):
            await self.complete(run)
            return None

        step = chain.steps[index]
        if not step.is_parallel:
            await self.execute_step(run)
            return None
        if self.queue is None:
            raise ChainError(
                f"Chain run {run.id}: parallel group '{step.step_group}' needs a step queue",
                details={"chain_run_id": run.id, "group": step.step_group},
            )

        indices = chain.group_indices(step.step_group)
        for member in indices:
            await self.repository.create_step_record(ChainStepRecord(
                chain_run_id=run.id,
                step_index=member,
                status=StepStatus.PENDING,
            ))
        batch = await self.queue.dispatch_batch(StepBatch(
            name=batch_name(run.id, uuid.uuid4().hex[:12]),
            chain_run_id=run.id,
            group=step.step_group,
            step_indices=indices,
        ))
        logger.info(
            f"Chain run {run.id}: parallel group '{step.step_group}' dispatched ({len(indices)} steps)"
        )
        await self._fire("parallel_group_dispatched", run, group=step.step_group,
                         batch=batch.name, step_indices=indices)
        return batch

    async def execute_group_member(
        self, run_id: str, step_index: int, step_output: Optional[dict] = None,
    ) -> Optional[ChainStepRecord]:
        """Execute one member of a parallel group. Called by the queue worker.

        Marks the member's record running, then completed with its output or
        failed with the error. The chain context is not touched here; member
        outputs are merged by ``complete_parallel_group``.
        """
        run = await self.repository.get_chain_run(run_id)
        if run is None:
            logger.warning(f"Chain run {run_id} not found for step {step_index}")
            return None
        if run.is_terminal:
            logger.info(f"Chain run {run_id} already {run.status.value}; skipping step {step_index}")
            return None
        chain = await self._chain(run)
        if step_index >= len(chain.steps):
            logger.warning(f"Chain run {run_id}: step index {step_index} out of bounds ({len(chain.steps)})")
            return None

        step = chain.steps[step_index]
        record = await self.repository.get_step_record(run.id, step_index)
        if record is None:
            record = await self.repository.create_step_record(ChainStepRecord(
                chain_run_id=run.id, step_index=step_index, status=StepStatus.RUNNING, started_at=utcnow(),
            ))
        else:
            record = await self.repository.update_step_record(record.id, {
                "status": StepStatus.RUNNING, "started_at": utcnow(),
            })

        record, output, error = await self._produce_output(run, step, step_index, record, step_output)
        if error is not None:
            await self._record_step(run, step, step_index, None, error)
            return await self.mark_step_failed(run.id, step_index, error)

        record = await self.repository.update_step_record(record.id, {
            "status": StepStatus.COMPLETED,
            "completed_at": utcnow(),
            "output": output,
        })
        await self._record_step(run, step, step_index, output, None)
        logger.info(f"Chain run {run.id}: parallel step {step_index} completed")
        return record

    async def mark_step_failed(self, run_id: str, step_index: int, error: str) -> Optional[ChainStepRecord]:
        """Attach ``error`` to the latest record of a step and mark it failed."""
        record = await self.repository.get_step_record(run_id, step_index)
        if record is None:
            return None
        return await self.repository.update_step_record(record.id, {
            "status": StepStatus.FAILED,
            "completed_at": utcnow(),
            "output": {**record.output, "error": error},
        })

    async def on_group_member_finished(self, run_id: str, group: str) -> bool:
        """Barrier check. Completes the group once every member is completed or failed.

        Returns:
            True if this call completed the group.
        """
        run = await self.repository.get_chain_run(run_id)
        if run is None or run.is_terminal:
            return False
        chain = await self._chain(run)
        indices = chain.group_indices(group)
        if run.current_step_index not in indices:
            return False
        latest = await self._latest_records(run.id, indices)
        if any(i not in latest or latest[i].status not in _FINISHED for i in indices):
            return False
        await self.complete_parallel_group(run, group)
        return True

    async def complete_parallel_group(self, run: ChainRun, group: str) -> ChainRun:
        """Aggregate member outputs under ``parallel_group_{group}`` and move past the group.

        A group completes once per pass: only while the run's index is inside
        the group. A later pass (goto back into the group) overwrites the aggregate.
        """
        run = await self._load(run.id)
        if run.is_terminal:
            return run
        chain = await self._chain(run)
        indices = chain.group_indices(group)
        if not indices:
            raise ChainDefinitionError(f"Chain '{chain.name}' has no step group '{group}'", violations=[group])
        if run.current_step_index not in indices:
            logger.debug(f"Chain run {run.id}: group '{group}' already completed for this pass")
            return run

        context = ChainContext.from_dict(run.chain_context)
        key = f"parallel_group_{group}"

        latest = await self._latest_records(run.id, indices)
        outputs = {i: latest[i].output for i in indices if i in latest}
        for i, output in outputs.items():
            if latest[i].status == StepStatus.COMPLETED:
                context = context.with_step_output(i, output, chain.steps[i].agent_id)
        context = context.with_metadata(**{key: {
            "outputs": {str(i): o for i, o in outputs.items()},
            "completed_at": utcnow().isoformat(),
        }})

        next_index = max(indices) + 1
        if next_index >= len(chain.steps):
            run = await self._finish(run, context, current_step_index=next_index)
        else:
            run = await self.repository.update_chain_run(run.id, {
                "current_step_index": next_index,
                "chain_context": context.to_storage(),
            })
        logger.info(f"Chain run {run.id}: parallel group '{group}' completed, next={next_index}")
        await self._fire("parallel_group_completed", run, group=group, next_step_index=next_index)
        return run

    # ── Lifecycle ──

    async def pause(self, run: ChainRun, reason: str) -> ChainRun:
        run = await self._load(run.id)
        if run.is_terminal:
            return run
        context = ChainContext.from_dict(run.chain_context).with_pause_reason(reason)
        run = await self.repository.update_chain_run(run.id, {
            "status": ChainExecutionStatus.PAUSED,
            "paused_at": utcnow(),
            "chain_context": context.to_storage(),
        })
        logger.info(f"Chain run {run.id} paused: {reason}")
        await self._fire("chain_paused", run, reason=reason)
        return run

    async def resume(self, run: ChainRun, resume_data: Optional[dict] = None) -> ChainRun:
        run = await self._load(run.id)
        if run.status != ChainExecutionStatus.PAUSED:
            return run
        context = ChainContext.from_dict(run.chain_context).with_resume_data(resume_data)
        run = await self.repository.update_chain_run(run.id, {
            "status": ChainExecutionStatus.RUNNING,
            "resumed_at": utcnow(),
            "chain_context": context.to_storage(),
        })
        logger.info(f"Chain run {run.id} resumed")
        await self._fire("chain_resumed", run)
        return run

    async def complete(self, run: ChainRun, result: Optional[dict] = None) -> ChainRun:
        run = await self._load(run.id)
        if run.is_terminal:
            return run
        return await self._finish(run, ChainContext.from_dict(run.chain_context), result)

    async def fail(self, run: ChainRun, error: str) -> ChainRun:
        """Fail the run, annotating the in-flight step or synthesizing a failed record."""
        run = await self._load(run.id)
        if run.is_terminal:
            return run

        now = utcnow()
        index = run.current_step_index
        record = await self.repository.get_step_record(run.id, index, status=StepStatus.RUNNING)
        if record is not None:
            await self.repository.update_step_record(record.id, {
                "status": StepStatus.FAILED,
                "completed_at": now,
                "output": {**record.output, "error": error},
            })
        else:
            await self.repository.create_step_record(ChainStepRecord(
                chain_run_id=run.id,
                step_index=index,
                status=StepStatus.FAILED,
                started_at=now,
                completed_at=now,
                output={"error": error},
            ))

        context = ChainContext.from_dict(run.chain_context).with_metadata(
            failed_at=now.isoformat(), error=error,
        )
        run = await self.repository.update_chain_run(run.id, {
            "status": ChainExecutionStatus.FAILED,
            "failed_at": now,
            "error_message": error,
            "chain_context": context.to_storage(),
        })
        cleared = await self._cleanup_memory(run)
        logger.error(f"Chain run {run.id} failed at step {index}: {error}")
        await self._fire("chain_failed", run, step_index=index, error=error, memories_cleared=cleared)
        return run

    async def request_approval(self, run: ChainRun, reason: str) -> ChainRun:
        """Pause the run and raise an approval request on the active step's workflow run."""
        run = await self.pause(run, reason)
        if run.is_terminal:
            return run
        if self.approvals is not None:
            record = await self.repository.get_step_record(run.id, run.current_step_index)
            if record is not None and record.workflow_run_id:
                workflow_run = await self.repository.get_workflow_run(record.workflow_run_id)
                if workflow_run is not None and not workflow_run.is_terminal:
                    await self.approvals.request_approval(workflow_run, f"Chain approval required: {reason}")
        logger.info(f"Chain run {run.id}: approval requested ({reason})")
        return run

    # ── Queries ──

    async def get(self, run_id: str) -> ChainRun:
        return await self._load(run_id)

    async def pending_approvals(self, team_id: str) -> list[ChainRun]:
        """Paused chain runs of a team."""
        return await self.repository.list_chain_runs(team_id, status=ChainExecutionStatus.PAUSED)

    async def build_step_context(self, run: ChainRun, step: Optional[StepConfig] = None) -> AgentContext:
        if self.assembler is None:
            return AgentContext()
        return await self.assembler.build_from_chain_context(
            ChainContext.from_dict(run.chain_context),
            run,
            step.agent_id if step else None,
            self.max_context_tokens,
            step=step,
        )

    # ── Internal ──

    async def _load(self, run_id: str) -> ChainRun:
        run = await self.repository.get_chain_run(run_id)
        if run is None:
            raise ChainRunNotFound(f"Chain run '{run_id}' not found", chain_run_id=run_id)
        return run

    async def _chain(self, run: ChainRun) -> AgentChain:
        chain = await self.repository.get_chain(run.chain_id)
        if chain is None:
            raise ChainNotFound(f"Chain '{run.chain_id}' not found", chain_id=run.chain_id)
        return chain

    async def _latest_records(self, run_id: str, indices: list[int]) -> dict[int, ChainStepRecord]:
        # ordered by (index, created_at), so later records overwrite earlier ones
        return {r.step_index: r for r in await self.repository.list_step_records(run_id, indices)}

    async def _produce_output(
        self,
        run: ChainRun,
        step: StepConfig,
        index: int,
        record: ChainStepRecord,
        step_output: Optional[dict],
    ) -> tuple[ChainStepRecord, dict, Optional[str]]:
        """Start the step's workflow run (if any) and work out its output.

        Returns:
            (record, output, error). ``error`` is set when the runner failed.
        """
        needs_runner = step_output is None and self.runner is not None and bool(step.agent_id)
        agent_context = None
        if step.agent_id and (step.workflow_kind or needs_runner):
            agent_context = await self.build_step_context(run, step)

        if step.agent_id and step.workflow_kind:
            context = ChainContext.from_dict(run.chain_context)
            workflow_run = await self.workflows.start(
                step.workflow_kind,
                {
                    "chain_run_id": run.id,
                    "step_index": index,
                    "previous_outputs": {str(i): o for i, o in context.all_outputs().items()},
                    "triggerable": run.triggerable.model_dump() if run.triggerable else None,
                    "context": agent_context.to_dict(),
                },
                run.team_id,
                step.agent_id,
            )
            record = await self.repository.update_step_record(record.id, {"workflow_run_id": workflow_run.id})

        if step_output is not None:
            return record, dict(step_output), None
        if not needs_runner:
            return record, {}, None

        configuration = await self.repository.get_configuration_for(run.team_id, step.agent_id)
        if configuration is None or not configuration.enabled:
            return record, {}, f"Agent '{step.agent_id}' is not configured for team '{run.team_id}'"
        agent = await self.repository.get_agent(step.agent_id) or Agent(
            id=step.agent_id, code=step.agent_id, name=step.agent_id,
        )
        result = await self.runner.run(
            agent,
            configuration,
            {**step.input, "chain_run_id": run.id, "step_index": index},
            context=agent_context,
        )
        if not result.success:
            return record, {}, result.error or "Agent run failed"
        return record, result.output, None

    async def _finish(
        self, run: ChainRun, context: ChainContext, result: Optional[dict] = None, **updates: Any,
    ) -> ChainRun:
        now = utcnow()
        context = context.with_metadata(completed_at=now.isoformat(), result=dict(result or {}))
        run = await self.repository.update_chain_run(run.id, {
            **updates,
            "status": ChainExecutionStatus.COMPLETED,
            "completed_at": now,
            "chain_context": context.to_storage(),
        })
        cleared = await self._cleanup_memory(run)
        logger.info(f"Chain run {run.id} completed ({context.completed_step_count()} steps)")
        await self._fire("chain_completed", run,
                         steps_completed=context.completed_step_count(), memories_cleared=cleared)
        return run

    async def _cleanup_memory(self, run: ChainRun) -> int:
        if self.memory is None:
            return 0
        return await self.memory.clear_chain_memory(run.team_id, run.id)

    async def _record_step(
        self, run: ChainRun, step: StepConfig, index: int, output: Optional[dict], error: Optional[str],
    ) -> None:
        if self.activity is None:
            return
        await self.activity.append(ActivityEntry(
            team_id=run.team_id,
            agent_id=step.agent_id,
            run_type="chain_step",
            input=json.dumps({"chain_run_id": run.id, "step_index": index}),
            output=json.dumps(output, default=str) if output is not None else None,
            error=error,
        ))

    async def _fire(self, event: str, run: ChainRun, **extra: Any) -> None:
        await emit(self.callbacks, event, {
            "chain_run_id": run.id,
            "chain_id": run.chain_id,
            "team_id": run.team_id,
            "status": run.status.value,
            **extra,
        })
