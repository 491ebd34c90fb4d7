"""ParallelStepDispatcher: hands a chain's parallel group to the arq queue as one named batch."""

from __future__ import annotations

import logging

from foreman.types import StepBatch

logger = logging.getLogger(__name__)


class ParallelStepDispatcher:
    """StepQueue backed by an arq redis pool.

    Each member of the batch becomes one ``execute_chain_step_task`` job.
    Job ids are derived from the batch name and step index. Batch names carry a
    per-dispatch id, so each pass over a group gets fresh jobs while retries of
    one dispatch stay deduplicated by arq.
    """

    def __init__(self, redis_pool) -> None:
        self._redis = redis_pool

    # ── Public API ────────────────────────────────────────────────────────────

    async def dispatch_batch(self, batch: StepBatch) -> StepBatch:
        job_ids = []
        for step_index in batch.step_indices:
            job = await self._redis.enqueue_job(
                "execute_chain_step_task",
                batch.chain_run_id,
                step_index,
                batch.group,
                _job_id=f"{batch.name}-{step_index}",
            )
            job_ids.append(job.job_id if job else None)
        logger.info(
            "Dispatched batch %s: steps=%s jobs=%s", batch.name, batch.step_indices, job_ids,
        )
        return batch.model_copy(update={"job_ids": job_ids})
