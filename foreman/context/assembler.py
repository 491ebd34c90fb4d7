"""Assembles the token-budgeted AgentContext for one agent execution.

The hierarchy is resolved by walking an entity's relationships upward
through an EntityDirectory:

    task       -> project (directly, or via its work order) -> party, team
    work_order -> project -> party, team
    project    -> party, team
    party      -> most recent non-archived project, team
    team       -> team only

Each tier is built from the snapshot, stored memories for that tier are
appended, and the result is truncated to the token budget.
"""

import json
import logging
from typing import Any, Optional

from foreman.context.agent_context import AgentContext, estimate_payload_tokens
from foreman.context.entities import EntityDirectory
from foreman.context.transformers import OutputTransformer, filter_output
from foreman.core.chain_context import ChainContext
from foreman.exceptions import ContextResolutionError
from foreman.types import (
    ChainRun, EntityKind, EntityRef, MemoryScope, PartySnapshot, ProjectSnapshot,
    StepConfig, TeamSnapshot, utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4000

# Truncation priorities
LOW_PRIORITY_FIELDS = (
    "stored_memories", "tags", "notes", "statistics", "contacts", "chain_memories",
)
ARRAY_FIELDS = ("recent_work_orders", "pending_tasks", "active_projects", "previous_step_outputs")
ARRAY_KEEP = 3
ESSENTIAL_FIELDS = ("name", "status", "description", "type")
TIER_WEIGHTS = {"project_context": 1.5, "client_context": 1.0, "org_context": 0.5}

NOTES_MAX_LENGTH = 500


def truncate_text(text: Optional[str], max_length: int) -> Optional[str]:
    if text is None or len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def truncate_section(section: dict, max_tokens: int) -> dict:
    """Shrink one tier until its estimate fits ``max_tokens``.

    Order: drop low-priority fields one at a time, slice array fields to
    their first entries, keep only essential scalars, then shorten the
    remaining strings and finally empty the tier.
    """
    if not section or estimate_payload_tokens(section) <= max_tokens:
        return section

    truncated = dict(section)
    for field in LOW_PRIORITY_FIELDS:
        if field in truncated:
            del truncated[field]
            if estimate_payload_tokens(truncated) <= max_tokens:
                return truncated

    for field in ARRAY_FIELDS:
        if isinstance(truncated.get(field), list):
            truncated[field] = truncated[field][:ARRAY_KEEP]
            if estimate_payload_tokens(truncated) <= max_tokens:
                return truncated

    truncated = {k: v for k, v in truncated.items() if k in ESSENTIAL_FIELDS}
    return _clamp(truncated, max_tokens)


def _clamp(section: dict, max_tokens: int) -> dict:
    if estimate_payload_tokens(section) <= max_tokens:
        return section
    clamped = dict(section)
    for field in ("description", "name", "status", "type"):
        value = clamped.get(field)
        if not isinstance(value, str):
            continue
        overflow = len(json.dumps(clamped, default=str)) - max_tokens * 4
        clamped[field] = truncate_text(value, max(3, len(value) - overflow))
        if estimate_payload_tokens(clamped) <= max_tokens:
            return clamped
    # a tier whose essentials alone exceed its share is dropped
    return {}


def truncate_context(context: AgentContext, max_tokens: int) -> AgentContext:
    """Fit a context within ``max_tokens`` using the 1.5 : 1 : 0.5 tier split.

    Identity when already within budget. Every tier is truncated to its own
    share, and the shares sum to at most ``max_tokens``.
    """
    if context.estimate_tokens() <= max_tokens:
        return context

    base = int(max_tokens / len(TIER_WEIGHTS))
    updates: dict[str, Any] = {
        tier: truncate_section(getattr(context, tier), int(base * weight))
        for tier, weight in TIER_WEIGHTS.items()
    }
    updates["metadata"] = {**context.metadata, "truncated": True}
    logger.info(
        f"Context truncated from ~{context.estimate_tokens()} tokens to fit {max_tokens}"
    )
    return context.model_copy(update=updates)


class ContextAssembler:
    """Builds AgentContext payloads from domain snapshots and stored memory.

    Args:
        directory: Read-only lookups for projects, parties, teams, tasks, work orders.
        memory: MemoryStore used for stored and chain-scoped memory. Optional.
        transformer: OutputTransformer applied to previous step outputs.
    """

    def __init__(self, directory: EntityDirectory, memory=None, transformer: OutputTransformer = None):
        self.directory = directory
        self.memory = memory
        self.transformer = transformer or OutputTransformer()

    # ── Public API ──

    async def build(
        self,
        entity: EntityRef,
        agent_id: Optional[str],
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> AgentContext:
        """Three-tier context for an agent operating on ``entity``.

        Raises:
            ContextResolutionError: entity kind has no context hierarchy
        """
        context = await self._assemble(entity)
        context = context.with_metadata(
            entity_type=entity.kind,
            entity_id=entity.id,
            agent_id=agent_id,
            built_at=utcnow().isoformat(),
        )
        return truncate_context(context, max_tokens)

    async def build_from_chain_context(
        self,
        chain_context: ChainContext,
        chain_run: ChainRun,
        agent_id: Optional[str],
        max_tokens: int = DEFAULT_MAX_TOKENS,
        step: Optional[StepConfig] = None,
    ) -> AgentContext:
        """Context for one chain step: the triggering entity's tiers, prior
        step outputs (transformed, then filtered) and chain-scoped memory.
        """
        if chain_run.triggerable is not None:
            context = await self._assemble(chain_run.triggerable)
        else:
            context = AgentContext()

        previous = self._previous_outputs(chain_context, step)
        if previous:
            context = context.with_project(previous_step_outputs=previous)

        chain_memories = await self._chain_memories(chain_run)
        if chain_memories:
            context = context.with_project(chain_memories=chain_memories)

        context = context.with_metadata(
            chain_run_id=chain_run.id,
            chain_id=chain_run.chain_id,
            chain_name=chain_context.metadata.get("chain_name"),
            step_index=chain_run.current_step_index,
            agent_id=agent_id,
            built_at=utcnow().isoformat(),
        )
        return truncate_context(context, max_tokens)

    # ── Hierarchy ──

    async def _assemble(self, entity: EntityRef) -> AgentContext:
        project, party, team = await self.resolve_hierarchy(entity)
        context = AgentContext()
        if project is not None:
            context = context.with_project(**await self.build_project_context(project))
        if party is not None:
            context = context.with_client(**await self.build_client_context(party))
        if team is not None:
            context = context.with_org(**await self.build_org_context(team))
            context = await self._append_stored_memories(context, team, project, party)
        return context

    async def resolve_hierarchy(
        self, entity: EntityRef,
    ) -> tuple[Optional[ProjectSnapshot], Optional[PartySnapshot], Optional[TeamSnapshot]]:
        d = self.directory
        project = party = None
        team_id: Optional[str] = None

        if entity.kind == EntityKind.TASK.value:
            task = await d.get_task(entity.id)
            if task is None:
                raise ContextResolutionError(f"Task '{entity.id}' not found", entity_kind=entity.kind)
            if task.project_id:
                project = await d.get_project(task.project_id)
            elif task.work_order_id:
                work_order = await d.get_work_order(task.work_order_id)
                if work_order is not None and work_order.project_id:
                    project = await d.get_project(work_order.project_id)
            team_id = task.team_id
        elif entity.kind == EntityKind.WORK_ORDER.value:
            work_order = await d.get_work_order(entity.id)
            if work_order is None:
                raise ContextResolutionError(f"Work order '{entity.id}' not found", entity_kind=entity.kind)
            if work_order.project_id:
                project = await d.get_project(work_order.project_id)
            team_id = work_order.team_id
        elif entity.kind == EntityKind.PROJECT.value:
            project = await d.get_project(entity.id)
            if project is None:
                raise ContextResolutionError(f"Project '{entity.id}' not found", entity_kind=entity.kind)
            team_id = project.team_id
        elif entity.kind == EntityKind.PARTY.value:
            party = await d.get_party(entity.id)
            if party is None:
                raise ContextResolutionError(f"Party '{entity.id}' not found", entity_kind=entity.kind)
            recent = await d.list_projects_for_party(party.id, limit=1)
            project = recent[0] if recent else None
            team_id = party.team_id
        elif entity.kind == EntityKind.TEAM.value:
            team_id = entity.id
        else:
            raise ContextResolutionError(
                f"Cannot build context for entity kind '{entity.kind}'", entity_kind=entity.kind,
            )

        if party is None and project is not None and project.party_id:
            party = await d.get_party(project.party_id)
        if team_id is None and project is not None:
            team_id = project.team_id
        team = await d.get_team(team_id) if team_id else None
        return project, party, team

    # ── Tier builders ──

    async def build_project_context(self, project: ProjectSnapshot) -> dict:
        context: dict[str, Any] = {
            "name": project.name,
            "description": project.description,
            "status": project.status or "unknown",
            "start_date": project.start_date,
            "target_end_date": project.target_end_date,
            "progress": project.progress or 0,
            "budget_hours": project.budget_hours,
            "actual_hours": project.actual_hours,
            "tags": list(project.tags),
        }
        work_orders = await self.directory.list_work_orders(project.id, limit=5)
        if work_orders:
            context["recent_work_orders"] = [
                {
                    "id": wo.id,
                    "title": wo.title,
                    "status": wo.status or "unknown",
                    "task_count": wo.task_count,
                    "completed_tasks": wo.completed_tasks,
                }
                for wo in work_orders
            ]
        tasks = await self.directory.list_pending_tasks(project.id, limit=10)
        if tasks:
            context["pending_tasks"] = [
                {
                    "id": t.id,
                    "title": t.title,
                    "status": t.status or "unknown",
                    "due_date": t.due_date,
                    "is_blocked": t.is_blocked,
                }
                for t in tasks
            ]
        return context

    async def build_client_context(self, party: PartySnapshot) -> dict:
        context: dict[str, Any] = {
            "name": party.name,
            "type": party.type or "unknown",
            "contact_name": party.contact_name,
            "contact_email": party.contact_email,
            "status": party.status or "active",
            "notes": truncate_text(party.notes, NOTES_MAX_LENGTH),
            "tags": list(party.tags),
        }
        projects = await self.directory.list_projects_for_party(party.id, limit=5)
        if projects:
            context["active_projects"] = [
                {"id": p.id, "name": p.name, "status": p.status or "unknown", "progress": p.progress or 0}
                for p in projects
            ]
        contacts = await self.directory.list_contacts(party.id, limit=3)
        if contacts:
            context["contacts"] = [{"name": c.name, "email": c.email, "role": c.role} for c in contacts]
        return context

    async def build_org_context(self, team: TeamSnapshot) -> dict:
        return {
            "name": team.name,
            "statistics": await self.directory.team_statistics(team.id),
        }

    # ── Memory & chain outputs ──

    async def _append_stored_memories(
        self,
        context: AgentContext,
        team: TeamSnapshot,
        project: Optional[ProjectSnapshot],
        party: Optional[PartySnapshot],
    ) -> AgentContext:
        if self.memory is None:
            return context
        if project is not None:
            memories = await self.memory.get_for_scope(team.id, MemoryScope.PROJECT, project.id)
            if memories:
                context = context.with_project(stored_memories={m.key: m.value for m in memories})
        if party is not None:
            memories = await self.memory.get_for_scope(team.id, MemoryScope.CLIENT, party.id)
            if memories:
                context = context.with_client(stored_memories={m.key: m.value for m in memories})
        memories = await self.memory.get_for_scope(team.id, MemoryScope.ORG, team.id)
        if memories:
            context = context.with_org(stored_memories={m.key: m.value for m in memories})
        return context

    async def _chain_memories(self, chain_run: ChainRun) -> dict:
        if self.memory is None:
            return {}
        return await self.memory.get_all_chain_memories(chain_run.team_id, chain_run.id)

    def _previous_outputs(self, chain_context: ChainContext, step: Optional[StepConfig]) -> list[dict]:
        transformations = step.output_transformations if step else []
        rules = step.context_filter_rules if step else None
        previous = []
        for index, output in chain_context.all_outputs().items():
            if transformations:
                output = self.transformer.apply(output, transformations)
            if rules is not None:
                output = filter_output(output, rules.context_include, rules.context_exclude)
            previous.append({"step_index": index, "output": output})
        return previous
