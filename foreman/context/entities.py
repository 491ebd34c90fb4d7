"""Read-only access to domain entities (projects, work orders, tasks, parties, teams).

Business entities are persisted and owned elsewhere; the context assembler
only reads snapshots of them through this interface. ``InMemoryDirectory``
is a complete implementation backed by dicts, used by tests, the CLI and
embedders that already hold snapshots in memory.
"""

from typing import Optional, Protocol, runtime_checkable

from foreman.types import (
    ContactSnapshot, PartySnapshot, ProjectSnapshot, TaskSnapshot, TeamSnapshot,
    WorkOrderSnapshot,
)

_DONE_TASK_STATUSES = {"done", "completed", "cancelled"}
_ACTIVE_PROJECT_STATUSES = {"active", "in_progress", "planning"}


@runtime_checkable
class EntityDirectory(Protocol):
    """Lookups the context assembler needs. All methods are read-only."""

    async def get_task(self, task_id: str) -> Optional[TaskSnapshot]: ...

    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrderSnapshot]: ...

    async def get_project(self, project_id: str) -> Optional[ProjectSnapshot]: ...

    async def get_party(self, party_id: str) -> Optional[PartySnapshot]: ...

    async def get_team(self, team_id: str) -> Optional[TeamSnapshot]: ...

    async def list_work_orders(self, project_id: str, limit: int) -> list[WorkOrderSnapshot]:
        """Most recent work orders of a project."""
        ...

    async def list_pending_tasks(self, project_id: str, limit: int) -> list[TaskSnapshot]:
        """Tasks of a project that are not done, earliest due first."""
        ...

    async def list_projects_for_party(self, party_id: str, limit: int) -> list[ProjectSnapshot]:
        """Non-archived projects of a party, most recently updated first."""
        ...

    async def list_contacts(self, party_id: str, limit: int) -> list[ContactSnapshot]: ...

    async def team_statistics(self, team_id: str) -> dict:
        """At least ``active_projects`` and ``total_parties`` counts."""
        ...


class InMemoryDirectory:
    """Dict-backed EntityDirectory."""

    def __init__(self):
        self.teams: dict[str, TeamSnapshot] = {}
        self.parties: dict[str, PartySnapshot] = {}
        self.contacts: dict[str, ContactSnapshot] = {}
        self.projects: dict[str, ProjectSnapshot] = {}
        self.work_orders: dict[str, WorkOrderSnapshot] = {}
        self.tasks: dict[str, TaskSnapshot] = {}

    def add(self, *snapshots) -> "InMemoryDirectory":
        """Register snapshots of any supported kind. Returns self for chaining."""
        buckets = {
            TeamSnapshot: self.teams,
            PartySnapshot: self.parties,
            ContactSnapshot: self.contacts,
            ProjectSnapshot: self.projects,
            WorkOrderSnapshot: self.work_orders,
            TaskSnapshot: self.tasks,
        }
        for snap in snapshots:
            buckets[type(snap)][snap.id] = snap
        return self

    async def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        return self.tasks.get(task_id)

    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrderSnapshot]:
        return self.work_orders.get(work_order_id)

    async def get_project(self, project_id: str) -> Optional[ProjectSnapshot]:
        return self.projects.get(project_id)

    async def get_party(self, party_id: str) -> Optional[PartySnapshot]:
        return self.parties.get(party_id)

    async def get_team(self, team_id: str) -> Optional[TeamSnapshot]:
        return self.teams.get(team_id)

    async def list_work_orders(self, project_id: str, limit: int) -> list[WorkOrderSnapshot]:
        rows = [w for w in self.work_orders.values() if w.project_id == project_id]
        return list(reversed(rows))[:limit]

    async def list_pending_tasks(self, project_id: str, limit: int) -> list[TaskSnapshot]:
        rows = [
            t for t in self.tasks.values()
            if t.project_id == project_id and t.status not in _DONE_TASK_STATUSES
        ]
        rows.sort(key=lambda t: (t.due_date is None, t.due_date or ""))
        return rows[:limit]

    async def list_projects_for_party(self, party_id: str, limit: int) -> list[ProjectSnapshot]:
        rows = [p for p in self.projects.values() if p.party_id == party_id and not p.archived]
        rows.sort(key=lambda p: p.updated_at, reverse=True)
        return rows[:limit]

    async def list_contacts(self, party_id: str, limit: int) -> list[ContactSnapshot]:
        return [c for c in self.contacts.values() if c.party_id == party_id][:limit]

    async def team_statistics(self, team_id: str) -> dict:
        return {
            "active_projects": sum(
                1 for p in self.projects.values()
                if p.team_id == team_id and not p.archived and p.status in _ACTIVE_PROJECT_STATUSES
            ),
            "total_parties": sum(1 for p in self.parties.values() if p.team_id == team_id),
        }
