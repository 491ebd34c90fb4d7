"""Append-only activity log. Every workflow run, chain step, tool call and agent run lands here.

In-memory store is always maintained. If a repository (DB) is available,
entries are also persisted. The log is never read back by the engines;
it exists for audit and budget reconciliation.
"""

from typing import Optional

from foreman.types import ActivityEntry

_MAX_MEMORY_ENTRIES = 10_000


class ActivityLog:
    """Append-only activity sink."""

    def __init__(self, repository=None):
        """
        Args:
            repository: Injected DB repository for persistence.
                        Can be None for in-memory only mode.
        """
        self._memory_store: list[ActivityEntry] = []
        self._repository = repository

    async def append(self, entry: ActivityEntry) -> ActivityEntry:
        """Append entry. If repository available, persist. Always keep in memory."""
        self._memory_store.append(entry)
        if len(self._memory_store) > _MAX_MEMORY_ENTRIES:
            self._memory_store = self._memory_store[-_MAX_MEMORY_ENTRIES:]
        if self._repository is not None:
            await self._repository.append_activity(entry)
        return entry

    def entries(self, run_type: Optional[str] = None, agent_id: Optional[str] = None) -> list[ActivityEntry]:
        """In-memory entries, optionally filtered. Oldest first."""
        return [
            e for e in self._memory_store
            if (run_type is None or e.run_type == run_type)
            and (agent_id is None or e.agent_id == agent_id)
        ]

    def __len__(self) -> int:
        return len(self._memory_store)
