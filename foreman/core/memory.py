"""Persisted agent memory keyed by (team, scope, scope_id, key).

Reads only see rows that are neither tombstoned nor expired; expired rows
stay in storage until ``clear_expired`` hard-deletes them. Chain-scoped
memory is bulk-deleted when its chain run becomes terminal.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from foreman.exceptions import MemoryStoreError
from foreman.types import MemoryEntry, MemoryScope, utcnow

logger = logging.getLogger(__name__)


def _scope(scope: Union[MemoryScope, str]) -> MemoryScope:
    try:
        return MemoryScope(scope)
    except ValueError:
        raise MemoryStoreError(
            f"Invalid memory scope '{scope}'. Valid scopes: "
            f"{', '.join(s.value for s in MemoryScope)}"
        )


class MemoryStore:
    """Scoped key/value memory with optional TTL.

    Args:
        repository: Repository used for persistence.
        clock: Returns the current UTC time. Injected for expiry tests.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def store(
        self,
        team_id: str,
        scope: Union[MemoryScope, str],
        scope_id: str,
        key: str,
        value: Any,
        agent_id: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> MemoryEntry:
        """Upsert one memory. ``ttl_minutes`` becomes an absolute expiry."""
        if not key:
            raise MemoryStoreError("Memory key must not be empty")
        expires_at = self.clock() + timedelta(minutes=ttl_minutes) if ttl_minutes is not None else None
        return await self.repository.upsert_memory(
            team_id, _scope(scope), str(scope_id), key, value, agent_id, expires_at,
        )

    async def store_many(
        self,
        team_id: str,
        scope: Union[MemoryScope, str],
        scope_id: str,
        values: dict[str, Any],
        agent_id: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> list[MemoryEntry]:
        return [
            await self.store(team_id, scope, scope_id, key, value, agent_id, ttl_minutes)
            for key, value in values.items()
        ]

    async def retrieve(
        self, team_id: str, scope: Union[MemoryScope, str], scope_id: str, key: str, default: Any = None,
    ) -> Any:
        entry = await self.repository.get_memory(team_id, _scope(scope), str(scope_id), key, self.clock())
        return entry.value if entry is not None else default

    async def has(self, team_id: str, scope: Union[MemoryScope, str], scope_id: str, key: str) -> bool:
        entry = await self.repository.get_memory(team_id, _scope(scope), str(scope_id), key, self.clock())
        return entry is not None

    async def forget(self, team_id: str, scope: Union[MemoryScope, str], scope_id: str, key: str) -> bool:
        """Tombstone one memory. Returns False when there was nothing to forget."""
        return await self.repository.tombstone_memory(team_id, _scope(scope), str(scope_id), key, self.clock())

    async def get_for_scope(
        self, team_id: str, scope: Union[MemoryScope, str], scope_id: str,
    ) -> list[MemoryEntry]:
        return await self.repository.list_memories(team_id, _scope(scope), self.clock(), scope_id=str(scope_id))

    async def get_all_for_scope_level(self, team_id: str, scope: Union[MemoryScope, str]) -> list[MemoryEntry]:
        return await self.repository.list_memories(team_id, _scope(scope), self.clock())

    async def clear_expired(self) -> int:
        """Hard-delete expired rows. Returns the number removed."""
        removed = await self.repository.delete_expired_memories(self.clock())
        if removed:
            logger.info(f"Swept {removed} expired memories")
        return removed

    # ── Chain-scoped helpers ──

    async def store_chain_memory(
        self, team_id: str, chain_run_id: str, key: str, value: Any,
        agent_id: Optional[str] = None, ttl_minutes: Optional[int] = None,
    ) -> MemoryEntry:
        return await self.store(team_id, MemoryScope.CHAIN, chain_run_id, key, value, agent_id, ttl_minutes)

    async def get_chain_memory(self, team_id: str, chain_run_id: str, key: str, default: Any = None) -> Any:
        return await self.retrieve(team_id, MemoryScope.CHAIN, chain_run_id, key, default)

    async def has_chain_memory(self, team_id: str, chain_run_id: str, key: str) -> bool:
        return await self.has(team_id, MemoryScope.CHAIN, chain_run_id, key)

    async def get_all_chain_memories(self, team_id: str, chain_run_id: str) -> dict[str, Any]:
        entries = await self.get_for_scope(team_id, MemoryScope.CHAIN, chain_run_id)
        return {e.key: e.value for e in entries}

    async def clear_chain_memory(self, team_id: str, chain_run_id: str) -> int:
        """Hard-delete all memory of one chain run. Returns rows removed."""
        removed = await self.repository.delete_memories_for_scope(team_id, MemoryScope.CHAIN, str(chain_run_id))
        if removed:
            logger.info(f"Cleared {removed} chain memories for chain run {chain_run_id}")
        return removed
