"""foreman memory: Agent memory maintenance."""

import asyncio

from rich.console import Console

console = Console()


async def _sweep() -> int:
    from foreman.core.memory import MemoryStore
    from foreman.db.database import async_session
    from foreman.db.repository import Repository

    async with async_session() as session:
        return await MemoryStore(Repository(session)).clear_expired()


def memory_sweep():
    """Hard-delete memory entries past their expiry.

    Example:
        foreman memory sweep
    """
    with console.status("[dim]Sweeping expired memories...[/dim]"):
        deleted = asyncio.run(_sweep())
    console.print(f"[bold green]Removed {deleted} expired memory entries[/bold green]")
