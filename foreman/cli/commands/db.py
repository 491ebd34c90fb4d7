"""foreman init-db: Create the foreman tables."""

import asyncio

from rich.console import Console

console = Console()


def init_db_cmd():
    """Create all foreman tables in the configured database.

    Example:
        foreman init-db
    """
    from foreman.config import config
    from foreman.db.database import init_db

    with console.status("[dim]Connecting to database...[/dim]"):
        asyncio.run(init_db())
    console.print(f"[bold green]Database initialized[/bold green] [dim]({config.database_url.split('@')[-1]})[/dim]")
