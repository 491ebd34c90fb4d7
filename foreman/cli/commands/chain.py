"""foreman chain: Validate and register chain definition files."""

import asyncio
from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from foreman.exceptions import ChainDefinitionError

console = Console()


async def _save(chain):
    from foreman.db.database import async_session, init_db
    from foreman.db.repository import Repository

    await init_db()
    async with async_session() as session:
        return await Repository(session).save_chain(chain)


def chain_validate(
    file: Path = typer.Argument(..., help="Chain definition YAML"),
    team: str = typer.Option("default", "--team", "-t", help="Team that owns the chain"),
    save: bool = typer.Option(False, "--save", help="Persist the chain after validation"),
):
    """Validate a chain definition file and print its steps.

    Example:
        foreman chain validate chains/intake.yaml --team acme --save
    """
    from foreman.config import load_chain_yaml

    try:
        chain = load_chain_yaml(file, team)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    except ChainDefinitionError as exc:
        console.print(f"[bold red]Invalid chain:[/bold red] {exc}")
        for violation in exc.violations:
            console.print(f"  [red]•[/red] {violation}")
        raise typer.Exit(1)

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        title=f"[bold]{chain.name}[/bold] [dim]({len(chain.steps)} steps)[/dim]",
    )
    table.add_column("#", justify="right", width=4)
    table.add_column("Agent", style="cyan", width=20)
    table.add_column("Workflow", width=20)
    table.add_column("Mode", width=12)
    table.add_column("Branches", justify="right", width=9)
    for index, step in enumerate(chain.steps):
        mode = step.execution_mode.value
        if step.step_group:
            mode = f"{mode}:{step.step_group}"
        table.add_row(
            str(index),
            step.agent_id or "[dim]-[/dim]",
            step.workflow_kind or "[dim]-[/dim]",
            mode,
            str(len(step.next_step_conditions)),
        )
    console.print(table)

    if save:
        saved = asyncio.run(_save(chain))
        console.print(f"[bold green]Saved[/bold green] chain [cyan]{saved.id}[/cyan] for team {team}")
