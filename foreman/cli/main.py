"""foreman CLI: Typer application."""

import logging

import typer
from rich.console import Console

from foreman.config import config
from foreman.version import __version__

app = typer.Typer(
    name="foreman",
    help="foreman: agent orchestration for project delivery teams.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """foreman CLI."""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if version:
        console.print(f"foreman v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Core commands ──────────────────────────────────────────────────────────────
from foreman.cli.commands import config as config_cmd, db, worker  # noqa: E402

app.command(name="init-db", help="Create the foreman tables")(db.init_db_cmd)
app.command(name="config", help="Show resolved configuration")(config_cmd.config_show)
app.command(name="worker", help="Run the background chain worker")(worker.worker_run)

# ── Chains ─────────────────────────────────────────────────────────────────────
from foreman.cli.commands import chain as chain_cmd  # noqa: E402

chain_app = typer.Typer(name="chain", help="Chain definition commands.")
chain_app.command("validate", help="Validate a chain definition file")(chain_cmd.chain_validate)
app.add_typer(chain_app)

# ── Memory ─────────────────────────────────────────────────────────────────────
from foreman.cli.commands import memory as memory_cmd  # noqa: E402

memory_app = typer.Typer(name="memory", help="Agent memory maintenance.")
memory_app.command("sweep", help="Hard-delete expired memory entries")(memory_cmd.memory_sweep)
app.add_typer(memory_app)


if __name__ == "__main__":
    app()
