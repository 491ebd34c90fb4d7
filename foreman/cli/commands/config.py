"""foreman config: Show resolved foreman configuration."""

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()

_SECTIONS = [
    ("App", ["debug", "log_level"]),
    ("Database", ["database_url"]),
    ("LLM", ["default_llm_model", "llm_api_key", "llm_max_tokens", "llm_temperature", "llm_timeout_seconds"]),
    ("Context", ["context_max_tokens", "entity_directory"]),
    ("Chains", ["chain_max_auto_steps", "step_job_max_tries", "step_job_retry_delay_seconds"]),
    ("Memory", ["memory_sweep_minute"]),
    ("Cost", ["runner_base_cost", "runner_cost_per_input_char", "cost_per_1k_tokens"]),
    ("Approvals", ["auto_approval_threshold", "permissions_file"]),
    ("Background Execution", ["worker_concurrency", "task_queue_url"]),
]

_SENSITIVE = {"llm_api_key"}


def mask(val: str) -> str:
    s = str(val)
    if len(s) <= 8:
        return "***"
    return s[:4] + "…" + "***"


def config_show():
    """Show the resolved foreman configuration.

    Reads from environment variables and .env file. API keys are masked.

    Example:
        foreman config
    """
    from foreman.config import ForemanConfig
    cfg = ForemanConfig()

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title="[bold]foreman Configuration[/bold]",
    )
    table.add_column("Key", style="cyan", width=30)
    table.add_column("Value", width=55)
    table.add_column("Env Var", style="dim", width=38)

    first = True
    for section_name, fields in _SECTIONS:
        if not first:
            table.add_row("", "", "")
        first = False
        table.add_row(f"[bold dim]── {section_name} ──[/bold dim]", "", "")
        for attr in fields:
            val = getattr(cfg, attr, None)
            if val is None:
                display = "[dim](not set)[/dim]"
            elif attr in _SENSITIVE:
                display = mask(str(val))
            else:
                display = str(val)
            table.add_row(f"  {attr}", display, f"FOREMAN_{attr.upper()}")

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Source: environment variables + .env file (prefix: FOREMAN_)[/dim]")
