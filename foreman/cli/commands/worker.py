"""foreman worker: Run the arq background worker."""

from rich.console import Console

console = Console()


def worker_run():
    """Run the chain step worker until interrupted.

    Example:
        foreman worker
    """
    from arq import run_worker

    from foreman.config import config
    from foreman.workers.queue import WorkerSettings

    console.print(
        f"[bold]foreman worker[/bold] [dim]queue={config.task_queue_url} "
        f"concurrency={config.worker_concurrency}[/dim]"
    )
    run_worker(WorkerSettings)
