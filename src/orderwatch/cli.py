from __future__ import annotations

from typing import Optional

import typer
import uvicorn
from dotenv import load_dotenv

app = typer.Typer(add_completion=False)
tasks_app = typer.Typer(help="Manage the task list.")
app.add_typer(tasks_app, name="tasks")


def _load_env() -> None:
    load_dotenv()


def _setup_logging() -> None:
    """Configure centralized logging to both stdout and log files."""
    from orderwatch.core.config import Settings
    from orderwatch.core.logging_config import setup_logging

    settings = Settings.from_env()
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level, clear_on_launch=settings.clear_logs_on_launch)


def _registry():
    from orderwatch.core.config import Settings
    from orderwatch.core.registry import TaskRegistry

    return TaskRegistry(store_path=Settings.from_env().tasks_path)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: ORDERWATCH_HOST or 127.0.0.1)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: ORDERWATCH_PORT or 18791)"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    from orderwatch.core.config import Settings

    _load_env()
    _setup_logging()
    settings = Settings.from_env()
    uvicorn.run(
        "orderwatch.core.gateway:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        factory=True,
    )


@app.command()
def version() -> None:
    from orderwatch import __version__

    typer.echo(__version__)


@tasks_app.command("list")
def tasks_list() -> None:
    _load_env()
    tasks = _registry().list_tasks()
    if not tasks:
        typer.echo("No tasks.")
        return
    for task in tasks:
        typer.echo(f"{task.task_id:>4}  {task.status.value:<8}  {task.name}")


@tasks_app.command("add")
def tasks_add(
    name: str = typer.Argument(..., help="Unique task name"),
    url: str = typer.Option("", "--url", help="Endpoint the HTTP fetcher reads orders from"),
    cookie: str = typer.Option("", "--cookie", help="Cookie header sent with each fetch"),
) -> None:
    _load_env()
    try:
        task = _registry().add_task(name, source_url=url, cookie=cookie)
    except ValueError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Added task {task.task_id}: {task.name}")


@tasks_app.command("remove")
def tasks_remove(task_id: int = typer.Argument(..., help="Task id")) -> None:
    _load_env()
    if not _registry().remove_task(task_id):
        typer.secho(f"No task with id {task_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Removed task {task_id}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
