"""Operator CLI for storyreel using Typer and Rich.

Commands:
- init-db: Create the database schema
- projects: List all projects in a table
- status: Show a project and its scenes
- poll: Poll one generation task until it finishes
- sweep: Settle generation tasks stuck in flight
- reset: Release a scene stuck in processing
- serve: Run the API server
"""

import asyncio
import logging
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyreel import validate_dependencies
from storyreel.config import settings
from storyreel.db import async_session, init_database, shutdown
from storyreel.errors import StoryReelError
from storyreel.orchestrator.state import STAGE_DESCRIPTIONS
from storyreel.services import project_service, scene_service
from storyreel.workers.polling import resume_poll, sweep_stale_tasks

app = typer.Typer(name="storyreel", help="Story to multi-scene video production pipeline")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.server.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro):
    """Run a command coroutine, turning domain errors into a clean exit."""
    async def _wrapped():
        try:
            return await coro
        finally:
            await shutdown()

    try:
        return asyncio.run(_wrapped())
    except StoryReelError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid {label} UUID: {value}")
        raise typer.Exit(code=1)


def _status_color(status: str) -> str:
    """Rich color for a scene or project status."""
    if status in ("completed",):
        return "green"
    elif status == "failed":
        return "red"
    elif status == "processing":
        return "yellow"
    elif status in ("pending", "draft"):
        return "dim"
    return "white"


@app.command("init-db")
def init_db():
    """Create all database tables."""
    _run(init_database())
    console.print(f"[green]Database ready:[/green] {settings.storage.database_url}")


@app.command("projects")
def list_projects():
    """List all projects."""
    _run(_projects_async())


async def _projects_async():
    await init_database()
    async with async_session() as session:
        projects = await project_service.list_projects(session)

    if not projects:
        console.print("[dim]No projects yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Mode")
    table.add_column("Stage")
    table.add_column("Created")
    for p in projects:
        table.add_row(
            str(p.id),
            p.title if len(p.title) <= 50 else p.title[:47] + "...",
            p.mode,
            f"[{_status_color(p.stage)}]{p.stage}[/{_status_color(p.stage)}]",
            p.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def status(project_id: str = typer.Argument(..., help="Project UUID")):
    """Show project stage and per-scene status."""
    _run(_status_async(_parse_uuid(project_id, "project")))


async def _status_async(project_id: uuid.UUID):
    await init_database()
    async with async_session() as session:
        detail = await project_service.get_project_detail(session, project_id)

    project = detail.project
    info_lines = [
        f"[bold]ID:[/bold] {project.id}",
        f"[bold]Title:[/bold] {project.title}",
        f"[bold]Stage:[/bold] {project.stage} [dim]({STAGE_DESCRIPTIONS[project.stage]})[/dim]",
        f"[bold]Style:[/bold] {project.style or 'realistic'}",
        f"[bold]Scenes:[/bold] {len(detail.scenes)}",
    ]
    if project.output_path:
        info_lines.append(f"[bold]Output:[/bold] [green]{project.output_path}[/green]")
    console.print(Panel("\n".join(info_lines), title="Project", expand=False))

    if not detail.scenes:
        return
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Scene ID", style="dim")
    table.add_column("Status")
    table.add_column("Latest video")
    for d in detail.scenes:
        table.add_row(
            str(d.scene.order_index),
            str(d.scene.id),
            scene_service.scene_summary(d.scene),
            (d.video.task_id or "") if d.video else "",
        )
    console.print(table)


@app.command()
def poll(
    task_id: str = typer.Argument(..., help="Provider task id"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="image or video"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between polls"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Give up after N polls"),
):
    """Poll a generation task until it completes, fails or times out."""
    outcome = _run(_poll_async(task_id, kind, interval, max_attempts))
    color = _status_color(outcome.status)
    console.print(f"Task {task_id}: [{color}]{outcome.status}[/{color}] after {outcome.attempts} poll(s)")
    if outcome.timed_out:
        console.print("[yellow]Timed out; the task is still resumable.[/yellow]")
        raise typer.Exit(code=2)
    result = outcome.result
    if getattr(result, "warning", None):
        console.print(f"[yellow]Warning:[/yellow] {result.warning}")
    if getattr(result, "error", None):
        console.print(f"[red]Error:[/red] {result.error}")
    elif getattr(result, "artifact_url", None):
        console.print(f"[green]Artifact:[/green] {result.artifact_url}")


async def _poll_async(task_id, kind, interval, max_attempts):
    await init_database()
    return await resume_poll(task_id, kind=kind, interval=interval, max_attempts=max_attempts)


@app.command()
def sweep(
    older_than: Optional[int] = typer.Option(
        None, "--older-than", help="Age in seconds (default: pipeline.stale_task_seconds)"
    ),
):
    """Poll stale in-flight tasks once and expire the ones still unfinished."""
    result = _run(_sweep_async(older_than))
    console.print(
        f"Checked {result.checked}, finalized [green]{result.finalized}[/green], "
        f"expired [red]{result.expired}[/red]"
    )
    for task_id in result.task_ids:
        console.print(f"  [dim]expired[/dim] {task_id}")


async def _sweep_async(older_than):
    await init_database()
    async with async_session() as session:
        return await sweep_stale_tasks(session, older_than)


@app.command()
def reset(
    scene_id: str = typer.Argument(..., help="Scene UUID"),
    kind: str = typer.Argument(..., help="image or video"),
):
    """Move a scene stuck in processing back to pending."""
    if kind not in ("image", "video"):
        console.print(f"[red]Error:[/red] kind must be image or video, not {kind}")
        raise typer.Exit(code=1)
    scene = _run(_reset_async(_parse_uuid(scene_id, "scene"), kind))
    console.print(f"[green]Scene {scene.order_index}:[/green] {scene_service.scene_summary(scene)}")


async def _reset_async(scene_id: uuid.UUID, kind: str):
    await init_database()
    async with async_session() as session:
        return await scene_service.reset_scene_status(session, scene_id, kind)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    validate_dependencies()
    uvicorn.run(
        "storyreel.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )
