"""CLI entry-point: run generation jobs in-process, inspect them, and run maintenance."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from genflow.assets.store import build_asset_store
from genflow.config import Settings, get_settings
from genflow.errors import ConfigError, NotFoundError, ValidationError
from genflow.jobs.maintenance import cleanup_terminal_jobs, fail_stuck_jobs
from genflow.jobs.models import JobSnapshot, JobStatus, to_snapshot
from genflow.jobs.store import build_job_store
from genflow.orchestrator import create_orchestrator, load_progress_table
from genflow.owners import COVER_IMAGE_SLOT, OwnerProfile

app = typer.Typer(help="Generation job orchestrator")

_STATUS_STYLE = {
    JobStatus.COMPLETED: "green",
    JobStatus.PARTIAL: "yellow",
    JobStatus.FAILED: "red",
}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level")):
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)


def _parse_params(pairs: list[str]) -> dict:
    """``key=value`` pairs; values are read as JSON when possible (numbers, lists, booleans)."""
    params: dict = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got {pair!r}", param_hint="--param")
        try:
            params[key.strip()] = json.loads(value)
        except ValueError:
            params[key.strip()] = value
    return params


def _print_snapshot(console: Console, snap: JobSnapshot) -> None:
    style = _STATUS_STYLE.get(snap.status, "cyan")
    table = Table(title=f"Job {snap.job_id}", show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("Owner", snap.owner_id)
    table.add_row("Kind", snap.kind.value)
    table.add_row("Status", f"[{style}]{snap.status.value}[/{style}]")
    table.add_row("Step", snap.current_step)
    table.add_row("Progress", f"{snap.progress_percentage}%")
    if snap.screens_total:
        table.add_row("Screens", f"{snap.screens_generated}/{snap.screens_total}")
    for concept in snap.payload.get("concepts", []):
        table.add_row("Concept", f"{concept['name']}: {concept['subtitle']}")
    if snap.payload.get("description"):
        table.add_row("Description", snap.payload["description"])
    for unit in snap.failed_units:
        table.add_row("Failed unit", f"{unit.unit_name}: {unit.error_message}")
    if snap.error:
        table.add_row("Error", f"[red]{snap.error}[/red]")
    table.add_row("Created", snap.created_at.isoformat())
    table.add_row("Updated", snap.updated_at.isoformat())
    console.print(table)


@app.command()
def generate(
    owner: str = typer.Option(..., "--owner", help="Owner (app) id the job belongs to"),
    kind: str = typer.Option(
        "fullAppGeneration", "--kind",
        help="concept | icon | screens | coverImage | coverVideo | fullAppGeneration | improveDescription",
    ),
    param: list[str] = typer.Option([], "--param", "-p", help="Job parameter as key=value (repeatable)"),
    mock: bool = typer.Option(False, "--mock", help="Use the offline mock provider"),
    cover_image: str = typer.Option(None, "--cover-image", help="Image file to attach as the owner's cover image"),
    app_name: str = typer.Option(None, "--app-name", help="Owner's app name"),
    app_description: str = typer.Option(None, "--app-description", help="Owner's current store description"),
):
    """Run one job in-process and follow its progress until it finishes."""
    console = Console()
    settings = get_settings()
    if mock:
        settings = settings.model_copy(update={"genflow_provider": "mock"})
    params = _parse_params(param)
    profile = OwnerProfile(name=app_name, description=app_description) if app_name or app_description else None
    status = asyncio.run(_generate(console, settings, owner, kind, params, cover_image, profile))
    if status == JobStatus.FAILED:
        raise typer.Exit(1)


async def _generate(
    console: Console,
    settings: Settings,
    owner: str,
    kind: str,
    params: dict,
    cover_image: str | None,
    profile: OwnerProfile | None = None,
) -> JobStatus:
    assets = build_asset_store(settings)
    orchestrator = create_orchestrator(settings, assets=assets)
    orchestrator.owners.register(owner, profile)
    if cover_image:
        path = Path(cover_image)
        if not path.exists():
            console.print(f"[red]Error: cover image not found: {path}[/red]")
            raise typer.Exit(1)
        ref = await assets.put(path.read_bytes(), "image/png" if path.suffix.lower() == ".png" else "image/jpeg")
        await orchestrator.owners.attach(owner, COVER_IMAGE_SLOT, ref)

    try:
        job_id = await orchestrator.submit(owner, kind, params)
    except (ValidationError, NotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Submitted job {job_id}")

    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Queued", total=100)
            async for snap in orchestrator.subscribe(job_id):
                progress.update(task, completed=snap.progress_percentage, description=snap.current_step)
        await orchestrator.wait(job_id)
        final = await orchestrator.get_job(job_id)
    finally:
        await orchestrator.shutdown()

    _print_snapshot(console, final)
    return final.status


@app.command()
def show(job_id: str = typer.Argument(..., help="Job id (job_...)")):
    """Print the stored snapshot of a job."""
    console = Console()
    store = build_job_store(get_settings())
    job = asyncio.run(store.get(job_id))
    if job is None:
        console.print(f"[red]Error: job not found: {job_id}[/red]")
        raise typer.Exit(1)
    _print_snapshot(console, to_snapshot(job))


@app.command()
def sweep(
    max_age: int = typer.Option(None, "--max-age", help="Seconds without update before a job counts as stuck"),
):
    """Fail jobs that stopped making progress."""
    console = Console()
    settings = get_settings()
    store = build_job_store(settings)
    failed = asyncio.run(fail_stuck_jobs(store, max_age or settings.stuck_job_age))
    for job_id in failed:
        console.print(f"[yellow]Failed stuck job {job_id}[/yellow]")
    console.print(f"[green]Done.[/green] {len(failed)} stuck job(s) failed.")


@app.command()
def cleanup(
    older_than: int = typer.Option(None, "--older-than", help="Retention window in seconds"),
):
    """Delete finished jobs older than the retention window."""
    console = Console()
    settings = get_settings()
    store = build_job_store(settings)
    deleted = asyncio.run(cleanup_terminal_jobs(store, older_than or settings.genflow_retention_s))
    console.print(f"[green]Done.[/green] {deleted} job(s) deleted.")


@app.command("progress-table")
def progress_table():
    """Print the validated per-stage progress slices."""
    console = Console()
    try:
        table = load_progress_table(get_settings())
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    out = Table(title="Progress slices")
    out.add_column("Kind")
    out.add_column("Stage")
    out.add_column("Start", justify="right")
    out.add_column("End", justify="right")
    for kind, slices in table.slices.items():
        for s in slices:
            out.add_row(kind.value, s.stage, str(s.start), str(s.end))
    console.print(out)


if __name__ == "__main__":
    app()
