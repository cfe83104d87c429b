"""CLI entry point for fileferry.

Provides commands:
  - upload: Upload local files to an endpoint, optionally through a job
  - config: Manage the job-service auth key in the system keyring
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

import keyring
import typer
from keyring.errors import KeyringError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from fileferry.config import ENV_VAR, KEY_NAME, SERVICE_NAME, load_upload_config
from fileferry.models import BatchResult, FileRecord, WaitMode

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="fileferry - upload batches of files with progress, retry and job tracking",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (auth key)")
app.add_typer(config_app, name="config")

_WAIT_CHOICES = {
    "finished": WaitMode.PROCESSING_FINISHED,
    "metadata": WaitMode.METADATA_READY,
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must look like 'Name: value', got {value!r}")
        headers[name.strip()] = content.strip()
    return headers


@app.command()
def upload(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files to upload", exists=True, dir_okay=False),
    ],
    endpoint: Annotated[
        Optional[str],
        typer.Option("--endpoint", "-e", help="Upload endpoint URL"),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to upload_config.json"),
    ] = None,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-n", help="Max simultaneous transfers"),
    ] = None,
    field_name: Annotated[
        Optional[str],
        typer.Option("--field-name", help="Form field carrying the file"),
    ] = None,
    bare: Annotated[
        bool,
        typer.Option("--bare", help="Send the raw file body instead of a form"),
    ] = False,
    header: Annotated[
        Optional[list[str]],
        typer.Option("--header", "-H", help="Extra request header 'Name: value'"),
    ] = None,
    template: Annotated[
        Optional[str],
        typer.Option("--template", "-t", help="Create a job from this template first"),
    ] = None,
    wait: Annotated[
        Optional[str],
        typer.Option("--wait", "-w", help="Wait for the job: 'finished' or 'metadata'"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Upload files with per-file progress and a summary of outcomes."""
    _configure_logging(verbose)

    config = load_upload_config(config_path)
    if endpoint:
        config.endpoint = endpoint
    if concurrency is not None:
        config.max_concurrency = concurrency
    if field_name:
        config.field_name = field_name
    if bare:
        config.form_data = False
    config.headers.update(_parse_headers(header or []))

    if template or wait:
        from fileferry.config import load_job_config

        if config.job is None:
            config.job = load_job_config({})
        if template:
            config.job.template_id = template
        if wait:
            if wait not in _WAIT_CHOICES:
                raise typer.BadParameter("--wait must be 'finished' or 'metadata'")
            config.job.wait_mode = _WAIT_CHOICES[wait]

    if not config.endpoint and config.job is None:
        console.print("[red]Error:[/red] No endpoint configured. Pass --endpoint URL.")
        raise typer.Exit(code=1)

    files = [
        FileRecord(id=uuid.uuid4().hex, name=path.name, data=path, meta={"name": path.name})
        for path in paths
    ]

    console.print(
        Panel(
            f"Uploading [bold]{len(files)}[/bold] files to "
            f"[bold]{config.endpoint or 'job endpoint'}[/bold]\n"
            f"Concurrency: {config.max_concurrency or 'unbounded'}",
            title="Upload",
        )
    )

    # Import upload modules here to keep CLI startup fast for config commands
    import asyncio
    from functools import partial

    import httpx

    from fileferry.upload.channel import EventChannel
    from fileferry.upload.exceptions import FileferryError
    from fileferry.upload.job import JobLifecycleCoordinator
    from fileferry.upload.orchestrator import BatchOrchestrator
    from fileferry.upload.pipeline import UploadPipeline
    from fileferry.upload.progress import UploadProgressTracker
    from fileferry.upload.registry import FileRegistry

    registry = FileRegistry(files)
    progress = UploadProgressTracker(
        total_files=len(files),
        names={f.id: f.name for f in files},
        console=console,
    )

    async def _run_upload() -> BatchResult:
        async with httpx.AsyncClient(timeout=config.timeout_seconds) as http:
            orchestrator = BatchOrchestrator.from_config(config, registry, http, progress)
            pipeline = UploadPipeline(registry, orchestrator)
            jobs = None
            if config.job is not None:
                jobs = JobLifecycleCoordinator(
                    config.job,
                    http,
                    progress,
                    channel_factory=partial(
                        EventChannel, connect_attempts=config.channel_connect_attempts
                    ),
                )
                jobs.install(pipeline)
            try:
                with progress:
                    return await pipeline.run(registry.ids())
            finally:
                if jobs is not None:
                    await jobs.close()

    try:
        result = asyncio.run(_run_upload())
    except FileferryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    _print_summary(result, {f.id: f.name for f in files})
    if result.failed:
        raise typer.Exit(code=1)


def _print_summary(result: BatchResult, names: dict[str, str]) -> None:
    summary_table = Table(title="Upload Summary")
    summary_table.add_column("File", style="cyan", no_wrap=True)
    summary_table.add_column("Result")
    summary_table.add_column("URL / Error")

    for file_id, outcome in result.items():
        if outcome.ok:
            summary_table.add_row(
                names.get(file_id, file_id), "[green]ok[/green]", outcome.upload_url or ""
            )
        else:
            summary_table.add_row(
                names.get(file_id, file_id), "[red]failed[/red]", str(outcome.error)
            )

    console.print(
        Panel(
            summary_table,
            title=f"Upload Complete: {len(result.successful)} succeeded, "
            f"{len(result.failed)} failed",
        )
    )


@config_app.command("set-auth-key")
def set_auth_key(
    key: Annotated[
        str,
        typer.Argument(help="Job-service auth key to store in system keyring"),
    ],
) -> None:
    """Store the job-service auth key in the system keyring (service: fileferry)."""
    if not key or key.strip() == "":
        console.print("[red]Error:[/red] Auth key cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, key)
        console.print(
            "[green]✓[/green] Auth key stored successfully in system keyring "
            f"(service: {SERVICE_NAME})"
        )
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to store auth key: {e}")
        raise typer.Exit(code=1)


@config_app.command("get-auth-key")
def show_auth_key() -> None:
    """Retrieve and display the stored auth key (masked)."""
    auth_key = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if not auth_key:
        console.print(
            "[yellow]No auth key found in keyring.[/yellow]\n"
            "Set it with: [bold]fileferry config set-auth-key YOUR_KEY[/bold]\n"
            f"Or: export {ENV_VAR}=your-key"
        )
        raise typer.Exit(code=1)

    # Mask all but first 8 characters
    if len(auth_key) > 8:
        masked = auth_key[:8] + "*" * (len(auth_key) - 8)
    else:
        masked = auth_key[:2] + "*" * max(1, len(auth_key) - 2)

    console.print(f"[green]Auth key:[/green] {masked}")
    console.print(f"[dim](stored in service: {SERVICE_NAME})[/dim]")


@config_app.command("remove-auth-key")
def remove_auth_key() -> None:
    """Delete the stored auth key from the system keyring."""
    try:
        existing = keyring.get_password(SERVICE_NAME, KEY_NAME)
        if not existing:
            console.print(
                "[yellow]Warning:[/yellow] No auth key found in keyring.\n"
                "Nothing to remove."
            )
            return

        keyring.delete_password(SERVICE_NAME, KEY_NAME)
        console.print(
            "[green]✓[/green] Auth key removed from system keyring "
            f"(service: {SERVICE_NAME})"
        )
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to remove auth key: {e}")
        raise typer.Exit(code=1)
