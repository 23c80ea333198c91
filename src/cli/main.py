"""CLI principal (Typer).

Cada comando construye la lista de procedimientos, abre el contexto con los
clientes HTTP reales y delega en `RolloutOrchestrator.run`: prepare,
resumen, confirmación y execute.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape

from adapters.context_factory import open_context
from cli.doctor import app as doctor_app
from cli.ui_components import RichProgressSink, build_failures_table, build_plan_panel, print_banner
from core.config import AppSettings
from core.errors import AggregateError, ProcedureFailedError, RolloutError
from core.interfaces.procedure import Procedure
from core.logging_setup import setup_logging
from core.services.orchestrator import RolloutOrchestrator, RolloutReport
from core.services.procedures import (
    AddAgentServiceProcedure,
    DownloadImagesProcedure,
    UpdateAgentProcedure,
)

app = typer.Typer(
    name="fleet-rollout",
    no_args_is_help=True,
    help="Plan and roll out agent services and images across the fleet.",
)
app.add_typer(doctor_app, name="doctor")

console = Console()
logger = logging.getLogger(__name__)


ImageOption = typer.Option(
    "latest",
    "--image",
    "-i",
    help='Image to use: "latest", "current", an image id or a version.',
)
ChannelOption = typer.Option(None, "--channel", "-C", help="Updates server channel (default: server default).")
ConcurrencyOption = typer.Option(None, "--concurrency", "-j", min=1, help="Max servers handled in parallel.")
ServerOption = typer.Option(None, "--server", "-s", help="Only these servers (id or hostname). Repeatable.")
ExcludeOption = typer.Option(None, "--exclude", "-x", help="Skip these servers (id or hostname). Repeatable.")
DryRunOption = typer.Option(False, "--dry-run", "-n", help="Show the planned changes and exit.")
YesOption = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation.")
LogFileOption = typer.Option(None, "--log-file", help="Also write logs to this file.")


async def _confirm(summary: str) -> bool:
    console.print(build_plan_panel(summary))
    return await asyncio.to_thread(typer.confirm, "Would you like to continue?", default=False)


def _report_error(exc: RolloutError) -> None:
    failed = exc.__cause__ if isinstance(exc, ProcedureFailedError) else exc
    if isinstance(failed, AggregateError):
        console.print(build_failures_table(failed))
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    if isinstance(exc, ProcedureFailedError) and exc.skipped:
        console.print(f"[yellow]Not executed:[/yellow] {escape(', '.join(exc.skipped))}")


def _execute(
    procedures: Sequence[Procedure[Any]],
    settings: AppSettings,
    *,
    dry_run: bool,
    yes: bool,
) -> RolloutReport:
    ui = RichProgressSink(console)

    async def go() -> RolloutReport:
        async with open_context(settings, ui) as ctx:
            orchestrator = RolloutOrchestrator(procedures)
            return await orchestrator.run(ctx, confirm=None if yes else _confirm, dry_run=dry_run)

    try:
        return asyncio.run(go())
    except RolloutError as exc:
        logger.debug("rollout failed", exc_info=exc)
        _report_error(exc)
        raise typer.Exit(code=1) from exc


def _bootstrap(log_file: Optional[Path]) -> AppSettings:
    settings = AppSettings()
    setup_logging(settings.log_level, log_file)
    print_banner(console)
    return settings


def _build(factory: Any, *args: Any, **kwargs: Any) -> Any:
    # constructor validation errors are operator errors too
    try:
        return factory(*args, **kwargs)
    except RolloutError as exc:
        _report_error(exc)
        raise typer.Exit(code=1) from exc


@app.command("add-agent")
def add_agent(
    service: str = typer.Argument(..., help="Agent service name."),
    image: str = ImageOption,
    channel: Optional[str] = ChannelOption,
    concurrency: Optional[int] = ConcurrencyOption,
    servers: Optional[List[str]] = ServerOption,
    exclude: Optional[List[str]] = ExcludeOption,
    dependency: Optional[List[str]] = typer.Option(
        None, "--dependency", "-d", help="Services that must be installed first. Repeatable."
    ),
    dry_run: bool = DryRunOption,
    yes: bool = YesOption,
    log_file: Optional[Path] = LogFileOption,
) -> None:
    """Create an agent service and install it on the selected servers."""

    settings = _bootstrap(log_file)
    procedure = _build(
        AddAgentServiceProcedure,
        service,
        image=image,
        channel=channel,
        concurrency=concurrency or settings.concurrency,
        include_servers=servers,
        exclude_servers=exclude,
        dependencies=dependency,
    )
    _execute([procedure], settings, dry_run=dry_run, yes=yes)


@app.command("update-agent")
def update_agent(
    service: str = typer.Argument(..., help="Agent service name."),
    image: str = ImageOption,
    channel: Optional[str] = ChannelOption,
    concurrency: Optional[int] = ConcurrencyOption,
    servers: Optional[List[str]] = ServerOption,
    exclude: Optional[List[str]] = ExcludeOption,
    requires: Optional[List[str]] = typer.Option(
        None, "--requires", "-r", help="Services that must already be installed. Repeatable."
    ),
    dry_run: bool = DryRunOption,
    yes: bool = YesOption,
    log_file: Optional[Path] = LogFileOption,
) -> None:
    """Bring an agent service to the selected image on every server."""

    settings = _bootstrap(log_file)
    procedure = _build(
        UpdateAgentProcedure,
        service,
        image=image,
        channel=channel,
        concurrency=concurrency or settings.concurrency,
        include_servers=servers,
        exclude_servers=exclude,
        requires=requires,
    )
    _execute([procedure], settings, dry_run=dry_run, yes=yes)


@app.command("download-image")
def download_image(
    services: List[str] = typer.Argument(..., help="Services whose image should be cached locally."),
    image: str = ImageOption,
    channel: Optional[str] = ChannelOption,
    concurrency: Optional[int] = ConcurrencyOption,
    dry_run: bool = DryRunOption,
    yes: bool = YesOption,
    log_file: Optional[Path] = LogFileOption,
) -> None:
    """Import images from the updates server into the local cache."""

    settings = _bootstrap(log_file)
    procedures = [
        _build(
            DownloadImagesProcedure,
            service_name=name,
            image=image,
            channel=channel,
            concurrency=concurrency or settings.concurrency,
        )
        for name in services
    ]
    _execute(procedures, settings, dry_run=dry_run, yes=yes)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
