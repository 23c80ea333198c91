"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import build_async_client
from core.config import AppSettings, write_user_env_vars

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_http(settings: AppSettings, url: str) -> tuple[bool, str]:
    try:
        async with build_async_client(settings) as client:
            response = await client.get(url)
        return True, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc) or type(exc).__name__


def endpoints(settings: AppSettings) -> dict[str, str]:
    return {
        "Service registry": settings.registry_url,
        "Image cache": settings.images_url,
        "Updates server": settings.updates_url,
        "Inventory": settings.inventory_url,
        "Node tasks": settings.tasks_url,
        "Remote execution": settings.remote_exec_url,
    }


@app.command()
def run() -> None:
    """Check that every configured collaborator answers."""

    settings = AppSettings()

    table = Table(title="fleet-rollout doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row("Scope", "OK", settings.scope_name)
    table.add_row("Channel", "OK", settings.default_channel or "(updates server default)")
    table.add_row("Concurrency", "OK", str(settings.concurrency))

    async def check_all() -> list[tuple[bool, str]]:
        return await asyncio.gather(*(_check_http(settings, url) for url in endpoints(settings).values()))

    results = asyncio.run(check_all())
    failed = 0
    for (label, url), (ok, detail) in zip(endpoints(settings).items(), results):
        failed += 0 if ok else 1
        table.add_row(label, "OK" if ok else "FAIL", f"{url} -> {detail}")

    _console.print(table)
    if failed:
        _console.print("\n[yellow]Note:[/yellow] run `fleet-rollout doctor setup` to store endpoints in your user config.")
        raise typer.Exit(code=1)


@app.command(name="setup")
def setup() -> None:
    """Interactive endpoint setup (stores config in the user config .env)."""

    current = AppSettings()
    values = {
        "FLEET_ROLLOUT_REGISTRY_URL": typer.prompt("Service registry URL", default=current.registry_url),
        "FLEET_ROLLOUT_IMAGES_URL": typer.prompt("Image cache URL", default=current.images_url),
        "FLEET_ROLLOUT_UPDATES_URL": typer.prompt("Updates server URL", default=current.updates_url),
        "FLEET_ROLLOUT_INVENTORY_URL": typer.prompt("Inventory URL", default=current.inventory_url),
        "FLEET_ROLLOUT_TASKS_URL": typer.prompt("Node tasks URL", default=current.tasks_url),
        "FLEET_ROLLOUT_REMOTE_EXEC_URL": typer.prompt("Remote execution URL", default=current.remote_exec_url),
    }
    values = {key: value.strip() for key, value in values.items()}
    if not all(values.values()):
        raise typer.BadParameter("every endpoint is required")

    env_path = write_user_env_vars(values)
    _console.print(f"[green]Saved endpoints to:[/green] {env_path}")
