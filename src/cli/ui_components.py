"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- `RichProgressSink` implementa el `ProgressSink` del Core, así los
  procedimientos informan al operador sin conocer Rich.
"""

from __future__ import annotations

from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from core.errors import AggregateError


def print_banner(console: Console) -> None:
    """Imprime el banner de bienvenida."""

    title = Text("FLEET-ROLLOUT", style="bold cyan")
    subtitle = Text("Plan • Confirm • Roll out", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_plan_panel(summary: str) -> Panel:
    """Panel con el resumen de cambios previsto."""

    return Panel(Text(summary), title=Text("Planned changes", style="bold yellow"), border_style="yellow")


def build_failures_table(error: AggregateError) -> Table:
    table = Table(title=f"{len(error.failures)} targets failed")
    table.add_column("Target", style="cyan", no_wrap=True)
    table.add_column("Error", style="red")
    for target, failure in error.failures:
        table.add_row(target, str(failure))
    return table


class RichProgressSink:
    """ProgressSink sobre una consola Rich (mensajes + barra de progreso)."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._progress: Progress | None = None
        self._task: TaskID | None = None

    def info(self, message: str) -> None:
        self._console.print(escape(message))

    def error(self, message: str) -> None:
        self._console.print(f"[red]{escape(message)}[/red]")

    def bar_start(self, name: str, size: int) -> None:
        self.bar_end()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self._console,
        )
        self._progress.start()
        self._task = self._progress.add_task(name, total=size)

    def bar_advance(self, completed: int) -> None:
        if self._progress is not None and self._task is not None:
            self._progress.update(self._task, completed=completed)

    def bar_end(self) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task = None
