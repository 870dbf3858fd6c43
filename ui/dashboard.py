"""
Rich-based terminal dashboard for speed test runs.

All formatting helpers live in ``engine.stats`` -- this module only does
presentation via the ``rich`` library, driven by engine events.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from engine.models import EngineEvent, EventKind, ServerEndpoint, TestPhase, TestResult
from engine.monitor import HealthReading
from engine.stats import format_latency, format_speed

console = Console()


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float]) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        _BARS[min(int((v - lo) / span * (len(_BARS) - 1)), len(_BARS) - 1)]
        for v in values
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Velocity[/bold cyan]\n"
            "[dim]Multi-stream HTTP speed test[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_endpoint(endpoint: ServerEndpoint) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Server:", endpoint.name or endpoint.id)
    if endpoint.location:
        table.add_row("Location:", endpoint.location)
    table.add_row("Download:", endpoint.download_url)
    table.add_row("Upload:", endpoint.upload_url)
    console.print(Panel(table, title="[bold]Endpoint[/bold]", border_style="blue"))


def print_health(reading: HealthReading) -> None:
    if not reading.connected:
        console.print("[red]  offline[/red]  [dim]trace endpoint unreachable[/dim]")
        return
    console.print(
        f"[green]  online[/green]  ping [bold yellow]{reading.ping_ms} ms[/bold yellow]  "
        f"[dim](jitter {reading.jitter_ms} ms)[/dim]"
    )


def print_rate_history(title: str, rates: Iterable[float], color: str = "green") -> None:
    values = list(rates)
    if not values:
        return
    console.print(
        Panel(
            f"[{color}]{create_histogram(values)}[/{color}]\n"
            f"[dim]Min: {min(values):.1f} Mbps  Max: {max(values):.1f} Mbps[/dim]",
            title=title,
        )
    )


def print_final_results(result: TestResult, server_name: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Server:[/bold cyan] {server_name}\n\n"
            f"[bold white]   Ping:[/bold white]  "
            f"[bold yellow]{format_latency(result.latency_ms)}[/bold yellow]  "
            f"[dim](jitter: {result.jitter_ms} ms)[/dim]\n"
            f"[bold white]   Download:[/bold white]  "
            f"[bold green]{format_speed(result.download_mbps)}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  "
            f"[bold blue]{format_speed(result.upload_mbps)}[/bold blue]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

_PHASE_LABELS = {
    TestPhase.PING: "Measuring latency",
    TestPhase.DOWNLOAD: "Downloading",
    TestPhase.TRANSITION: "Settling",
    TestPhase.UPLOAD: "Uploading",
}


class ProgressDisplay:
    """Manages a ``rich`` progress bar fed by engine events.

    Pass :meth:`handle` to :meth:`PhaseStateMachine.subscribe`.
    """

    def __init__(self) -> None:
        self.progress: Optional[Progress] = None
        self._task_id: Optional[int] = None
        self._last_speed = 0.0
        self._last_prog = 0.0

    @staticmethod
    def _make_progress() -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )

    def handle(self, event: EngineEvent) -> None:
        if event.kind is EventKind.PHASE:
            self.stop()
            label = _PHASE_LABELS.get(event.phase)
            if label:
                self.start(label)
                self.update(event.progress, 0.0)
        elif event.kind is EventKind.PROGRESS:
            self.update(event.progress, event.rate_mbps)
        else:
            self.stop()

    def start(self, description: str) -> None:
        self.progress = self._make_progress()
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, speed="")
        self._last_speed = 0.0
        self._last_prog = 0.0

    def update(self, progress: float, speed_mbps: float = 0) -> None:
        if self._task_id is None:
            return
        # Debounce: only update when values change noticeably
        if (progress and abs(progress - self._last_prog) < 1.0
                and abs(speed_mbps - self._last_speed) < 1.0):
            return
        speed_str = format_speed(speed_mbps) if speed_mbps > 0 else "..."
        self.progress.update(self._task_id, completed=progress, speed=speed_str)
        self._last_prog = progress
        self._last_speed = speed_mbps

    def stop(self) -> None:
        if self.progress is None:
            return
        self.progress.stop()
        self.progress = None
        self._task_id = None
