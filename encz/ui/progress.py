from typing import Optional
from rich.console import Console, RenderableType
from rich.live import Live
from rich.markup import escape
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text
from encz.domain.events import JobCancelled, JobCompleted, JobFailed, JobProgressUpdated, JobStarted
from encz.domain.models import EncodeProgress
from encz.infrastructure.event_bus import EventBus


def format_size(size: int) -> str:
    """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    idx = 0
    val = float(size)
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


class ProgressView:
    """Subscribes to EventBus and renders a single live progress line."""

    BAR_WIDTH = 30

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console()
        self.last_progress: Optional[EncodeProgress] = None
        self._live: Optional[Live] = None
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobCancelled, self.on_job_cancelled)

    def render(self, progress: EncodeProgress) -> RenderableType:
        grid = Table.grid(padding=(0, 1))
        grid.add_column(width=self.BAR_WIDTH)
        grid.add_column()
        grid.add_row(
            ProgressBar(total=100, completed=progress.percent, width=self.BAR_WIDTH),
            Text(str(progress)),
        )
        return grid

    def on_job_started(self, event: JobStarted):
        params = event.params
        self.console.print(
            f"[bold]{escape(params.input_path.name)}[/] → {escape(params.output_path.name)} "
            f"[dim]({event.backend.value}, quality {params.quality:.0f})[/]"
        )
        self.last_progress = None
        self._stop_live()
        self._live = Live(
            self.render(EncodeProgress()),
            console=self.console,
            refresh_per_second=4,
            transient=True,
        )
        self._live.start()

    def on_job_progress(self, event: JobProgressUpdated):
        self.last_progress = event.progress
        if self._live:
            self._live.update(self.render(event.progress))

    def on_job_completed(self, event: JobCompleted):
        self._stop_live()
        size = f" ({format_size(event.output_size_bytes)})" if event.output_size_bytes is not None else ""
        self.console.print(f"[green]✓ Done:[/] {escape(str(event.output_path))}{size}")

    def on_job_failed(self, event: JobFailed):
        self._stop_live()
        self.console.print(f"[red]✗ Encoding failed:[/] {escape(event.error_message)}")

    def on_job_cancelled(self, event: JobCancelled):
        self._stop_live()
        if self.last_progress is not None:
            self.console.print(f"[yellow]Stopped at {self.last_progress.percent:.1f}%[/]")

    def _stop_live(self):
        if self._live:
            self._live.stop()
            self._live = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._stop_live()
        return False
