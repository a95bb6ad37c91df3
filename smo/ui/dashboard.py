from typing import Optional
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from smo.ui.state import RunSummary


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if abs(size) < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}h {m:02d}m {s:02d}s"
    if m:
        return f"{m}m {s:02d}s"
    return f"{s}s"


class ProgressDisplay:
    """Live progress bar for a run. Safe to update from worker threads."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[last]}", style="dim"),
            console=self.console,
            transient=False,
        )
        self._task = self._progress.add_task("Discovering", total=None, last="")

    def set_total(self, total: int):
        self._progress.update(self._task, total=total, description="Optimizing")

    def advance(self, message: str = ""):
        self._progress.update(self._task, advance=1, last=message)

    def start(self):
        self._progress.start()
        return self

    def stop(self):
        self._progress.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def build_summary_table(summary: RunSummary) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("metric", style="bold")
    table.add_column("value", justify="right")

    replaced_label = "Would replace" if summary.dry_run else "Replaced"
    table.add_row("Files found", str(summary.files_total))
    table.add_row(replaced_label, f"[green]{summary.files_replaced}[/green]")
    table.add_row("Kept original (low gain)", str(summary.files_skipped))
    table.add_row("Already processed", str(summary.files_cached))
    table.add_row("Errors", f"[red]{summary.files_errored}[/red]" if summary.files_errored else "0")
    if summary.files_interrupted:
        table.add_row("Interrupted", f"[yellow]{summary.files_interrupted}[/yellow]")
    table.add_row("Space saved", format_size(summary.bytes_saved))
    table.add_row("Average reduction", f"{summary.reduction_percent:.1f}%")
    table.add_row("Duration", format_duration(summary.duration_seconds))

    if summary.historical is not None and summary.historical.total_files:
        table.add_row("", "")
        table.add_row("All runs: files tracked", str(summary.historical.total_files))
        table.add_row("All runs: space saved", format_size(summary.historical.total_bytes_saved))
        table.add_row("All runs: avg reduction", f"{summary.historical.average_reduction:.1f}%")
    return table


def render_summary(console: Console, summary: RunSummary):
    if summary.interrupted:
        title, style = "Stopped", "yellow"
    elif summary.files_errored:
        title, style = "Finished with errors", "red"
    else:
        title, style = "Finished", "green"
    if summary.dry_run:
        title = f"{title} (dry run)"
    console.print(Panel(build_summary_table(summary), title=title, border_style=style, expand=False))
