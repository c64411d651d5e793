"""
Progress Manager for Aegis
Renders scan events to a rich console with a per-target progress bar
"""

from datetime import datetime
from typing import Dict, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from ..core.events import ScanEvent

# Event kind -> (label, style)
EVENT_STYLES = {
    "scan_started": ("INFO", "cyan"),
    "target_started": ("INFO", "cyan"),
    "target_completed": ("SUCCESS", "green"),
    "target_skipped": ("WARNING", "yellow"),
    "target_failed": ("ERROR", "red"),
    "detector_failed": ("ERROR", "red"),
    "finding_dropped": ("WARNING", "yellow"),
    "persistence_failed": ("ERROR", "red"),
    "alert_failed": ("ERROR", "red"),
    "scan_completed": ("SUCCESS", "green bold"),
    "scan_failed": ("ERROR", "red bold"),
    "framework_completed": ("INFO", "cyan"),
    "check_failed": ("ERROR", "red"),
    "compliance_completed": ("SUCCESS", "green bold"),
}

SETTLED_KINDS = {"target_completed", "target_failed", "target_skipped"}


class ProgressObserver:
    """Event observer for the CLI: colored log lines plus a progress bar."""

    def __init__(self, console: Console, verbosity: int = 1):
        self.console = console
        self.verbosity = verbosity
        self.start_time: Optional[datetime] = None
        self.progress: Optional[Progress] = None
        self.progress_task = None
        self.counts: Dict[str, int] = {}

    def notify(self, event: ScanEvent) -> None:
        self.counts[event.kind] = self.counts.get(event.kind, 0) + 1

        if event.kind == "scan_started":
            self.start_scan(len(event.data.get("targets", [])))

        self.log_event(event)

        if event.kind in SETTLED_KINDS and self.progress is not None:
            self.progress.update(self.progress_task, advance=1)

        if event.kind in ("scan_completed", "scan_failed"):
            self.complete_scan()

    def start_scan(self, total_targets: int) -> None:
        self.start_time = datetime.now()
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self.progress.start()
        self.progress_task = self.progress.add_task(f"Scanning {total_targets} targets...", total=total_targets)

    def log_event(self, event: ScanEvent) -> None:
        label, style = EVENT_STYLES.get(event.kind, ("INFO", "white"))
        quiet_kind = event.kind in ("target_started", "framework_completed")
        if self.verbosity >= 2 or (self.verbosity >= 1 and not quiet_kind) or label == "ERROR":
            self.console.print(f"[{self._get_timestamp()}] [{label}] {event.message}", style=style, markup=False)

    def complete_scan(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None

        if self.start_time is not None:
            duration = (datetime.now() - self.start_time).total_seconds()
            self.console.print(f"[{self._get_timestamp()}] [INFO] Scan finished in {self._format_duration(duration)}",
                               style="cyan", markup=False)

    def _get_timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _format_duration(self, seconds: float) -> str:
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes = int(seconds // 60)
        return f"{minutes}m{seconds % 60:.0f}s"
