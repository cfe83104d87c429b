"""Rich progress display driven by upload notifications.

Two tiers:

* **Overall** -- files settled out of the batch, plus the current
  user-facing message (``Preparing upload...``, ``Processing...``)
* **Per file** -- bytes sent against the declared total
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from fileferry.upload.notifier import UploadNotifier

_LEVEL_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}


class UploadProgressTracker(UploadNotifier):
    """Rich progress tracker usable as the engine's notification sink.

    Usage::

        tracker = UploadProgressTracker(total_files=3, names={"a": "a.txt"})
        with tracker:
            result = await orchestrator.upload_batch(["a", "b", "c"])
    """

    def __init__(
        self,
        total_files: int,
        names: dict[str, str] | None = None,
        console: Console | None = None,
    ) -> None:
        self._total_files = total_files
        self._names = dict(names or {})

        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )

        self._overall_task: TaskID | None = None
        self._file_tasks: dict[str, TaskID] = {}
        self._stats: dict[str, int] = {"succeeded": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the Rich progress display."""
        self._progress.start()
        self._overall_task = self._progress.add_task(
            "[green]Upload",
            total=self._total_files,
            status="starting...",
        )

    def stop(self) -> None:
        """Stop the Rich progress display."""
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # File-level notifications
    # ------------------------------------------------------------------

    def upload_started(self, file_id: str) -> None:
        if file_id in self._file_tasks:
            # retry of a file shown earlier
            self._progress.reset(self._file_tasks[file_id], status="")
            return
        self._file_tasks[file_id] = self._progress.add_task(
            _truncate_name(self._names.get(file_id, file_id)),
            total=None,
            status="",
        )

    def upload_progress(self, file_id: str, bytes_uploaded: int, bytes_total: int) -> None:
        task = self._file_tasks.get(file_id)
        if task is not None:
            self._progress.update(task, completed=bytes_uploaded, total=bytes_total)

    def upload_success(self, file_id: str, response: Any, upload_url: str | None) -> None:
        self._stats["succeeded"] += 1
        self._settle(file_id, "[green]done[/green]")

    def upload_error(self, file_id: str, error: BaseException) -> None:
        self._stats["failed"] += 1
        self._settle(file_id, f"[red]FAIL[/red] {error}")

    def _settle(self, file_id: str, status: str) -> None:
        task = self._file_tasks.get(file_id)
        if task is not None:
            self._progress.update(task, status=status)
        if self._overall_task is not None:
            self._progress.advance(self._overall_task, 1)
            self._progress.update(
                self._overall_task,
                status=_truncate_name(self._names.get(file_id, file_id)),
            )

    # ------------------------------------------------------------------
    # Operation-level messages
    # ------------------------------------------------------------------

    def inform(self, message: str, level: str = "info") -> None:
        style = _LEVEL_STYLES.get(level, "white")
        if self._overall_task is not None:
            self._progress.update(self._overall_task, status=f"[{style}]{message}[/{style}]")
        else:
            self._progress.console.print(f"[{style}]{message}[/{style}]")

    def hide_info(self) -> None:
        if self._overall_task is not None:
            self._progress.update(self._overall_task, status="")

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_name(name: str, max_len: int = 40) -> str:
    """Truncate a file name for display, keeping its tail."""
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]
