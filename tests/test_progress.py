"""Tests for the Rich progress tracker used as a notification sink."""

from __future__ import annotations

import io

from rich.console import Console

from fileferry.upload.exceptions import UploadError
from fileferry.upload.progress import UploadProgressTracker, _truncate_name


def _tracker(**kwargs) -> UploadProgressTracker:
    console = Console(file=io.StringIO(), force_terminal=False, width=120)
    return UploadProgressTracker(console=console, **kwargs)


class TestUploadProgressTracker:
    def test_stats_count_outcomes(self):
        tracker = _tracker(total_files=2, names={"a": "a.txt", "b": "b.txt"})
        with tracker:
            tracker.upload_started("a")
            tracker.upload_progress("a", 5, 10)
            tracker.upload_success("a", {}, "https://x/1")
            tracker.upload_started("b")
            tracker.upload_error("b", UploadError("boom"))

        assert tracker.stats == {"succeeded": 1, "failed": 1}

    def test_overall_task_advances(self):
        tracker = _tracker(total_files=2)
        with tracker:
            tracker.upload_started("a")
            tracker.upload_success("a", {}, None)
            overall = tracker._progress.tasks[0]
            assert overall.completed == 1
            assert overall.total == 2

    def test_file_progress_updates_totals(self):
        tracker = _tracker(total_files=1, names={"a": "a.txt"})
        with tracker:
            tracker.upload_started("a")
            tracker.upload_progress("a", 512, 2048)
            task = tracker._progress.tasks[1]
            assert task.description == "a.txt"
            assert task.completed == 512
            assert task.total == 2048

    def test_retry_reuses_file_task(self):
        tracker = _tracker(total_files=1)
        with tracker:
            tracker.upload_started("a")
            tracker.upload_error("a", UploadError("boom"))
            tracker.upload_started("a")
            assert len(tracker._progress.tasks) == 2
            assert tracker._progress.tasks[1].fields["status"] == ""

    def test_inform_and_hide(self):
        tracker = _tracker(total_files=1)
        with tracker:
            tracker.inform("Preparing upload...")
            overall = tracker._progress.tasks[0]
            assert "Preparing upload..." in overall.fields["status"]
            tracker.hide_info()
            assert overall.fields["status"] == ""

    def test_progress_for_unknown_file_is_ignored(self):
        tracker = _tracker(total_files=1)
        tracker.upload_progress("ghost", 1, 2)
        assert tracker.stats == {"succeeded": 0, "failed": 0}


def test_truncate_name_keeps_tail():
    name = "x" * 50 + ".txt"
    truncated = _truncate_name(name)
    assert len(truncated) == 40
    assert truncated.startswith("...")
    assert truncated.endswith(".txt")
