from __future__ import annotations

import threading
from dataclasses import dataclass

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from fastmirror.models import CopyJob, Side


@dataclass(slots=True)
class _CrawlCounters:
    task_id: TaskID
    directories: int = 0
    files: int = 0
    failed: int = 0


class MirrorProgressUI:
    """Live crawl and copy counters rendered with Rich."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console
        self._lock = threading.Lock()
        self._crawls: dict[Side, _CrawlCounters] = {}
        self._copy_task: TaskID | None = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[action]}"),
            TextColumn("{task.fields[root]}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[state]}"),
            console=console,
            transient=False,
            expand=True,
        )

    def __enter__(self) -> "MirrorProgressUI":
        self._progress.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    def crawl_started(self, side: Side, root: str) -> None:
        with self._lock:
            task_id = self._progress.add_task(
                description=root,
                total=None,
                action="LIST" if side is Side.SOURCE else "LIST DST",
                root=root,
                state="crawling",
            )
            self._crawls[side] = _CrawlCounters(task_id=task_id)

    def directory_listed(self, side: Side, file_count: int, *, ok: bool = True) -> None:
        with self._lock:
            counters = self._crawls.get(side)
            if counters is None:
                return
            counters.directories += 1
            counters.files += file_count
            if not ok:
                counters.failed += 1
            self._progress.update(
                counters.task_id,
                completed=counters.directories,
                state=self._crawl_state_text(counters, "crawling"),
            )

    def crawl_finished(self, side: Side) -> None:
        with self._lock:
            counters = self._crawls.get(side)
            if counters is None:
                return
            self._progress.update(
                counters.task_id,
                total=counters.directories,
                completed=counters.directories,
                state=self._crawl_state_text(counters, "done"),
            )

    def copy_started(self, job_count: int, dst_root: str) -> None:
        with self._lock:
            self._copy_task = self._progress.add_task(
                description=dst_root,
                total=job_count,
                action="COPY",
                root=dst_root,
                state="queued",
            )

    def job_finished(self, job: CopyJob, *, ok: bool) -> None:
        with self._lock:
            if self._copy_task is None:
                return
            self._progress.update(
                self._copy_task,
                advance=1,
                state=job.dst_dir if ok else f"[red]failed[/red] {job.dst_dir}",
            )

    def copy_finished(self, failure_count: int) -> None:
        with self._lock:
            if self._copy_task is None:
                return
            state = "done" if not failure_count else f"[red]{failure_count} failed[/red]"
            self._progress.update(self._copy_task, state=state)

    @staticmethod
    def _crawl_state_text(counters: _CrawlCounters, label: str) -> str:
        text = f"{label}, {counters.files} file(s)"
        if counters.failed:
            text += f", [red]{counters.failed} dir(s) failed[/red]"
        return text
