from __future__ import annotations

import logging
import time
from datetime import datetime
from enum import Enum
from queue import Empty, Queue
from typing import TYPE_CHECKING, Callable

from fastmirror.api import RemoteFsClient
from fastmirror.config import MirrorConfig, check_roots, check_server_and_token, mask_token
from fastmirror.crawler import TreeCrawler
from fastmirror.dispatcher import CopyDispatcher
from fastmirror.filters import PathFilter
from fastmirror.messages import CopyDrained, CopyFinished, CrawlDrained, ListingReceived, Message
from fastmirror.models import CopyJob, CopyReport, CrawlState, DirectoryFileMap, Side
from fastmirror.planner import plan_copy_jobs

if TYPE_CHECKING:
    from fastmirror.progress_ui import MirrorProgressUI


WORKER_JOIN_TIMEOUT_SECONDS = 5.0
INBOX_POLL_SECONDS = 0.1

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CRAWLING = "crawling"
    CRAWLED = "crawled"
    COPYING = "copying"


class MirrorSession:
    """Runs the two crawls and the copy cycle for one source/destination pair.

    The maps, crawl flags and failure list are only touched by the thread that
    calls ``start_diff``/``start_copy`` and ``process_pending``/``run_until``.
    Worker and HTTP threads reach that thread through the inbox.
    """

    def __init__(
        self,
        config: MirrorConfig,
        *,
        client: RemoteFsClient | None = None,
        log: Callable[[str], None] | None = None,
        progress: "MirrorProgressUI | None" = None,
        path_filter: PathFilter | None = None,
        on_report: Callable[[CopyReport], None] | None = None,
    ) -> None:
        self.config = config
        self.source_map: DirectoryFileMap = {}
        self.destination_map: DirectoryFileMap = {}
        self.crawl_state = CrawlState()
        self.failures: list[CopyJob] = []
        self.phase = Phase.IDLE
        self.last_report: CopyReport | None = None
        self.path_filter = path_filter or PathFilter()

        self._log_sink = log
        self._progress = progress
        self._on_report = on_report
        self._inbox: Queue[Message] = Queue()
        self._owns_client = client is None
        self._client = client or RemoteFsClient(
            config.server, config.token, timeout=config.timeout_seconds
        )
        self._crawlers = {
            Side.SOURCE: TreeCrawler(Side.SOURCE, self._client, self.source_map, post=self._inbox.put),
            Side.DESTINATION: TreeCrawler(
                Side.DESTINATION, self._client, self.destination_map, post=self._inbox.put
            ),
        }
        self._dispatcher = CopyDispatcher(
            self._client,
            self.failures,
            post=self._inbox.put,
            create_missing_dirs=config.create_missing_dirs,
        )
        self._copy_job_count = 0
        self._started = False
        self._closed = False

    def __enter__(self) -> "MirrorSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def crawler(self, side: Side) -> TreeCrawler:
        return self._crawlers[side]

    @property
    def dispatcher(self) -> CopyDispatcher:
        return self._dispatcher

    def log(self, message: str) -> None:
        logger.debug(message)
        if self._log_sink is not None:
            self._log_sink(f"{datetime.now():%Y-%m-%d %H:%M:%S} {message}")

    def start(self) -> None:
        if self._started:
            return
        if self._closed:
            raise RuntimeError("MirrorSession is closed")
        for crawler in self._crawlers.values():
            crawler.start_thread()
        self._dispatcher.start_thread()
        self._started = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        workers = [*self._crawlers.values(), self._dispatcher]
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(WORKER_JOIN_TIMEOUT_SECONDS)
        if self._owns_client:
            self._client.close()
        self.phase = Phase.IDLE

    def _config_problem(self) -> str | None:
        return check_server_and_token(self.config)

    def start_diff(self) -> bool:
        """Crawl both roots; returns False when the crawl could not be started."""
        problem = self._config_problem() or check_roots(self.config)
        if problem:
            self.log(problem)
            return False
        if self.phase in (Phase.CRAWLING, Phase.COPYING):
            self.log(f"Busy ({self.phase.value}), diff request ignored")
            return False

        self.start()
        self.log(f"Server: {self.config.server}, Token: {mask_token(self.config.token)}")
        self.crawl_state.reset()
        self.last_report = None
        self.phase = Phase.CRAWLING

        roots = {Side.SOURCE: self.config.src_root, Side.DESTINATION: self.config.dst_root}
        for side, root in roots.items():
            if self._progress is not None:
                self._progress.crawl_started(side, root)
            self._crawlers[side].crawl(root)
        self.log(f"Crawling {self.config.src_root} and {self.config.dst_root}")
        return True

    def plan(self) -> list[CopyJob]:
        return plan_copy_jobs(
            self.source_map,
            self.destination_map,
            src_root=self.config.src_root,
            dst_root=self.config.dst_root,
            option=self.config.duplicate_option,
            path_filter=self.path_filter,
            log=self.log,
        )

    def start_copy(self) -> bool:
        """Plan and dispatch copy jobs; both crawls must have finished."""
        problem = self._config_problem()
        if problem:
            self.log(problem)
            return False
        if self.phase is Phase.COPYING:
            self.log("Busy (copying), copy request ignored")
            return False
        if not self.crawl_state.ready:
            self.log(
                "Copy rejected: source crawl finished="
                f"{self.crawl_state.source_done}, destination crawl finished="
                f"{self.crawl_state.destination_done}"
            )
            return False

        self.log(f"Duplicate option: {self.config.duplicate_option.value}")
        self._dispatcher.begin_cycle()
        self.last_report = None
        jobs = self.plan()
        self._copy_job_count = len(jobs)
        if not jobs:
            self.log("Nothing to copy")
            self._finish_copy()
            return True

        self.phase = Phase.COPYING
        if self._progress is not None:
            self._progress.copy_started(len(jobs), self.config.dst_root)
        for job in jobs:
            self._dispatcher.enqueue(job, poll_immediately=False)
        self._dispatcher.poll()
        self.log(f"Dispatching {len(jobs)} copy job(s)")
        return True

    def process_pending(self, wait: float = 0.0) -> int:
        """Handle queued completion notices, waiting up to ``wait`` seconds for the first."""
        handled = 0
        while True:
            try:
                if handled == 0 and wait > 0:
                    message = self._inbox.get(timeout=wait)
                else:
                    message = self._inbox.get_nowait()
            except Empty:
                return handled
            self._handle(message)
            handled += 1

    def run_until(self, predicate: Callable[[], bool], timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            wait = INBOX_POLL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait = min(remaining, wait)
            self.process_pending(wait)
        return True

    def wait_for_crawl(self, timeout: float | None = None) -> bool:
        return self.run_until(lambda: self.phase is not Phase.CRAWLING, timeout)

    def wait_for_copy(self, timeout: float | None = None) -> bool:
        return self.run_until(lambda: self.phase is not Phase.COPYING, timeout)

    def _handle(self, message: Message) -> None:
        if isinstance(message, ListingReceived):
            self._on_listing(message)
        elif isinstance(message, CrawlDrained):
            self._on_crawl_drained(message.side)
        elif isinstance(message, CopyFinished):
            self._on_copy_finished(message)
        elif isinstance(message, CopyDrained):
            if self.phase is Phase.COPYING:
                self._finish_copy()
        else:
            logger.warning("Unknown session message: %r", message)

    def _on_listing(self, message: ListingReceived) -> None:
        ok = self._crawlers[message.side].apply_listing(message)
        if not ok:
            self.log(f"List {message.path} failed: {message.error}")
        if self._progress is not None:
            file_count = sum(1 for entry in message.entries if entry.name and not entry.is_dir)
            self._progress.directory_listed(message.side, file_count, ok=ok)

    def _on_crawl_drained(self, side: Side) -> None:
        if self.phase is not Phase.CRAWLING or self.crawl_state.is_done(side):
            logger.debug("Ignoring drained notice for %s crawl", side.value)
            return
        self.crawl_state.mark(side)
        crawler = self._crawlers[side]
        self.log(
            f"{side.value.capitalize()} crawl finished: {crawler.directories_listed} dir(s), "
            f"{crawler.file_count} file(s), {crawler.directories_failed} failed"
        )
        if self._progress is not None:
            self._progress.crawl_finished(side)
        if self.crawl_state.ready:
            self.phase = Phase.CRAWLED
            self.log("Both crawls finished")

    def _on_copy_finished(self, message: CopyFinished) -> None:
        ok = self._dispatcher.apply_result(message)
        if not ok:
            self.log(f"Copy {message.job.src_dir} -> {message.job.dst_dir} failed: {message.error}")
        if self._progress is not None:
            self._progress.job_finished(message.job, ok=ok)

    def _finish_copy(self) -> None:
        report = CopyReport(job_count=self._copy_job_count, failed_jobs=list(self.failures))
        self.last_report = report
        self.phase = Phase.CRAWLED
        self.log(f"Copy finished: {report.job_count} job(s), {report.failure_count} failed")
        if self._progress is not None:
            self._progress.copy_finished(report.failure_count)
        if self._on_report is not None:
            self._on_report(report)
