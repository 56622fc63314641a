from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable

from fastmirror.api import RemoteFsClient
from fastmirror.messages import CopyDrained, CopyFinished, Message
from fastmirror.models import CopyJob
from fastmirror.worker import Worker


logger = logging.getLogger(__name__)


class CopyDispatcher:
    """Sends queued copy jobs one at a time and collects the ones that failed."""

    def __init__(
        self,
        client: RemoteFsClient,
        failures: list[CopyJob],
        *,
        post: Callable[[Message], None],
        create_missing_dirs: bool = True,
    ) -> None:
        self.failures = failures
        self.create_missing_dirs = create_missing_dirs
        self._client = client
        self._post = post
        self._worker: Worker[CopyJob] = Worker(
            self._send_job,
            name="fastmirror-copy",
            on_drained=lambda: post(CopyDrained()),
        )

    @property
    def worker(self) -> Worker[CopyJob]:
        return self._worker

    def start_thread(self) -> None:
        self._worker.start()

    def stop(self) -> None:
        self._worker.stop()

    def join(self, timeout: float | None = None) -> None:
        self._worker.join(timeout)

    def begin_cycle(self) -> None:
        self.failures.clear()

    def enqueue(self, job: CopyJob, poll_immediately: bool = False) -> None:
        self._worker.enqueue(job, poll_immediately)

    def poll(self) -> None:
        self._worker.poll()

    def _send_job(self, job: CopyJob) -> None:
        if not job.is_valid:
            logger.warning("Dropping invalid copy job %s -> %s", job.src_dir or "<empty>", job.dst_dir or "<empty>")
            self._worker.request_next()
            return
        future = self._client.submit(self._copy_job, job)
        future.add_done_callback(lambda f: self._post(self._finished_message(job, f)))

    def _copy_job(self, job: CopyJob) -> None:
        if job.create_dst_dir and self.create_missing_dirs:
            self._client.mkdir(job.dst_dir)
        self._client.copy(job.src_dir, job.dst_dir, job.names)

    def _finished_message(self, job: CopyJob, future: Future[None]) -> CopyFinished:
        if future.cancelled():
            return CopyFinished(job, error=RuntimeError("copy request cancelled"))
        return CopyFinished(job, error=future.exception())

    def apply_result(self, message: CopyFinished) -> bool:
        try:
            if message.error is not None:
                logger.warning(
                    "Copy %s -> %s failed: %s", message.job.src_dir, message.job.dst_dir, message.error
                )
                self.failures.append(message.job)
                return False
            return True
        finally:
            self._worker.request_next()
