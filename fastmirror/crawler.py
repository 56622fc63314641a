from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable

from fastmirror.api import RemoteFsClient
from fastmirror.messages import CrawlDrained, ListingReceived, Message
from fastmirror.models import DirectoryFileMap, FileEntry, Side
from fastmirror.paths import join_remote
from fastmirror.worker import Worker


logger = logging.getLogger(__name__)


class TreeCrawler:
    """Recursively lists one remote root into a DirectoryFileMap.

    Listing requests are issued from the worker thread; responses come back as
    ``ListingReceived`` messages and are applied by ``apply_listing`` on the
    thread that owns ``file_map``.
    """

    def __init__(
        self,
        side: Side,
        client: RemoteFsClient,
        file_map: DirectoryFileMap,
        *,
        post: Callable[[Message], None],
    ) -> None:
        self.side = side
        self.file_map = file_map
        self._client = client
        self._post = post
        self._directories_listed = 0
        self._directories_failed = 0
        self._worker: Worker[str] = Worker(
            self._request_listing,
            name=f"fastmirror-crawl-{side.value}",
            on_drained=lambda: post(CrawlDrained(side)),
        )

    @property
    def worker(self) -> Worker[str]:
        return self._worker

    @property
    def directories_listed(self) -> int:
        return self._directories_listed

    @property
    def directories_failed(self) -> int:
        return self._directories_failed

    @property
    def file_count(self) -> int:
        return sum(len(entries) for entries in self.file_map.values())

    def start_thread(self) -> None:
        self._worker.start()

    def stop(self) -> None:
        self._worker.stop()

    def join(self, timeout: float | None = None) -> None:
        self._worker.join(timeout)

    def crawl(self, root: str) -> None:
        self.file_map.clear()
        self._directories_listed = 0
        self._directories_failed = 0
        self._worker.enqueue(root, poll_immediately=True)

    def _request_listing(self, path: str) -> None:
        if not path:
            self._worker.request_next()
            return
        future = self._client.submit(self._client.list_dir, path)
        future.add_done_callback(lambda f: self._post(self._listing_message(path, f)))

    def _listing_message(self, path: str, future: Future[list[FileEntry]]) -> ListingReceived:
        if future.cancelled():
            return ListingReceived(self.side, path, error=RuntimeError("listing request cancelled"))
        error = future.exception()
        if error is not None:
            return ListingReceived(self.side, path, error=error)
        return ListingReceived(self.side, path, entries=tuple(future.result()))

    def apply_listing(self, message: ListingReceived) -> bool:
        """Record one listing response; returns False when the directory was abandoned."""
        try:
            if message.error is not None:
                self._directories_failed += 1
                logger.warning("%s: listing %s failed: %s", self.side.value, message.path, message.error)
                return False

            self._directories_listed += 1
            for entry in message.entries:
                if not entry.name:
                    continue
                if entry.is_dir:
                    self._worker.enqueue(join_remote(message.path, entry.name), poll_immediately=True)
                else:
                    self.file_map.setdefault(message.path, []).append(entry)
            return True
        finally:
            self._worker.request_next()
