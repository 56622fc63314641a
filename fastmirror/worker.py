"""One-in-flight background task loop shared by the crawlers and the copy dispatcher."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Generic, TypeVar


T = TypeVar("T")

logger = logging.getLogger(__name__)


class WorkerStartError(RuntimeError):
    pass


class Worker(Generic[T]):
    """Background loop that hands queued items to ``process`` one at a time.

    ``process`` runs on the worker thread and is expected to return quickly after
    starting the real work elsewhere. Whoever completes that work calls
    ``request_next()``; until then the loop does not dequeue another item.
    ``on_drained`` fires from the worker thread each time an item is confirmed
    and no released work remains.
    """

    def __init__(
        self,
        process: Callable[[T], None],
        *,
        name: str,
        on_drained: Callable[[], None] | None = None,
    ) -> None:
        self._process = process
        self._on_drained = on_drained
        self._name = name
        self._cond = threading.Condition()
        self._queue: deque[T] = deque()
        self._staged: list[T] = []
        self._current: threading.Event | None = None
        self._stopped = False
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_flight(self) -> bool:
        with self._cond:
            return self._current is not None

    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._queue) + len(self._staged)

    def start(self) -> None:
        if self._thread is not None:
            return
        thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            raise WorkerStartError(f"Could not start worker thread {self._name}: {exc}") from exc
        self._thread = thread

    def enqueue(self, item: T, poll_immediately: bool = False) -> None:
        with self._cond:
            if self._stopped:
                return
            self._staged.append(item)
            if poll_immediately:
                self._release_locked()

    def poll(self) -> None:
        with self._cond:
            self._release_locked()

    def request_next(self) -> None:
        with self._cond:
            current = self._current
        if current is None:
            logger.debug("%s: request_next() with nothing in flight", self._name)
            return
        current.set()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._queue.clear()
            self._staged.clear()
            if self._current is not None:
                self._current.set()
            self._cond.notify_all()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _release_locked(self) -> None:
        # Staged items go first so a batch keeps its FIFO position.
        self._queue.extend(self._staged)
        self._staged.clear()
        self._cond.notify_all()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopped and not self._queue:
                    self._cond.wait()
                if self._stopped:
                    return
                item = self._queue.popleft()
                done = threading.Event()
                self._current = done

            try:
                self._process(item)
            except Exception:
                logger.exception("%s: processing %r failed", self._name, item)
                done.set()

            done.wait()

            with self._cond:
                self._current = None
                if self._stopped:
                    return
                drained = not self._queue
            if drained and self._on_drained is not None:
                self._on_drained()
