"""Completion notices handed from worker and HTTP threads to the session inbox."""

from __future__ import annotations

from dataclasses import dataclass

from fastmirror.models import CopyJob, FileEntry, Side


@dataclass(frozen=True, slots=True)
class ListingReceived:
    side: Side
    path: str
    entries: tuple[FileEntry, ...] = ()
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class CrawlDrained:
    side: Side


@dataclass(frozen=True, slots=True)
class CopyFinished:
    job: CopyJob
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class CopyDrained:
    pass


Message = ListingReceived | CrawlDrained | CopyFinished | CopyDrained
