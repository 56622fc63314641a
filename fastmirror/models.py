from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


LISTING_KEYS = ("name", "is_dir", "size", "modified", "created")


class DuplicateOption(str, Enum):
    NO_OVERWRITE = "NoOverwrite"
    OVERWRITE_WHEN_NEW_MODIFIED = "OverwriteWhenNewModified"
    OVERWRITE_WHEN_NEW_CREATED = "OverwriteWhenNewCreated"
    OVERWRITE_UNCONDITIONALLY = "OverwriteUnconditionally"


class Side(str, Enum):
    SOURCE = "source"
    DESTINATION = "destination"


@dataclass(frozen=True, slots=True)
class FileEntry:
    name: str
    is_dir: bool = False
    size: int | None = None
    modified: str | None = None
    created: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FileEntry":
        size = payload.get("size")
        return cls(
            name=str(payload.get("name") or ""),
            is_dir=bool(payload.get("is_dir", False)),
            size=int(size) if isinstance(size, (int, float)) else None,
            modified=str(payload["modified"]) if payload.get("modified") else None,
            created=str(payload["created"]) if payload.get("created") else None,
            extra={k: v for k, v in payload.items() if k not in LISTING_KEYS},
        )


DirectoryFileMap = dict[str, list[FileEntry]]


@dataclass(frozen=True, slots=True)
class CopyJob:
    """Files to copy from one source directory into one destination directory."""

    src_dir: str
    dst_dir: str
    files: tuple[FileEntry, ...] = ()
    create_dst_dir: bool = field(default=False, compare=False)

    @property
    def is_valid(self) -> bool:
        return bool(self.src_dir and self.dst_dir and self.files)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self.files if entry.name]

    def with_file(self, entry: FileEntry) -> "CopyJob":
        return replace(self, files=(*self.files, entry))


@dataclass(slots=True)
class CrawlState:
    source_done: bool = False
    destination_done: bool = False

    @property
    def ready(self) -> bool:
        return self.source_done and self.destination_done

    def is_done(self, side: Side) -> bool:
        return self.source_done if side is Side.SOURCE else self.destination_done

    def mark(self, side: Side) -> None:
        if side is Side.SOURCE:
            self.source_done = True
        else:
            self.destination_done = True

    def reset(self) -> None:
        self.source_done = False
        self.destination_done = False


@dataclass(slots=True)
class CopyReport:
    job_count: int
    failed_jobs: list[CopyJob]

    @property
    def failure_count(self) -> int:
        return len(self.failed_jobs)
