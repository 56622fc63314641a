from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable

from fastmirror.filters import PathFilter
from fastmirror.models import CopyJob, DirectoryFileMap, DuplicateOption, FileEntry
from fastmirror.paths import destination_dir_for, join_remote, relative_to_root


_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a listing timestamp such as ``2024-05-01T10:00:00.123456789+08:00``."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00").replace("z", "+00:00")
    # fromisoformat only accepts up to microseconds.
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamp_field(option: DuplicateOption) -> str:
    if option is DuplicateOption.OVERWRITE_WHEN_NEW_CREATED:
        return "created"
    return "modified"


def should_overwrite(
    source: FileEntry,
    existing: FileEntry,
    option: DuplicateOption,
) -> tuple[bool, str]:
    """Decide whether ``source`` replaces an existing destination file of the same name.

    Returns the decision and a short reason for the log. The timestamp policies
    overwrite only when the source is strictly newer; ties and missing or
    unreadable timestamps keep the destination file.
    """
    if option is DuplicateOption.OVERWRITE_UNCONDITIONALLY:
        return True, option.value
    if option is DuplicateOption.NO_OVERWRITE:
        return False, option.value

    field_name = _timestamp_field(option)
    src_time = parse_timestamp(getattr(source, field_name))
    dst_time = parse_timestamp(getattr(existing, field_name))
    if src_time is None or dst_time is None:
        return False, f"{option.value} (no comparable {field_name} time)"
    if src_time > dst_time:
        return True, option.value
    return False, f"{option.value} (source not newer)"


def plan_copy_jobs(
    source_map: DirectoryFileMap,
    destination_map: DirectoryFileMap,
    *,
    src_root: str,
    dst_root: str,
    option: DuplicateOption = DuplicateOption.NO_OVERWRITE,
    path_filter: PathFilter | None = None,
    log: Callable[[str], None] | None = None,
) -> list[CopyJob]:
    """Build one copy job per source directory that has something to copy."""
    path_filter = path_filter or PathFilter()
    jobs: list[CopyJob] = []

    for src_dir, entries in source_map.items():
        relative_dir = relative_to_root(src_dir, src_root)
        dst_dir = destination_dir_for(src_dir, src_root, dst_root)
        candidates = [
            entry
            for entry in entries
            if entry.name and path_filter.matches(join_remote(relative_dir, entry.name).lstrip("/"))
        ]
        if not candidates:
            continue

        existing_entries = destination_map.get(dst_dir)
        if existing_entries is None or option is DuplicateOption.OVERWRITE_UNCONDITIONALLY:
            jobs.append(
                CopyJob(
                    src_dir=src_dir,
                    dst_dir=dst_dir,
                    files=tuple(candidates),
                    create_dst_dir=existing_entries is None,
                )
            )
            continue

        existing = {entry.name: entry for entry in existing_entries}
        job = CopyJob(src_dir=src_dir, dst_dir=dst_dir)
        for entry in candidates:
            current = existing.get(entry.name)
            if current is None:
                job = job.with_file(entry)
                continue
            overwrite, reason = should_overwrite(entry, current, option)
            if overwrite:
                job = job.with_file(entry)
            elif log is not None:
                log(f"{reason} {join_remote(dst_dir, entry.name)}")

        if job.files:
            jobs.append(job)

    return jobs
