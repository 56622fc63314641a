from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath


def _normalize_pattern(pattern: str) -> str:
    return pattern.strip().replace("\\", "/")


def _match_pattern(relative_path: str, pattern: str) -> bool:
    if not pattern:
        return False
    path_obj = PurePosixPath(relative_path)
    # "/docs/*.md" is anchored at the mirrored root, "*.md" matches at any depth.
    if pattern.startswith("/"):
        anchored = pattern.lstrip("/")
        if anchored.endswith("/"):
            return relative_path.startswith(anchored)
        return path_obj.match(anchored) and len(path_obj.parts) == len(PurePosixPath(anchored).parts)
    if pattern.endswith("/"):
        directory = pattern.rstrip("/")
        return directory in path_obj.parts[:-1]
    return path_obj.match(pattern)


@dataclass(slots=True)
class PathFilter:
    """Include/exclude globs evaluated against file paths relative to the source root."""

    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()

    def matches(self, relative_path: str) -> bool:
        if self.include_patterns and not any(
            _match_pattern(relative_path, pattern) for pattern in self.include_patterns
        ):
            return False
        return not any(_match_pattern(relative_path, pattern) for pattern in self.exclude_patterns)


def build_path_filter(
    include_patterns: list[str] | tuple[str, ...] | None = None,
    exclude_patterns: list[str] | tuple[str, ...] | None = None,
) -> PathFilter:
    include = tuple(_normalize_pattern(p) for p in (include_patterns or []) if p and p.strip())
    exclude = tuple(_normalize_pattern(p) for p in (exclude_patterns or []) if p and p.strip())
    return PathFilter(include_patterns=include, exclude_patterns=exclude)
