from __future__ import annotations

import os
from pathlib import Path


TOKEN_ENV_NAMES = ("FASTMIRROR_TOKEN", "ALIST_TOKEN")


def resolve_token(config_token: str | None = None) -> str | None:
    """Resolve the server token from env, config, or a local token file."""
    for env_name in TOKEN_ENV_NAMES:
        value = os.getenv(env_name, "").strip()
        if value:
            return value

    if config_token and config_token.strip():
        return config_token.strip()

    for path in _token_file_candidates():
        try:
            if path.exists() and path.is_file():
                value = path.read_text(encoding="utf-8").strip()
                if value:
                    return value
        except OSError:
            continue

    return None


def default_token() -> str:
    for env_name in TOKEN_ENV_NAMES:
        value = os.getenv(env_name, "").strip()
        if value:
            return value
    return ""


def _token_file_candidates() -> list[Path]:
    candidates: list[Path] = []

    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_config_home:
        candidates.append(Path(xdg_config_home) / "fastmirror" / "token")
    candidates.append(Path.home() / ".config" / "fastmirror" / "token")

    unique: list[Path] = []
    seen: set[str] = set()
    for path in candidates:
        key = str(path)
        if key not in seen:
            seen.add(key)
            unique.append(path)
    return unique
