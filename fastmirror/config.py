from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from urllib.parse import urlparse

from fastmirror.api import DEFAULT_TIMEOUT_SECONDS
from fastmirror.models import DuplicateOption
from fastmirror.paths import normalize_remote_root


CONFIG_FILENAME = ".fastmirror.json"
STATE_DB_FILENAME = ".fm_state.db"


@dataclass(slots=True)
class MirrorConfig:
    server: str
    token: str
    src_root: str
    dst_root: str
    duplicate_option: DuplicateOption = DuplicateOption.NO_OVERWRITE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    create_missing_dirs: bool = True

    def with_overrides(self, **overrides) -> "MirrorConfig":
        values = {key: value for key, value in overrides.items() if value is not None}
        updated = replace(self, **values)
        updated.server = normalize_server_url(updated.server)
        updated.src_root = normalize_remote_root(updated.src_root)
        updated.dst_root = normalize_remote_root(updated.dst_root)
        return updated


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def state_db_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / STATE_DB_FILENAME


def load_config(base_dir: Path | None = None) -> MirrorConfig:
    path = config_path(base_dir)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}. Run `fm init <server>` first."
        )

    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)

    return MirrorConfig(
        server=normalize_server_url(data.get("server", "")),
        token=data.get("token", ""),
        src_root=normalize_remote_root(data.get("src_root", "")),
        dst_root=normalize_remote_root(data.get("dst_root", "")),
        duplicate_option=DuplicateOption(
            data.get("duplicate_option", DuplicateOption.NO_OVERWRITE.value)
        ),
        timeout_seconds=float(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        create_missing_dirs=bool(data.get("create_missing_dirs", True)),
    )


def load_config_or_default(base_dir: Path | None = None) -> MirrorConfig:
    if config_path(base_dir).exists():
        return load_config(base_dir)
    return MirrorConfig(server="", token="", src_root="", dst_root="")


def save_config(config: MirrorConfig, base_dir: Path | None = None) -> Path:
    path = config_path(base_dir)
    payload = asdict(config)
    payload["server"] = normalize_server_url(config.server)
    payload["duplicate_option"] = config.duplicate_option.value
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    return path


def normalize_server_url(server: str) -> str:
    return (server or "").strip().rstrip("/")


def check_server(config: MirrorConfig) -> str | None:
    if not config.server:
        return "Server address is empty!!"
    parsed = urlparse(config.server)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return f"Server address must start with http:// or https://: {config.server}"
    return None


def check_server_and_token(config: MirrorConfig) -> str | None:
    """Return the reason the config cannot talk to the server, or None when usable."""
    problem = check_server(config)
    if problem:
        return problem
    if not config.token:
        return "Token is empty!!"
    return None


def check_roots(config: MirrorConfig) -> str | None:
    if not config.src_root:
        return "Source path is empty!!"
    if not config.dst_root:
        return "Destination path is empty!!"
    if config.src_root == config.dst_root:
        return f"Source and destination are the same path: {config.src_root}"
    if _is_nested(config.dst_root, config.src_root):
        return f"Destination {config.dst_root} is inside source {config.src_root}"
    if _is_nested(config.src_root, config.dst_root):
        return f"Source {config.src_root} is inside destination {config.dst_root}"
    return None


def _is_nested(path: str, root: str) -> bool:
    return path.startswith(root.rstrip("/") + "/")


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"
