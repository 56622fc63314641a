from __future__ import annotations


def normalize_remote_root(path: str) -> str:
    value = (path or "").strip().replace("\\", "/")
    if not value:
        return value
    if not value.startswith("/"):
        value = "/" + value
    return value.rstrip("/") or "/"


def join_remote(parent: str, name: str) -> str:
    if not name:
        return parent
    if parent.endswith("/"):
        return f"{parent}{name}"
    return f"{parent}/{name}"


def relative_to_root(path: str, root: str) -> str:
    if path == root:
        return ""
    prefix = root if root.endswith("/") else f"{root}/"
    if not path.startswith(prefix):
        raise ValueError(f"{path} is not under {root}")
    return path[len(prefix):]


def destination_dir_for(src_dir: str, src_root: str, dst_root: str) -> str:
    return join_remote(dst_root, relative_to_root(src_dir, src_root))
