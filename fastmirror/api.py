from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

import requests

from fastmirror.models import FileEntry


LIST_ENDPOINT = "/api/fs/list"
COPY_ENDPOINT = "/api/fs/copy"
MKDIR_ENDPOINT = "/api/fs/mkdir"
SUCCESS_CODE = 200
DEFAULT_TIMEOUT_SECONDS = 30.0
# Source crawl, destination crawl and copy dispatch each keep at most one request open.
DEFAULT_HTTP_WORKERS = 3
T = TypeVar("T")

logger = logging.getLogger(__name__)


class RemoteApiError(RuntimeError):
    pass


class TransportError(RemoteApiError):
    pass


class MalformedResponseError(RemoteApiError):
    pass


class RemoteRejectedError(RemoteApiError):
    def __init__(self, endpoint: str, code: Any, message: str = "") -> None:
        self.endpoint = endpoint
        self.code = code
        self.remote_message = message
        detail = f": {message}" if message else ""
        super().__init__(f"{endpoint} rejected with code {code}{detail}")


class RemoteFsClient:
    """Client for the remote file service's list/mkdir/copy endpoints."""

    def __init__(
        self,
        server: str,
        token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        max_workers: int = DEFAULT_HTTP_WORKERS,
    ) -> None:
        self._server = server.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Authorization": token, "Content-Type": "application/json"}
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="fastmirror-http"
        )

    def _post(self, endpoint: str, payload: dict[str, Any]) -> Any:
        url = f"{self._server}{endpoint}"
        logger.debug("POST %s %s", url, payload)
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise TransportError(f"{endpoint} request failed: {exc}") from exc

        if not response.content:
            raise MalformedResponseError(
                f"{endpoint} returned an empty body (HTTP {response.status_code})"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{endpoint} returned malformed JSON (HTTP {response.status_code})"
            ) from exc
        if not isinstance(body, dict) or "code" not in body:
            raise MalformedResponseError(f"{endpoint} returned an unexpected envelope")

        if body["code"] != SUCCESS_CODE:
            raise RemoteRejectedError(endpoint, body["code"], str(body.get("message") or ""))
        return body.get("data")

    def list_dir(self, path: str) -> list[FileEntry]:
        data = self._post(LIST_ENDPOINT, {"path": path})
        if data is None:
            return []
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{LIST_ENDPOINT} returned non-object data")
        content = data.get("content") or []
        if not isinstance(content, list):
            raise MalformedResponseError(f"{LIST_ENDPOINT} returned non-list content")
        return [FileEntry.from_payload(item) for item in content if isinstance(item, dict)]

    def mkdir(self, path: str) -> None:
        self._post(MKDIR_ENDPOINT, {"path": path})

    def copy(self, src_dir: str, dst_dir: str, names: list[str]) -> None:
        self._post(
            COPY_ENDPOINT,
            {"src_dir": src_dir, "dst_dir": dst_dir, "names": [name for name in names if name]},
        )

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        return self._executor.submit(fn, *args)

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._session.close()
