"""
Logfeed - Nitrado File Source
Lists and downloads game server log files through the Nitrado file server API.
The API has no range read, so every download fetches the whole file.
"""

import asyncio
import logging
import posixpath
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from logfeed.models.events import FileMeta
from logfeed.sources.errors import InvalidPathError, RateLimitedError, RemoteSourceError
from logfeed.sources.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.nitrado.net"
DEFAULT_LOG_PATH = "/games/ni{service_id}_1/noftp/dayzps/config"


def default_log_path(service_id: str) -> str:
    return DEFAULT_LOG_PATH.format(service_id=service_id)


def validate_remote_path(path: str) -> str:
    """Reject relative paths, traversal segments and control characters"""
    if not path or not path.startswith("/") or "\x00" in path:
        raise InvalidPathError(path)
    if any(segment == ".." for segment in path.split("/")):
        raise InvalidPathError(path)
    return posixpath.normpath(path)


class NitradoFileSource:
    """
    File source backed by the Nitrado REST API.

    Both calls run through the retry executor: 429 and 5xx answers, timeouts
    and connection errors are retried with exponential backoff, anything else
    is raised straight away.
    """

    def __init__(self, token: str, *, base_url: str = DEFAULT_BASE_URL,
                 retry_policy: Optional[RetryPolicy] = None, timeout: float = 20.0,
                 session: Optional[aiohttp.ClientSession] = None):
        if not token:
            raise ValueError("A Nitrado API token is required")
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        self._session = session
        self._owns_session = session is None
        self.closed = False

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.closed:
            # A tick still in flight after stop_monitoring must not open a new session
            raise RemoteSourceError("Source is closed", transient=False)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        self.closed = True
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, endpoint: str, url: str, params: Optional[Dict[str, str]] = None,
                       expect_json: bool = True, auth: bool = True) -> Any:
        session = await self._get_session()
        headers = self._headers if auth else None
        try:
            async with session.get(url, params=params, headers=headers, timeout=self.timeout) as resp:
                if resp.status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    raise RateLimitedError(
                        "Nitrado API rate limit hit",
                        endpoint=endpoint,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                if resp.status >= 400:
                    body = await resp.text()
                    raise RemoteSourceError(
                        f"Nitrado API returned {resp.status}: {body[:200]}",
                        status=resp.status,
                        endpoint=endpoint,
                    )
                if expect_json:
                    return await resp.json(content_type=None)
                return await resp.read()
        except asyncio.TimeoutError as e:
            raise RemoteSourceError("Request timed out", endpoint=endpoint, transient=True) from e
        except aiohttp.ClientError as e:
            raise RemoteSourceError(f"Connection error: {e}", endpoint=endpoint, transient=True) from e
        except ValueError as e:
            raise RemoteSourceError(f"Malformed response: {e}", endpoint=endpoint, transient=False) from e

    async def list_files(self, service_id: str, path: str) -> List[FileMeta]:
        path = validate_remote_path(path)
        endpoint = f"/services/{service_id}/gameservers/file_server/list"

        payload = await run_with_retry(
            lambda: self._request(endpoint, f"{self.base_url}{endpoint}", params={"dir": path}),
            self.retry_policy,
            description=f"list {path} on service {service_id}",
        )
        entries = parse_entries(payload)
        logger.debug(f"📂 Listed {len(entries)} entries in {path} for service {service_id}")
        return entries

    async def download_file(self, service_id: str, path: str) -> bytes:
        path = validate_remote_path(path)
        endpoint = f"/services/{service_id}/gameservers/file_server/download"

        payload = await run_with_retry(
            lambda: self._request(endpoint, f"{self.base_url}{endpoint}", params={"file": path}),
            self.retry_policy,
            description=f"download token for {path}",
        )
        try:
            download_url = payload["data"]["token"]["url"]
        except (KeyError, TypeError) as e:
            raise RemoteSourceError("Download response carried no token url",
                                    endpoint=endpoint, transient=False) from e

        content = await run_with_retry(
            lambda: self._request(endpoint, download_url, expect_json=False, auth=False),
            self.retry_policy,
            description=f"download {path}",
        )
        logger.debug(f"📥 Downloaded {len(content)} bytes from {path}")
        return content

    async def test_access(self, service_id: str, path: str) -> bool:
        """One listing call, used before a monitor is registered"""
        try:
            await self.list_files(service_id, path)
            return True
        except RemoteSourceError as e:
            logger.error(f"❌ Nitrado API access check failed for service {service_id}: {e}")
            return False


def parse_entries(payload: Dict[str, Any]) -> List[FileMeta]:
    """Convert a file_server/list payload into FileMeta records"""
    if not isinstance(payload, dict) or payload.get("status", "success") != "success":
        raise RemoteSourceError("Unexpected list response", transient=False)

    data = payload.get("data") or {}
    entries = []
    for raw in data.get("entries") or []:
        path = raw.get("path") or ""
        name = raw.get("name") or posixpath.basename(path)
        modified = raw.get("modified_at")
        entries.append(FileMeta(
            name=name,
            path=path,
            size=int(raw.get("size") or 0),
            modified_at=datetime.fromtimestamp(modified, tz=timezone.utc) if modified else None,
            is_file=raw.get("type", "file") == "file",
        ))
    return entries
