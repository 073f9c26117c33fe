"""Backend storing objects on a WebDAV server."""

import asyncio
import xml.etree.ElementTree as ET
from typing import List, Optional, Set, Tuple
from urllib.parse import quote, unquote, urlsplit

import httpx

from backends.base import Backend, handle_from_segments, relative_path
from common.logging_config import get_logger
from common.types import ChunkHandle, FileHandle, FileInfo, TopLevelFolder
from engine.exceptions import BackendError, ObjectNotFoundError

logger = get_logger(__name__)

DEFAULT_ROOT = "ChunkVault"

DAV_NS = "{DAV:}"

PROPFIND_LIST_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/>"
    "</d:prop></d:propfind>"
)

PROPFIND_QUOTA_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:quota-available-bytes/>"
    "</d:prop></d:propfind>"
)


class WebDavBackend(Backend):
    """
    WebDAV backend with the same object layout as LocalBackend below
    <url>/<root>/. Transport errors and 5xx responses are retried with
    exponential backoff.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        root: str = DEFAULT_ROOT,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff_multiplier: float = 2.0,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = url.rstrip("/")
        self.url = f"{self.base_url}/{quote(root)}"
        self.max_retries = max_retries
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.retry_delay = retry_delay
        auth = httpx.BasicAuth(username, password or "") if username else None
        self.client = httpx.AsyncClient(
            auth=auth,
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
        )
        self._root_path = unquote(urlsplit(self.url).path).rstrip("/")
        self._folders: Set[str] = set()
        logger.info(f"Initialized WebDavBackend [url={self.url}]")

    async def aclose(self) -> None:
        await self.client.aclose()

    def _url(self, handle: FileHandle) -> str:
        path = quote(relative_path(handle))
        if isinstance(handle, TopLevelFolder):
            return f"{self.url}/{path}/"
        return f"{self.url}/{path}"

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Returns:
            The last response, which may still be a 5xx after all retries

        Raises:
            BackendError: If the request failed on the network after all retries
        """
        last_exception = None
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(method, url, **kwargs)
                logger.debug(f"Response received: {method} {url} status={response.status_code}")

                if response.status_code >= 500 and attempt < self.max_retries:
                    delay = self.retry_delay * self.retry_backoff_multiplier ** attempt
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{method} {url} status={response.status_code}, retrying in {delay}s"
                    )
                    await asyncio.sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self.retry_delay * self.retry_backoff_multiplier ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{method} {url} error={type(e).__name__}, retrying in {delay}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Network error (max retries exceeded): {method} {url} error={e}")
            except httpx.HTTPError as e:
                raise BackendError(f"{method} {url} failed: {e}") from e

        raise BackendError(f"{method} {url} failed: {last_exception}") from last_exception

    @staticmethod
    def _check(response: httpx.Response, what: str) -> None:
        if response.status_code == 404:
            raise ObjectNotFoundError(f"Not found: {what}")
        if not response.is_success:
            raise BackendError(f"HTTP error {response.status_code} for {what}")

    async def _ensure_folders(self, path: str) -> None:
        segments = path.split("/")[:-1]
        folders = [""] + ["/".join(segments[:i + 1]) for i in range(len(segments))]
        for folder in folders:
            if folder in self._folders:
                continue
            url = f"{self.url}/{quote(folder)}/" if folder else f"{self.url}/"
            response = await self._request_with_retry("MKCOL", url)
            # 405: the collection already exists
            if response.status_code != 405 and not response.is_success:
                raise BackendError(f"Could not create folder {folder or '/'}: HTTP {response.status_code}")
            self._folders.add(folder)

    async def test(self) -> bool:
        response = await self._request_with_retry("OPTIONS", f"{self.base_url}/")
        dav = response.headers.get("DAV", "")
        if not any(level.strip() in ("1", "2", "3") for level in dav.split(",")):
            logger.warning(f"Server does not support WebDAV [url={self.base_url}, dav={dav!r}]")
            return False
        await self._ensure_folders("")
        return True

    async def get_free_space(self) -> Optional[int]:
        response = await self._request_with_retry(
            "PROPFIND",
            f"{self.url}/",
            headers={"Depth": "0", "Content-Type": "application/xml"},
            content=PROPFIND_QUOTA_BODY,
        )
        if response.status_code != 207:
            return None
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError:
            logger.warning("Invalid PROPFIND response for quota", exc_info=True)
            return None
        element = root.find(f".//{DAV_NS}quota-available-bytes")
        if element is None or not (element.text or "").strip().isdigit():
            return None
        available = int(element.text.strip())
        return available if available > 0 else None

    async def save(self, handle: FileHandle, data: bytes) -> None:
        await self._ensure_folders(relative_path(handle))
        url = self._url(handle)
        response = await self._request_with_retry(
            "PUT",
            url,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        if not response.is_success:
            raise BackendError(f"HTTP error {response.status_code} saving {relative_path(handle)}")
        logger.debug(f"Saved object [path={relative_path(handle)}, size={len(data)}]")

    async def load(self, handle: FileHandle) -> bytes:
        response = await self._request_with_retry("GET", self._url(handle))
        self._check(response, relative_path(handle))
        return response.content

    async def _propfind(self, url: str) -> List[Tuple[List[str], bool, int]]:
        response = await self._request_with_retry(
            "PROPFIND",
            url,
            headers={"Depth": "1", "Content-Type": "application/xml"},
            content=PROPFIND_LIST_BODY,
        )
        self._check(response, url)
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise BackendError(f"Invalid PROPFIND response for {url}") from e

        self_path = unquote(urlsplit(url).path).rstrip("/")
        entries = []
        for item in root.iter(f"{DAV_NS}response"):
            href = item.findtext(f"{DAV_NS}href") or ""
            path = unquote(urlsplit(href).path).rstrip("/")
            if path == self_path or not path.startswith(self._root_path + "/"):
                continue
            segments = path[len(self._root_path) + 1:].split("/")
            is_folder = item.find(f".//{DAV_NS}collection") is not None
            length = (item.findtext(f".//{DAV_NS}getcontentlength") or "0").strip()
            entries.append((segments, is_folder, int(length) if length.isdigit() else 0))
        return entries

    async def list(
        self,
        top_level_folder: Optional[TopLevelFolder],
        *file_types: type,
    ) -> List[FileInfo]:
        # snapshots sit one level below a namespace, chunks two
        depth = 3 if not file_types or ChunkHandle in file_types else 2
        if top_level_folder is not None:
            depth -= 1
            start = self._url(top_level_folder)
        else:
            start = f"{self.url}/"

        result: List[FileInfo] = []
        pending = [(start, depth)]
        while pending:
            url, remaining = pending.pop()
            try:
                entries = await self._propfind(url)
            except ObjectNotFoundError:
                # removed since its parent was listed
                logger.warning(f"Folder not found while listing [url={url}]")
                continue
            for segments, is_folder, size in entries:
                if is_folder:
                    if remaining > 1:
                        pending.append((f"{self.url}/{quote('/'.join(segments))}/", remaining - 1))
                    continue
                handle = handle_from_segments(segments)
                if handle is None or (file_types and not isinstance(handle, file_types)):
                    continue
                result.append(FileInfo(handle, size))
        return result

    async def remove(self, handle: FileHandle) -> None:
        response = await self._request_with_retry("DELETE", self._url(handle))
        self._check(response, relative_path(handle))
        if isinstance(handle, TopLevelFolder):
            self._folders = {f for f in self._folders if f.split("/")[0] != handle.name}
        logger.debug(f"Removed object [path={relative_path(handle)}]")

    async def rename(self, source: TopLevelFolder, target: TopLevelFolder) -> None:
        response = await self._request_with_retry(
            "MOVE",
            self._url(source),
            headers={"Destination": self._url(target), "Overwrite": "F"},
        )
        self._check(response, source.name)
        # lighttpd reports a failed move as a 207 multi-status
        if response.status_code == 207:
            raise BackendError(f"Could not rename {source.name} to {target.name}")
        self._folders = {f for f in self._folders if f.split("/")[0] != source.name}
        logger.info(f"Renamed namespace [from={source.name}, to={target.name}]")

    async def remove_all(self) -> None:
        response = await self._request_with_retry("DELETE", f"{self.url}/")
        if response.status_code != 404 and not response.is_success:
            raise BackendError(f"HTTP error {response.status_code} removing all objects")
        self._folders.clear()
        logger.info(f"Removed all objects [url={self.url}]")
