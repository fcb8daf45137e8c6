"""
Snapshot extraction: element -> bytes -> content hash.

Bytes are read in-process first. Cross-origin images whose response does not
allow the page origin, failed requests and file: URLs are handed to the
privileged background worker, which has no such restrictions.
"""

import base64
import binascii
import logging
import weakref
from typing import Optional, Protocol
from urllib.parse import unquote_to_bytes, urlsplit

import httpx

from .digest import content_hash, probe_image
from .errors import FetchError, UnsupportedElementError
from .models import ChannelResponse, Snapshot, VisualElement

logger = logging.getLogger(__name__)

SUPPORTED_TAGS = {"img", "image"}


class MessageChannel(Protocol):
    async def handle_message(self, message: dict) -> ChannelResponse: ...


class DirectFetchFailed(Exception):
    """In-page fetch could not deliver bytes; delegate to the background worker."""


def is_supported(element: VisualElement) -> bool:
    return (element.tag or "").lower() in SUPPORTED_TAGS and bool(element.src)


def decode_data_url(url: str) -> bytes:
    header, _, data = url.partition(",")
    if not header.startswith("data:"):
        raise FetchError("Not a data URL", url=url[:64])
    try:
        if header.endswith(";base64"):
            return base64.b64decode(data, validate=False)
        return unquote_to_bytes(data)
    except (binascii.Error, ValueError) as exc:
        raise FetchError(f"Malformed data URL: {exc}", url=url[:64]) from exc


def _origin_of(url: str) -> str:
    parts = urlsplit(url or "")
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


class SnapshotExtractor:
    """Produces memoized snapshots for visual elements."""

    def __init__(
        self,
        background: MessageChannel,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_sec: float = 30.0,
    ):
        self.background = background
        self._http_client = http_client
        self._timeout_sec = timeout_sec
        self._cache: "weakref.WeakKeyDictionary[VisualElement, Snapshot]" = weakref.WeakKeyDictionary()

    def cached(self, element: VisualElement) -> Optional[Snapshot]:
        return self._cache.get(element)

    async def snapshot(self, element: VisualElement) -> Snapshot:
        cached = self._cache.get(element)
        if cached is not None:
            return cached

        if (element.tag or "").lower() not in SUPPORTED_TAGS:
            raise UnsupportedElementError(element.tag)
        if not element.src:
            raise FetchError("Element has no source URL")

        payload = await self.read_bytes(element.src, page_url=element.page_url)
        mime_type, width, height = probe_image(payload)
        snapshot = Snapshot(
            hash=content_hash(payload),
            payload=payload,
            mime_type=mime_type,
            width=element.natural_width or width,
            height=element.natural_height or height,
        )
        self._cache[element] = snapshot
        logger.debug(f"snapshot: element={element.element_id} hash={snapshot.hash[:12]} bytes={len(payload)}")
        return snapshot

    async def read_bytes(self, url: str, page_url: str = "") -> bytes:
        if url.startswith("data:"):
            return decode_data_url(url)

        scheme = urlsplit(url).scheme.lower()
        if scheme in ("http", "https"):
            try:
                return await self._fetch_direct(url, page_url)
            except DirectFetchFailed as exc:
                logger.info(f"Direct fetch failed, delegating to background: {exc}")

        return await self._fetch_via_background(url)

    async def _fetch_direct(self, url: str, page_url: str) -> bytes:
        page_origin = _origin_of(page_url)
        headers = {"Origin": page_origin} if page_origin else {}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec, follow_redirects=True) as client:
                    response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise DirectFetchFailed(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            raise DirectFetchFailed(f"HTTP {response.status_code} for {url}")

        if page_origin and _origin_of(url) != page_origin:
            allowed = response.headers.get("access-control-allow-origin", "")
            if allowed not in ("*", page_origin):
                raise DirectFetchFailed(f"cross-origin response without CORS for {url}")
        return response.content

    async def _fetch_via_background(self, url: str) -> bytes:
        response = await self.background.handle_message({"type": "fetchImage", "url": url})
        if not response.success or not response.base64:
            raise FetchError(response.error or "Background fetch returned no data", url=url)
        try:
            return base64.b64decode(response.base64)
        except (binascii.Error, ValueError) as exc:
            raise FetchError(f"Background fetch returned invalid base64: {exc}", url=url) from exc
