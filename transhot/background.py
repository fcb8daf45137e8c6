"""
Privileged background worker.

Answers requests from the pipeline over a message channel:
- fetchImage {url}: read bytes without the page's cross-origin limits
  (http(s) through aiohttp, file: from disk) -> {success, base64 | error}
- persistResult {hash, data}: export a JSON payload to
  <export_dir>/<hash>/vision.json
"""

import asyncio
import base64
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import unquote, urlsplit

import aiohttp

from .errors import FetchError
from .models import ChannelResponse

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class BackgroundWorker:
    def __init__(self, export_dir: Union[str, Path], timeout_sec: float = 30.0):
        self.export_dir = Path(export_dir)
        self.timeout_sec = timeout_sec

    async def handle_message(self, message: dict) -> ChannelResponse:
        message_type = (message or {}).get("type")
        try:
            if message_type == "fetchImage":
                payload = await self.fetch_image(message.get("url") or "")
                return ChannelResponse(success=True, base64=base64.b64encode(payload).decode("ascii"))
            if message_type == "persistResult":
                await self.persist_result(message.get("hash"), message.get("data"))
                return ChannelResponse(success=True)
        except (FetchError, ValueError, OSError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"background: {message_type} failed: {type(exc).__name__}: {exc}")
            return ChannelResponse(success=False, error=str(exc) or type(exc).__name__)
        return ChannelResponse(success=False, error=f"Unknown message type: {message_type}")

    async def fetch_image(self, url: str) -> bytes:
        if not url:
            raise FetchError("URL must not be empty")
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme == "file":
            path = Path(unquote(parts.path))
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, path.read_bytes)
        if scheme not in ("http", "https"):
            raise FetchError(f"Unsupported URL scheme: {scheme or '(none)'}", url=url)

        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise FetchError(f"HTTP {response.status} for {url}", url=url)
                return await response.read()

    async def persist_result(self, content_hash: Optional[str], data: Any) -> Path:
        if not content_hash or data is None:
            raise ValueError("persistResult requires hash and data")
        if not _HASH_RE.match(content_hash):
            raise ValueError(f"Invalid content hash: {content_hash[:16]}")

        target = self.export_dir / content_hash / "vision.json"
        text = json.dumps(data, ensure_ascii=False, indent=2)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write)
        logger.info(f"background: exported vision result {content_hash[:12]} -> {target}")
        return target
