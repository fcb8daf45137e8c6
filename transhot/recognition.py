"""
Recognition client for the Vision images:annotate API.

Turns the page -> block -> paragraph -> word -> symbol hierarchy into flat
text blocks with pixel geometry.
"""

import json
import logging
from typing import Any, Optional

import httpx

from .errors import RecognitionError, truncate_detail
from .models import AuthToken, BoundingBox, OcrResult, Point, TextBlock

logger = logging.getLogger(__name__)

DEFAULT_VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"


def build_request(image_b64: str) -> dict:
    return {
        "requests": [
            {
                "image": {"content": image_b64},
                "features": [{"type": "TEXT_DETECTION"}],
            }
        ]
    }


def extract_error_detail(body: str) -> str:
    """Prefer error.message from a structured body, else the truncated raw text."""
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return truncate_detail(str(error["message"]))
        if isinstance(error, str) and error:
            return truncate_detail(error)
    return truncate_detail(body)


def _word_text(word: dict) -> str:
    return "".join(symbol.get("text", "") for symbol in word.get("symbols") or [])


def block_text(block: dict) -> str:
    paragraphs = []
    for paragraph in block.get("paragraphs") or []:
        words = [_word_text(word) for word in paragraph.get("words") or []]
        line = " ".join(word for word in words if word)
        if line:
            paragraphs.append(line)
    return "\n".join(paragraphs).strip()


def block_polygon(
    bounding: Optional[dict],
    width: Optional[int],
    height: Optional[int],
) -> list[Point]:
    """Absolute vertices when present, else normalized vertices scaled to the image."""
    if not bounding:
        return []
    vertices = bounding.get("vertices") or []
    if vertices:
        return [Point(x=float(v.get("x", 0)), y=float(v.get("y", 0))) for v in vertices]

    normalized = bounding.get("normalizedVertices") or []
    if normalized and width and height:
        return [
            Point(x=float(v.get("x", 0)) * width, y=float(v.get("y", 0)) * height)
            for v in normalized
        ]
    return []


def bounding_rect(points: list[Point]) -> Optional[BoundingBox]:
    """Min/max rectangle; None for empty or degenerate polygons."""
    if not points:
        return None
    xs = [p.x for p in points]
    ys = [p.y for p in points]
    box = BoundingBox(x1=min(xs), y1=min(ys), x2=max(xs), y2=max(ys))
    if box.width <= 0 or box.height <= 0:
        return None
    return box


def extract_text_blocks(
    annotation: dict,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> list[TextBlock]:
    full = annotation.get("fullTextAnnotation") or {}
    blocks: list[TextBlock] = []
    for page in full.get("pages") or []:
        page_width = width or page.get("width")
        page_height = height or page.get("height")
        for block in page.get("blocks") or []:
            text = block_text(block)
            if not text:
                continue
            polygon = block_polygon(block.get("boundingBox"), page_width, page_height)
            box = bounding_rect(polygon)
            if box is None:
                continue
            blocks.append(TextBlock(text=text, polygon=polygon, bounding_box=box))
    return blocks


class RecognitionClient:
    def __init__(
        self,
        endpoint: str = DEFAULT_VISION_ENDPOINT,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_sec: float = 30.0,
    ):
        self.endpoint = endpoint
        self._http_client = http_client
        self._timeout_sec = timeout_sec

    async def _post(self, body: dict, headers: dict, params: dict) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(self.endpoint, json=body, headers=headers, params=params)
        async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
            return await client.post(self.endpoint, json=body, headers=headers, params=params)

    async def recognize(
        self,
        image_b64: str,
        mime_type: str,
        auth: AuthToken,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> OcrResult:
        headers: dict[str, str] = {}
        params: dict[str, str] = {}
        auth.apply(headers, params)

        logger.info(f"recognize: mime={mime_type} auth={auth.kind} b64_len={len(image_b64)}")
        try:
            response = await self._post(build_request(image_b64), headers, params)
        except httpx.HTTPError as exc:
            raise RecognitionError(0, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            detail = extract_error_detail(response.text)
            logger.warning(f"recognize: HTTP {response.status_code} {detail}")
            raise RecognitionError(response.status_code, detail)

        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise RecognitionError(response.status_code, truncate_detail(response.text)) from exc

        annotation = (data.get("responses") or [{}])[0] or {}
        error = annotation.get("error")
        if isinstance(error, dict) and error:
            raise RecognitionError(response.status_code, str(error.get("message") or error))

        blocks = extract_text_blocks(annotation, width, height)
        logger.info(f"recognize: blocks={len(blocks)}")
        return OcrResult(raw=annotation, blocks=blocks, width=width, height=height)
