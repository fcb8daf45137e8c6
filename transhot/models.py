"""
Core data models for the Transhot translation pipeline.

- VisualElement: caller-side description of an on-page image
- Snapshot: content-addressed bytes of one element
- OcrResult / TextBlock: normalized recognition output
- TranslationEntry: one translated block, aligned with the OCR blocks
- Credentials / AuthToken / CachedToken: OCR authentication
- PipelineOutcome / BulkProgress: what the orchestrator reports
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, Field


@dataclass(eq=False)
class VisualElement:
    """
    One visual element on a page.

    Compared and hashed by identity so it can key a WeakKeyDictionary, the
    way a DOM node keys a WeakMap. element_id is the caller's stable token
    for the same node across requests.
    """

    element_id: str
    tag: str
    src: str
    page_url: str = ""
    natural_width: Optional[int] = None
    natural_height: Optional[int] = None

    @property
    def origin(self) -> str:
        parts = urlsplit(self.page_url or "")
        if not parts.scheme or not parts.netloc:
            return ""
        return f"{parts.scheme}://{parts.netloc}"


class Snapshot(BaseModel):
    """Raw image bytes and their content hash."""
    hash: str = Field(..., description="SHA-256 hex digest of payload")
    payload: bytes = Field(..., description="Exact image bytes")
    mime_type: str = Field(default="image/png", description="Detected MIME type")
    width: Optional[int] = Field(default=None, description="Natural width in pixels")
    height: Optional[int] = Field(default=None, description="Natural height in pixels")

    @property
    def base64(self) -> str:
        return base64.b64encode(self.payload).decode("ascii")


class Point(BaseModel):
    x: float
    y: float


class BoundingBox(BaseModel):
    """Axis-aligned rectangle derived from a polygon."""
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1


class TextBlock(BaseModel):
    """One recognized text region."""
    text: str
    polygon: list[Point] = Field(default_factory=list)
    bounding_box: BoundingBox


class OcrResult(BaseModel):
    """Recognition response for one image, keyed by content hash in storage."""
    raw: dict[str, Any] = Field(default_factory=dict, description="Service response for the image")
    blocks: list[TextBlock] = Field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def full_text(self) -> str:
        return "\n".join(block.text for block in self.blocks)


class TranslationEntry(BaseModel):
    original_text: str
    translated_text: str
    bounding_poly: list[Point] = Field(default_factory=list)


class ServiceAccount(BaseModel):
    client_email: str
    private_key: str
    token_uri: str = "https://oauth2.googleapis.com/token"


class ApiKeyCredentials(BaseModel):
    type: Literal["apiKey"] = "apiKey"
    api_key: str


class ServiceAccountCredentials(BaseModel):
    type: Literal["serviceAccount"] = "serviceAccount"
    service_account: ServiceAccount


Credentials = Annotated[
    Union[ApiKeyCredentials, ServiceAccountCredentials],
    Field(discriminator="type"),
]


class AuthToken(BaseModel):
    """Resolved OCR authorization: an API key or a bearer token."""
    kind: Literal["apiKey", "bearer"]
    value: str

    def apply(self, headers: dict[str, str], params: dict[str, str]) -> None:
        if self.kind == "apiKey":
            params["key"] = self.value
        else:
            headers["Authorization"] = f"Bearer {self.value}"


class CachedToken(BaseModel):
    token: str
    expires_at: float = Field(..., description="Unix timestamp in seconds")


class PipelineState(str, Enum):
    """Per-element pipeline state."""
    IDLE = "idle"
    HASHING = "hashing"
    CACHE_HIT = "cache_hit"
    TRANSLATING = "translating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED_BUSY = "skipped_busy"
    SKIPPED_PROCESSED = "skipped_processed"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


class PipelineOutcome(BaseModel):
    """Result of one pipeline run for one element."""
    element_id: str
    status: OutcomeStatus
    hash: Optional[str] = None
    translations: list[TranslationEntry] = Field(default_factory=list)
    context: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    open_settings: bool = Field(default=False, description="Suggest opening configuration")
    debug: Optional[dict[str, Any]] = Field(default=None, description="Stage diagnostics in debug mode")
    processing_time_ms: float = 0.0
    stages_completed: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.COMPLETED, OutcomeStatus.SKIPPED_PROCESSED)


class BulkProgress(BaseModel):
    request_id: str
    state: Literal["discovering", "translating", "complete"]
    total: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0


class ChannelResponse(BaseModel):
    """Reply of the privileged message channel."""
    success: bool
    base64: Optional[str] = None
    error: Optional[str] = None


class PageVisit(BaseModel):
    origin: str
    url: str = ""
    updated_at: int = Field(..., description="Milliseconds since epoch")


class ImageMeta(BaseModel):
    image_url: str = ""
    pages: list[PageVisit] = Field(default_factory=list)
