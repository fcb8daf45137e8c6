"""
Translation API Routes.

Runs the pipeline for elements described by the caller and streams bulk
progress over Server-Sent Events.
"""

import asyncio
import json
import logging
from typing import Iterable, Optional, Set
from urllib.parse import urlsplit
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from transhot.models import BulkProgress, PipelineOutcome, PipelineState, VisualElement
from transhot.pipeline import TranslationPipeline
from ..deps import get_pipeline

router = APIRouter(prefix="/translate", tags=["translation"])
logger = logging.getLogger(__name__)

# SSE event listeners
_listeners: Set[asyncio.Queue] = set()

# Keep references so running bulk jobs are not garbage collected
_bulk_tasks: Set[asyncio.Task] = set()


class ElementPayload(BaseModel):
    """Caller-side description of one visual element."""
    element_id: str = Field(..., min_length=1, description="Stable token for the element")
    tag: str = Field(default="img", description="Element tag name")
    src: str = Field(..., min_length=1, description="Image URL (http, https, file or data)")
    page_url: str = Field(default="", description="URL of the page showing the element")
    natural_width: Optional[int] = Field(default=None, ge=1)
    natural_height: Optional[int] = Field(default=None, ge=1)

    def to_element(self) -> VisualElement:
        return VisualElement(
            element_id=self.element_id,
            tag=self.tag,
            src=self.src,
            page_url=self.page_url,
            natural_width=self.natural_width,
            natural_height=self.natural_height,
        )


class BulkTranslateRequest(BaseModel):
    elements: list[ElementPayload] = Field(default_factory=list)
    request_id: Optional[str] = None


class BulkTranslateResponse(BaseModel):
    accepted: bool
    request_id: str
    total: int


class ElementStateResponse(BaseModel):
    element_id: str
    state: PipelineState
    busy: bool


async def broadcast_event(data: dict):
    """Broadcast an event to all connected SSE clients."""
    if not _listeners:
        return

    event_str = f"data: {json.dumps(data, ensure_ascii=False)}\n\n"
    for queue in list(_listeners):
        await queue.put(event_str)


async def pipeline_status_callback(state: PipelineState, element_id: str):
    """Callback for per-element state changes."""
    await broadcast_event(
        {
            "type": "progress",
            "element_id": element_id,
            "state": state.value,
        }
    )


async def bulk_progress_observer(progress: BulkProgress):
    await broadcast_event({"type": "bulk_progress", **progress.model_dump()})


def reject_local_sources(payloads: Iterable[ElementPayload], pipeline: TranslationPipeline) -> None:
    """Refuse file: sources from HTTP callers unless allow_file_urls is set."""
    if pipeline.settings.allow_file_urls:
        return
    for payload in payloads:
        if urlsplit(payload.src).scheme.lower() == "file":
            raise HTTPException(
                status_code=400,
                detail=f"file: sources are disabled for element {payload.element_id}",
            )


@router.get("/events")
async def sse_events():
    """Server-Sent Events endpoint for real-time status updates."""
    queue = asyncio.Queue()
    _listeners.add(queue)

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            _listeners.discard(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.post("/element", response_model=PipelineOutcome)
async def translate_element(
    request: ElementPayload,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """
    Translate the text in one image.

    Failures are reported in the outcome (status "failed" with error_code),
    not as HTTP errors, so the caller can reset its button to ready.
    """
    reject_local_sources([request], pipeline)
    return await pipeline.process(request.to_element(), status_callback=pipeline_status_callback)


@router.post("/all", response_model=BulkTranslateResponse, status_code=status.HTTP_202_ACCEPTED)
async def translate_all(
    request: BulkTranslateRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """Start bulk translation in the background; progress arrives on /translate/events."""
    reject_local_sources(request.elements, pipeline)
    elements = [payload.to_element() for payload in request.elements]
    request_id = request.request_id or f"bulk-{uuid4().hex[:8]}"

    task = asyncio.create_task(
        pipeline.process_all(elements, observer=bulk_progress_observer, request_id=request_id)
    )
    _bulk_tasks.add(task)
    task.add_done_callback(_bulk_tasks.discard)
    logger.info(f"[{request_id}] bulk translation accepted: {len(elements)} elements")
    return BulkTranslateResponse(accepted=True, request_id=request_id, total=len(elements))


@router.get("/state/{element_id}", response_model=ElementStateResponse)
async def element_state(
    element_id: str,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    return ElementStateResponse(
        element_id=element_id,
        state=pipeline.state_of(element_id),
        busy=pipeline.is_busy(element_id),
    )
