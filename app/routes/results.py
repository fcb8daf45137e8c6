"""
Saved results API Routes.

Inspect and erase stored translations (the debug view).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from transhot.pipeline import TranslationPipeline
from ..deps import get_pipeline

router = APIRouter(prefix="/results", tags=["results"])
logger = logging.getLogger(__name__)


def _serialize_entry(entry: dict) -> dict:
    return {
        **entry,
        "translations": [item.model_dump() for item in entry["translations"]],
    }


@router.get("")
async def list_results(
    origin: str = Query(..., min_length=1, description="Page origin, e.g. https://example.com"),
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """Saved translations for images seen on an origin, newest first."""
    entries = pipeline.state.entries_for_origin(origin.rstrip("/"))
    return {"origin": origin, "entries": [_serialize_entry(entry) for entry in entries]}


@router.get("/{content_hash}")
async def get_result(
    content_hash: str,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    state = pipeline.state
    translations = state.get_translations(content_hash)
    vision = state.vision_results.get(content_hash)
    if translations is None and vision is None:
        raise HTTPException(status_code=404, detail="Result not found")
    return {
        "hash": content_hash,
        "processed": state.is_processed(content_hash),
        "translations": [item.model_dump() for item in translations or []],
        "context": state.translation_contexts.get(content_hash, ""),
        "vision": vision,
        "meta": state.image_meta.get(content_hash),
    }


@router.delete("/{content_hash}")
async def delete_result(
    content_hash: str,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """Erase a translation together with its OCR result, context and processed flag."""
    deleted = await pipeline.state.forget(content_hash)
    if not deleted:
        raise HTTPException(status_code=404, detail="Result not found")
    return {"hash": content_hash, "deleted": True}
