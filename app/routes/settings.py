"""
Settings API Routes.

Runtime options live in the storage collaborator, so changes survive
restarts and apply to the next pipeline run.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from transhot.config import load_run_config
from transhot.credentials import extract_credentials
from transhot.errors import CredentialsMissingError, InvalidCredentialsError
from transhot.pipeline import TranslationPipeline
from transhot.storage import (
    CHAT_KEY_KEY,
    CHAT_MODEL_KEY,
    CONTEXT_ENABLED_KEY,
    CONTEXT_MODEL_KEY,
    CREDENTIALS_KEY,
    CREDENTIALS_NAME_KEY,
    DEBUG_MODE_KEY,
    TARGET_LANGUAGE_KEY,
)
from ..deps import get_pipeline

router = APIRouter(prefix="/settings", tags=["settings"])
logger = logging.getLogger(__name__)


class SettingsResponse(BaseModel):
    model: str
    context_model: str
    context_enabled: bool
    target_language: str
    debug_mode: bool
    credentials_type: Optional[str] = None
    credentials_name: Optional[str] = None
    chat_key_configured: bool


class CredentialsUpdateRequest(BaseModel):
    document: dict[str, Any] = Field(..., description="Parsed credentials JSON document")
    file_name: Optional[str] = None


class ChatKeyUpdateRequest(BaseModel):
    api_key: str = ""


class ModelUpdateRequest(BaseModel):
    model: Optional[str] = None
    context_model: Optional[str] = None


class ToggleRequest(BaseModel):
    enabled: bool


class LanguageUpdateRequest(BaseModel):
    target_language: str = Field(..., min_length=1)


@router.get("", response_model=SettingsResponse)
async def get_current_settings(pipeline: TranslationPipeline = Depends(get_pipeline)):
    """Get current application settings."""
    config = await load_run_config(pipeline.store, pipeline.settings)
    stored = await pipeline.store.get([CREDENTIALS_KEY, CREDENTIALS_NAME_KEY, DEBUG_MODE_KEY])
    credentials = stored.get(CREDENTIALS_KEY) or {}
    chat_key_configured = True
    try:
        await pipeline.resolver.resolve_chat_key()
    except CredentialsMissingError:
        chat_key_configured = False
    return SettingsResponse(
        model=config.model,
        context_model=config.context_model,
        context_enabled=config.context_enabled,
        target_language=config.target_language,
        debug_mode=bool(stored.get(DEBUG_MODE_KEY)),
        credentials_type=credentials.get("type") if isinstance(credentials, dict) else None,
        credentials_name=stored.get(CREDENTIALS_NAME_KEY),
        chat_key_configured=chat_key_configured,
    )


@router.post("/credentials")
async def set_credentials(
    request: CredentialsUpdateRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """Store an OCR credentials document (API key or service account)."""
    try:
        credentials = extract_credentials(request.document, token_uri=pipeline.resolver.token_uri)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    await pipeline.store.set(
        {
            CREDENTIALS_KEY: credentials.model_dump(),
            CREDENTIALS_NAME_KEY: request.file_name or "",
        }
    )
    pipeline.resolver.token_cache.clear()
    logger.info(f"credentials updated: type={credentials.type}")
    return {"type": credentials.type}


@router.post("/chat-key")
async def set_chat_key(
    request: ChatKeyUpdateRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    value = request.api_key.strip()
    await pipeline.store.set({CHAT_KEY_KEY: value})
    return {"configured": bool(value)}


@router.post("/model")
async def set_models(
    request: ModelUpdateRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    """Select translation and/or context models."""
    updates = {}
    if request.model and request.model.strip():
        updates[CHAT_MODEL_KEY] = request.model.strip()
    if request.context_model and request.context_model.strip():
        updates[CONTEXT_MODEL_KEY] = request.context_model.strip()
    if not updates:
        raise HTTPException(status_code=400, detail="Model name must not be empty")
    await pipeline.store.set(updates)
    return {"updated": sorted(updates)}


@router.post("/context")
async def set_context_enabled(
    request: ToggleRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    await pipeline.store.set({CONTEXT_ENABLED_KEY: request.enabled})
    return {"context_enabled": request.enabled}


@router.post("/language")
async def set_target_language(
    request: LanguageUpdateRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    value = request.target_language.strip()
    await pipeline.store.set({TARGET_LANGUAGE_KEY: value})
    return {"target_language": value}


@router.post("/debug")
async def set_debug_mode(
    request: ToggleRequest,
    pipeline: TranslationPipeline = Depends(get_pipeline),
):
    await pipeline.store.set({DEBUG_MODE_KEY: request.enabled})
    return {"debug_mode": request.enabled}
