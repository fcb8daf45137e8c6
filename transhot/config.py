"""
Service configuration.

Static settings come from the environment / .env (TRANSHOT_ prefix). Options a
user changes at runtime (model, context toggle, credentials) live in the
storage collaborator and are read per pipeline run through load_run_config().
"""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .storage import (
    CHAT_MODEL_KEY,
    CONTEXT_ENABLED_KEY,
    CONTEXT_MODEL_KEY,
    DEBUG_MODE_KEY,
    TARGET_LANGUAGE_KEY,
    KeyValueStore,
)

DEFAULT_CHAT_MODEL = "gpt-5-nano"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TRANSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials (explicit values win over the stored credentials document)
    vision_api_key: Optional[str] = None
    credentials_file: Optional[str] = None
    chat_api_key: Optional[str] = None

    # Remote services
    vision_endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    token_uri: str = "https://oauth2.googleapis.com/token"
    vision_scope: str = "https://www.googleapis.com/auth/cloud-vision"
    chat_base_url: Optional[str] = None
    http_timeout_sec: float = 30.0
    chat_timeout_sec: float = 120.0

    # Translation defaults
    chat_model: str = DEFAULT_CHAT_MODEL
    context_model: str = DEFAULT_CHAT_MODEL
    context_enabled: bool = False
    target_language: str = "Russian"

    # Storage
    storage_path: str = "./data/transhot_storage.json"
    export_dir: str = "./output/vision"
    export_results: bool = False

    # file: image sources over HTTP (the CLI always allows them)
    allow_file_urls: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class RunConfig(BaseModel):
    """Options in effect for a single pipeline run."""

    model: str = Field(default=DEFAULT_CHAT_MODEL, description="Translation model")
    context_model: str = Field(default=DEFAULT_CHAT_MODEL, description="Context model")
    context_enabled: bool = Field(default=False, description="Generate translation context")
    target_language: str = Field(default="Russian", description="Target language name")
    debug_mode: bool = Field(default=False, description="Attach stage diagnostics to outcomes")


def _non_empty_str(value, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


async def load_run_config(store: KeyValueStore, settings: Settings) -> RunConfig:
    stored = await store.get(
        [CHAT_MODEL_KEY, CONTEXT_MODEL_KEY, CONTEXT_ENABLED_KEY, TARGET_LANGUAGE_KEY, DEBUG_MODE_KEY]
    )
    context_enabled = stored.get(CONTEXT_ENABLED_KEY)
    return RunConfig(
        model=_non_empty_str(stored.get(CHAT_MODEL_KEY), settings.chat_model),
        context_model=_non_empty_str(stored.get(CONTEXT_MODEL_KEY), settings.context_model),
        context_enabled=(
            bool(context_enabled) if context_enabled is not None else settings.context_enabled
        ),
        target_language=_non_empty_str(stored.get(TARGET_LANGUAGE_KEY), settings.target_language),
        debug_mode=bool(stored.get(DEBUG_MODE_KEY)),
    )
