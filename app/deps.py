"""
Dependency injection for FastAPI.

Provides shared resources and configuration across routes.
"""

from typing import Optional

from transhot.config import Settings, get_settings
from transhot.pipeline import TranslationPipeline, build_pipeline

__all__ = ["Settings", "get_settings", "get_pipeline", "reset_pipeline"]

# Global pipeline instance
_pipeline_instance: Optional[TranslationPipeline] = None


async def get_pipeline() -> TranslationPipeline:
    """Get the pipeline, loading its state from storage on first use."""
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = await build_pipeline(get_settings())
    return _pipeline_instance


def reset_pipeline() -> None:
    global _pipeline_instance
    if _pipeline_instance is not None:
        _pipeline_instance.state.close()
    _pipeline_instance = None
