"""
Context generator.

Optional stage: asks a multimodal model to describe what the image is about
so the translation request can keep names, terminology and tone consistent.
"""

import logging
from typing import Optional

from .chat import ChatStage
from .errors import ContextGenerationError

logger = logging.getLogger(__name__)

CONTEXT_CATEGORIES = (
    "Text type and purpose",
    "Setting (place, time, world)",
    "Participants (who speaks or is addressed)",
    "Relationships between participants",
    "Plot or factual anchors",
    "Terminology",
    "Proper nouns and how to render them",
    "Tone and register",
    "Linguistic features (slang, dialect, wordplay)",
    "Formatting constraints (length, line breaks, layout)",
)


def build_context_prompt(extracted_text: str, target_language: str) -> str:
    categories = "\n".join(
        f"{index}. {name}" for index, name in enumerate(CONTEXT_CATEGORIES, start=1)
    )
    return (
        f"You prepare guidance for translating the text of this image into {target_language}.\n"
        "Study the image and the recognized text, then answer for each category below.\n"
        "Reply with one line per category in the form \"<number>. <category>: <answer>\".\n"
        "If the image gives no evidence for a category, answer \"not specified\".\n"
        "Do not invent facts, names or events that are not supported by the image or the text.\n"
        "Do not translate the text itself.\n\n"
        f"Categories:\n{categories}\n\n"
        f"Recognized text:\n{extracted_text.strip() or '(none)'}"
    )


class ContextGenerator(ChatStage):
    error_cls = ContextGenerationError

    async def generate_context(
        self,
        image_b64: str,
        extracted_text: str,
        target_language: str,
        api_key: str,
        model: str,
        mime_type: Optional[str] = None,
    ) -> str:
        data_url = f"data:{mime_type or 'image/png'};base64,{image_b64}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_context_prompt(extracted_text, target_language)},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]
        reply = await self._call_api(messages, model, api_key)
        logger.info(f"context: model={model} chars={len(reply)}")
        return reply
