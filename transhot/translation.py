"""
Translation client.

All text blocks of one image go to the model in a single request. Segments
are numbered, quote-masked and joined with a private delimiter; the reply is
split back with the fallback chain in translation_parsing.
"""

import logging
import time
from typing import Optional

from .chat import ChatStage, format_log_text, get_log_config
from .errors import TranslationError
from .logging_config import get_log_level, setup_module_logger
from .models import TextBlock, TranslationEntry
from .translation_parsing import DELIMITER, QUOTE_SENTINEL, mask_quotes, recover_segments

logger = setup_module_logger(
    __name__,
    "translation/translation.log",
    level=get_log_level("TRANSLATION_LOG_LEVEL", logging.INFO),
    console_env="TRANSLATION_LOG_TO_STDOUT",
)


def build_system_prompt(target_language: str, count: int, context: Optional[str] = None) -> str:
    lines = [
        f"You are a professional translator. Translate every segment into {target_language}.",
        f"The input contains exactly {count} numbered segments separated by {DELIMITER}.",
        f"Return exactly {count} translated segments in the same order, separated by {DELIMITER}.",
        "Do not number the segments, do not add comments, explanations or any other prose.",
        f"Keep every {QUOTE_SENTINEL} token exactly where it belongs in the translation.",
        "If a segment cannot be translated, repeat it unchanged.",
    ]
    if context:
        lines.append("")
        lines.append("Translation context (use it for terminology, names and tone):")
        lines.append(context.strip())
    return "\n".join(lines)


def build_user_prompt(texts: list[str]) -> str:
    numbered = [f"{index}) {mask_quotes(text)}" for index, text in enumerate(texts, start=1)]
    return DELIMITER.join(numbered)


class TranslationClient(ChatStage):
    error_cls = TranslationError

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_sec: float = 120.0,
        target_language: str = "Russian",
    ):
        super().__init__(base_url=base_url, timeout_sec=timeout_sec)
        self.target_language = target_language
        self.last_parser: Optional[str] = None

    async def translate(
        self,
        blocks: list[TextBlock],
        api_key: str,
        model: str,
        context: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> list[TranslationEntry]:
        self.last_parser = None
        if not blocks:
            return []

        texts = [block.text for block in blocks]
        language = target_language or self.target_language
        messages = [
            {"role": "system", "content": build_system_prompt(language, len(texts), context)},
            {"role": "user", "content": build_user_prompt(texts)},
        ]

        log_mode, log_limit = get_log_config()
        start = time.perf_counter()
        reply = await self._call_api(messages, model, api_key)
        duration_ms = (time.perf_counter() - start) * 1000

        translations, parser_name = recover_segments(reply, len(texts))
        self.last_parser = parser_name
        logger.info(
            f"translate: ok model={model} ms={duration_ms:.0f} items={len(texts)} parser={parser_name}"
        )
        if len(texts) > 1 and parser_name is None:
            logger.warning(
                f"translate: reply did not split into {len(texts)} segments, "
                f"using it as the first segment and padding the rest"
            )
        log_output = format_log_text(reply, log_mode, log_limit)
        if log_output is not None:
            logger.info(f'translate: out="{log_output}"'.replace("\n", "\\n"))

        return [
            TranslationEntry(
                original_text=block.text,
                translated_text=translated,
                bounding_poly=list(block.polygon),
            )
            for block, translated in zip(blocks, translations)
        ]
