"""
Chat-completions plumbing shared by the translation and context stages.

Uses the OpenAI SDK (any OpenAI-compatible base URL). SDK retries are
disabled so a failure surfaces once with its real status; calls run in the
default executor so the event loop stays responsive.
"""

import asyncio
import hashlib
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from openai import APIConnectionError, APIStatusError, OpenAI, OpenAIError

from .errors import UpstreamServiceError, truncate_detail

load_dotenv()

logger = logging.getLogger(__name__)


def format_log_text(text: Optional[str], mode: str, limit: int) -> Optional[str]:
    """Render text for logs according to mode: off | full | hash | snippet."""
    if text is None:
        return ""
    mode = (mode or "off").strip().lower()
    if mode == "off":
        return None
    raw = str(text)
    if mode == "full":
        return raw
    if mode == "hash":
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
        return f"sha256:{digest} len={len(raw)}"
    if mode == "snippet":
        if limit <= 0:
            return ""
        if len(raw) <= limit * 2:
            return raw
        return f"{raw[:limit]}...{raw[-limit:]}"
    return None


def get_log_config() -> tuple[str, int]:
    mode = (os.getenv("TRANSLATION_LOG_MODE") or "off").strip().lower()
    raw_limit = os.getenv("TRANSLATION_LOG_SNIPPET_CHARS", "")
    try:
        limit = int(raw_limit) if raw_limit else 120
    except ValueError:
        limit = 120
    return mode, limit


class ChatStage:
    """Base for pipeline stages that make one chat-completion call."""

    error_cls: type[UpstreamServiceError] = UpstreamServiceError

    def __init__(self, base_url: Optional[str] = None, timeout_sec: float = 120.0):
        self.base_url = base_url
        self.timeout_sec = timeout_sec
        self._clients: dict[str, OpenAI] = {}

    def _client_for(self, api_key: str) -> OpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = OpenAI(
                api_key=api_key,
                base_url=self.base_url,
                max_retries=0,
                timeout=self.timeout_sec,
            )
            self._clients[api_key] = client
        return client

    def _raise(self, status: int, detail: str):
        if self.error_cls is UpstreamServiceError:
            raise UpstreamServiceError("Chat", status, detail, error_code="chat_failed")
        raise self.error_cls(status, detail)

    async def _call_api(self, messages: list[dict], model: str, api_key: str) -> str:
        """Send one chat completion and return the reply text ('' when the model said nothing)."""
        client = self._client_for(api_key)

        def call_openai() -> str:
            response = client.chat.completions.create(model=model, messages=messages, stream=False)
            if not response.choices:
                return ""
            return (response.choices[0].message.content or "").strip()

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, call_openai)
        except APIStatusError as exc:
            body = ""
            try:
                body = exc.response.text
            except Exception:  # noqa: BLE001
                body = str(exc)
            logger.error(f"chat: HTTP {exc.status_code} model={model} {truncate_detail(body)}")
            self._raise(exc.status_code, _error_message(exc) or body)
        except APIConnectionError as exc:
            logger.error(f"chat: connection error model={model}: {exc}")
            self._raise(0, str(exc))
        except OpenAIError as exc:
            logger.error(f"chat: {type(exc).__name__} model={model}: {exc}")
            self._raise(0, f"{type(exc).__name__}: {exc}")


def _error_message(exc: APIStatusError) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return ""
