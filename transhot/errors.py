"""Core business exceptions for pipeline stages."""

from typing import Optional

ERROR_DETAIL_LIMIT = 140


def truncate_detail(text: Optional[str], limit: int = ERROR_DETAIL_LIMIT) -> str:
    """Cap upstream error text so it stays readable in logs and API payloads."""
    raw = (text or "").strip()
    if len(raw) <= limit:
        return raw
    return raw[:limit] + "…"


class PipelineStageError(Exception):
    """Base exception with machine-readable code for stage failures."""

    def __init__(self, message: str, *, error_code: str):
        super().__init__(message)
        self.error_code = error_code


class UnsupportedElementError(PipelineStageError):
    """Raised when an element has no byte-extraction strategy (e.g. video)."""

    def __init__(self, tag: str):
        super().__init__(f"Unsupported element type: {tag}", error_code="unsupported_element")
        self.tag = tag


class FetchError(PipelineStageError):
    """Raised when image bytes cannot be retrieved by any strategy."""

    def __init__(self, message: str, *, url: str = ""):
        super().__init__(message, error_code="fetch_failed")
        self.url = url


class CredentialsMissingError(PipelineStageError):
    """Raised when no OCR or chat credentials are configured."""

    def __init__(self, message: str = "Credentials are not configured"):
        super().__init__(message, error_code="credentials_missing")


class InvalidCredentialsError(PipelineStageError):
    """Raised when a credentials document has neither an API key nor a service account."""

    def __init__(self, message: str = "Credentials document has no apiKey/key or service account fields"):
        super().__init__(message, error_code="credentials_invalid")


class UpstreamServiceError(PipelineStageError):
    """A remote service answered with a failure status."""

    def __init__(self, service: str, status: int, detail: str, *, error_code: str):
        self.status = status
        self.detail = truncate_detail(detail)
        super().__init__(f"{service} failed ({status}): {self.detail}", error_code=error_code)


class TokenExchangeError(UpstreamServiceError):
    def __init__(self, status: int, detail: str = ""):
        super().__init__("Token exchange", status, detail, error_code="token_exchange_failed")


class RecognitionError(UpstreamServiceError):
    def __init__(self, status: int, detail: str = ""):
        super().__init__("Text recognition", status, detail, error_code="recognition_failed")


class ContextGenerationError(UpstreamServiceError):
    def __init__(self, status: int, detail: str = ""):
        super().__init__("Context generation", status, detail, error_code="context_failed")


class TranslationError(UpstreamServiceError):
    def __init__(self, status: int, detail: str = ""):
        super().__init__("Translation", status, detail, error_code="translation_failed")


class StorageError(PipelineStageError):
    """Raised when the durable store cannot be written."""

    def __init__(self, message: str):
        super().__init__(message, error_code="storage_failed")
