"""
Credential resolution for the OCR and chat services.

OCR auth resolves in this order:
1. explicit API key from settings (no network)
2. stored credentials document (API key or service account)
3. credentials file named in settings

Service accounts are exchanged for a bearer token with a signed RS256 JWT
assertion. Tokens stay in process memory only and are reused until 30 seconds
before they expire.
"""

import asyncio
import base64
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from pydantic import TypeAdapter, ValidationError

from .errors import (
    CredentialsMissingError,
    InvalidCredentialsError,
    TokenExchangeError,
    truncate_detail,
)
from .models import (
    ApiKeyCredentials,
    AuthToken,
    CachedToken,
    Credentials,
    ServiceAccount,
    ServiceAccountCredentials,
)
from .storage import CHAT_KEY_KEY, CREDENTIALS_KEY, KeyValueStore

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SEC = 3600
EXPIRY_MARGIN_SEC = 30
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

_credentials_adapter = TypeAdapter(Credentials)


def extract_credentials(document: Union[str, bytes, dict], token_uri: str = DEFAULT_TOKEN_URI):
    """Classify a credentials JSON document as an API key or a service account."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as exc:
            raise InvalidCredentialsError(f"Credentials file is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise InvalidCredentialsError()

    api_key = document.get("apiKey") or document.get("key")
    if isinstance(api_key, str) and api_key.strip():
        return ApiKeyCredentials(api_key=api_key.strip())

    private_key = document.get("private_key")
    client_email = document.get("client_email")
    if isinstance(private_key, str) and isinstance(client_email, str) and private_key and client_email:
        return ServiceAccountCredentials(
            service_account=ServiceAccount(
                client_email=client_email,
                private_key=private_key,
                token_uri=document.get("token_uri") or token_uri,
            )
        )

    raise InvalidCredentialsError()


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def build_assertion(account: ServiceAccount, scope: str, now: Optional[float] = None) -> str:
    """Build and sign the RS256 JWT used for the jwt-bearer grant."""
    issued_at = int(now if now is not None else time.time())
    header = {"alg": "RS256", "typ": "JWT"}
    claims = {
        "iss": account.client_email,
        "sub": account.client_email,
        "aud": account.token_uri,
        "scope": scope,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SEC,
    }
    signing_input = ".".join(
        _b64url(json.dumps(part, separators=(",", ":")).encode("utf-8"))
        for part in (header, claims)
    )

    pem = account.private_key.replace("\\n", "\n").encode("utf-8")
    try:
        private_key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        raise InvalidCredentialsError(f"Service account private key is unreadable: {exc}") from exc
    signature = private_key.sign(signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256())
    return f"{signing_input}.{_b64url(signature)}"


class TokenCache:
    """Bearer tokens keyed by service-account identity."""

    def __init__(self, margin_sec: float = EXPIRY_MARGIN_SEC):
        self.margin_sec = margin_sec
        self._tokens: dict[str, CachedToken] = {}

    def get(self, identity: str, now: float) -> Optional[CachedToken]:
        cached = self._tokens.get(identity)
        if cached is None:
            return None
        if now < cached.expires_at - self.margin_sec:
            return cached
        self._tokens.pop(identity, None)
        return None

    def put(self, identity: str, token: CachedToken) -> None:
        self._tokens[identity] = token

    def clear(self) -> None:
        self._tokens.clear()


class CredentialResolver:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        api_key: Optional[str] = None,
        credentials_file: Optional[str] = None,
        chat_api_key: Optional[str] = None,
        scope: str = "https://www.googleapis.com/auth/cloud-vision",
        token_uri: str = DEFAULT_TOKEN_URI,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_sec: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.api_key = (api_key or "").strip() or None
        self.credentials_file = credentials_file
        self.chat_api_key = (chat_api_key or "").strip() or None
        self.scope = scope
        self.token_uri = token_uri
        self.token_cache = TokenCache()
        self._http_client = http_client
        self._timeout_sec = timeout_sec
        self._clock = clock

    async def load_credentials(self):
        """Stored credentials document, then the configured file; None when neither exists."""
        stored = (await self.store.get(CREDENTIALS_KEY)).get(CREDENTIALS_KEY)
        if stored:
            try:
                return _credentials_adapter.validate_python(stored)
            except ValidationError:
                # Raw documents saved by older clients
                return extract_credentials(stored, token_uri=self.token_uri)

        if self.credentials_file:
            path = Path(self.credentials_file).expanduser()
            if path.exists():
                loop = asyncio.get_running_loop()
                text = await loop.run_in_executor(None, path.read_text, "utf-8")
                return extract_credentials(text, token_uri=self.token_uri)
            logger.warning(f"Credentials file not found: {path}")
        return None

    async def resolve_auth(self) -> AuthToken:
        if self.api_key:
            return AuthToken(kind="apiKey", value=self.api_key)

        credentials = await self.load_credentials()
        if credentials is None:
            raise CredentialsMissingError("OCR credentials are not configured")
        if isinstance(credentials, ApiKeyCredentials):
            return AuthToken(kind="apiKey", value=credentials.api_key)

        account = credentials.service_account
        now = self._clock()
        cached = self.token_cache.get(account.client_email, now)
        if cached is not None:
            return AuthToken(kind="bearer", value=cached.token)

        token = await self.exchange_token(account)
        self.token_cache.put(account.client_email, token)
        return AuthToken(kind="bearer", value=token.token)

    async def resolve_chat_key(self) -> str:
        if self.chat_api_key:
            return self.chat_api_key
        stored = (await self.store.get(CHAT_KEY_KEY)).get(CHAT_KEY_KEY)
        if isinstance(stored, str) and stored.strip():
            return stored.strip()
        raise CredentialsMissingError("Chat API key is not configured")

    async def exchange_token(self, account: ServiceAccount) -> CachedToken:
        now = self._clock()
        loop = asyncio.get_running_loop()
        assertion = await loop.run_in_executor(None, build_assertion, account, self.scope, now)
        form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(account.token_uri, data=form)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
                    response = await client.post(account.token_uri, data=form)
        except httpx.HTTPError as exc:
            raise TokenExchangeError(0, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise TokenExchangeError(response.status_code, response.text)

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as exc:
            raise TokenExchangeError(response.status_code, truncate_detail(response.text)) from exc
        access_token = payload.get("access_token")
        if not access_token:
            raise TokenExchangeError(response.status_code, "Token response has no access_token")

        expires_in = float(payload.get("expires_in") or ASSERTION_LIFETIME_SEC)
        logger.info(f"credentials: token exchanged for {account.client_email}, expires_in={expires_in:.0f}s")
        return CachedToken(token=access_token, expires_at=now + expires_in)
