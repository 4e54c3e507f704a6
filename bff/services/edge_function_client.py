"""
Signed HTTP client for Supabase Edge Functions.
Builds authenticated, optionally HMAC-signed requests and sends them over a
shared httpx.AsyncClient.

Transport failures (connect errors, timeouts) are raised as httpx exceptions
and non-2xx responses are returned as-is; classifying them is the calling
service's job.
"""

import hashlib
import hmac
import json
from typing import Any

import httpx

from bff.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30.0  # seconds
SIGNATURE_HEADER = "x-internal-signature"
IDEMPOTENCY_HEADER = "idempotency-key"
TENANT_HEADER = "x-tenant-id"

_unsigned_warning_emitted = False


def create_http_client(
    timeout: float = REQUEST_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Create the shared async HTTP client used for all edge function calls."""
    limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout), limits=limits, transport=transport)


def serialize_body(payload: Any) -> bytes:
    """Serialize a JSON body. The returned bytes are exactly what gets signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class SignedRequestClient:
    """
    Client for one edge function base URL.

    Attaches Authorization, x-tenant-id, Content-Type and (optionally)
    idempotency-key headers. When a signing secret is configured, every
    request that carries a body gets an x-internal-signature header; without
    a secret the header is omitted entirely.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        signing_secret: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        api_key: str | None = None,
        user_agent: str = "OnboardingService/1.0",
    ):
        self._client = http_client
        self.base_url = base_url.rstrip("/")
        self._secret = signing_secret or None
        self.timeout = timeout
        self._api_key = api_key
        self._user_agent = user_agent

        if not self._secret:
            _warn_unsigned_once(self.base_url)

    @property
    def signing_enabled(self) -> bool:
        return self._secret is not None

    def build_headers(
        self,
        auth_token: str,
        tenant_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, str]:
        """Standard headers for an edge function request."""
        headers = {
            "Authorization": auth_token if auth_token.startswith("Bearer ") else f"Bearer {auth_token}",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        if tenant_id:
            headers[TENANT_HEADER] = tenant_id
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        if self._api_key:
            headers["apikey"] = self._api_key
        return headers

    async def request(
        self,
        method: str,
        path: str,
        auth_token: str,
        tenant_id: str | None = None,
        *,
        json_body: Any = None,
        idempotency_key: str | None = None,
    ) -> httpx.Response:
        """
        Send a request to ``base_url + path``.

        Raises:
            httpx.TimeoutException: the call exceeded the timeout
            httpx.TransportError: the backend could not be reached
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self.build_headers(auth_token, tenant_id, idempotency_key)

        content = None
        if json_body is not None:
            content = serialize_body(json_body)
            if self._secret:
                headers[SIGNATURE_HEADER] = compute_signature(self._secret, content)

        logger.debug(
            "Edge function request",
            method=method,
            url=url,
            tenant_id=tenant_id,
            signed=SIGNATURE_HEADER in headers,
            has_idempotency_key=idempotency_key is not None,
        )

        response = await self._client.request(
            method,
            url,
            content=content,
            headers=headers,
            timeout=self.timeout,
        )

        logger.debug(
            "Edge function response",
            method=method,
            url=url,
            status_code=response.status_code,
        )
        return response


def _warn_unsigned_once(base_url: str) -> None:
    global _unsigned_warning_emitted
    if _unsigned_warning_emitted:
        return
    _unsigned_warning_emitted = True
    logger.warning(
        "INTERNAL_SIGNING_SECRET not configured - edge function requests will not be signed",
        base_url=base_url,
    )
