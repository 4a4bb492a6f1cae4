"""Bearer token lifecycle for the ezyVet API.

The TokenManager is the only owner of the Credential: callers ask for a valid
credential before every request and never cache the token themselves.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from app.infrastructure.ezyvet.config import EzyVetSettings, ezyvet_settings
from app.infrastructure.ezyvet.exceptions import AuthenticationFailure
from app.infrastructure.ezyvet.identifiers import AUTH_PATH
from app.schemas.vms import Credential

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

OAUTH_FIELDS = {
    "partner_id": "PARTNER_ID",
    "client_id": "CLIENT_ID",
    "client_secret": "CLIENT_SECRET",
    "grant_type": "GRANT_TYPE",
    "scope": "SCOPE",
}


class TokenManager:
    """Acquires and refreshes the ezyVet access token.

    Example:
        ```python
        async with httpx.AsyncClient(base_url=base_url) as http:
            tokens = TokenManager(http)
            credential = await tokens.ensure_valid_credential()
        ```
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: EzyVetSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the token manager.

        Args:
            http_client: Client whose base_url points at the ezyVet API.
            config: Connection settings. Defaults to environment settings.
            clock: Returns the current UTC time. Overridable in tests.
        """
        self._http = http_client
        self._config = config or ezyvet_settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Credential | None:
        return self._credential

    def has_valid_credential(self) -> bool:
        if self._credential is None:
            return False
        # Short-lived tokens: the margin never exceeds half the lifetime
        margin = min(
            self._config.EZYVET_TOKEN_REFRESH_MARGIN_SECONDS, self._credential.expires_in // 2
        )
        return self._credential.is_valid(self._clock(), margin)

    def invalidate(self) -> None:
        """Drop the held credential so the next call re-authenticates."""
        self._credential = None

    async def ensure_valid_credential(self) -> Credential:
        """Return the held credential, requesting a new one when missing or expired.

        Raises:
            AuthenticationFailure: configuration incomplete, endpoint unreachable,
                non-success status or unusable token response.
        """
        if self.has_valid_credential():
            return self._credential

        async with self._lock:
            # Another caller may have refreshed while we were waiting
            if self.has_valid_credential():
                return self._credential
            self._credential = await self._request_token()
            return self._credential

    def _auth_body(self) -> dict[str, str]:
        body: dict[str, str] = {}
        missing = []
        for field, env_name in OAUTH_FIELDS.items():
            value = getattr(self._config, env_name)
            if value is None or not str(value).strip():
                missing.append(env_name)
            else:
                body[field] = str(value)
        if missing:
            raise AuthenticationFailure(
                f"Missing ezyVet OAuth configuration: {', '.join(missing)}",
                {"missing": missing},
            )
        return body

    async def _request_token(self) -> Credential:
        with tracer.start_as_current_span("ezyvet_authenticate") as span:
            body = self._auth_body()
            issued_at = self._clock()

            try:
                response = await self._http.post(AUTH_PATH, json=body)
            except httpx.HTTPError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise AuthenticationFailure(f"ezyVet authorization endpoint unreachable: {e}") from e

            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                span.set_status(
                    trace.Status(trace.StatusCode.ERROR, f"status {response.status_code}")
                )
                raise AuthenticationFailure(
                    f"ezyVet authentication rejected with status {response.status_code}",
                    {"status_code": response.status_code},
                )

            try:
                payload = response.json()
                credential = Credential(
                    access_token=payload["access_token"],
                    issued_at=issued_at,
                    expires_in=payload.get("expires_in") or self._config.EZYVET_TOKEN_TTL_SECONDS,
                    token_type=payload.get("token_type") or "Bearer",
                )
            except (ValueError, KeyError, TypeError, ValidationError) as e:
                span.record_exception(e)
                raise AuthenticationFailure(f"Invalid ezyVet token response: {e}") from e

            span.set_attribute("ezyvet.token_expires_in", credential.expires_in)
            logger.info(
                f"Successfully authenticated with ezyVet "
                f"(token valid until {credential.expires_at.isoformat()})"
            )
            return credential
