"""
Management plane credentials: login exchanges and the credential cache.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from shared.config import BaseConfig
from shared.errors import ExternalServiceError, InternalError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

MSI_API_VERSION = "2017-09-01"
DEFAULT_RESOURCE = "https://management.azure.com/"


@dataclass(frozen=True)
class TokenResponse:
    """Access token returned by a login exchange."""
    access_token: str
    token_type: str = "Bearer"


@dataclass(frozen=True)
class Credential:
    """Access token plus the absolute instant it stops being usable."""
    access_token: str
    token_type: str
    expires_at: float

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


LoginExchange = Callable[[], Awaitable[TokenResponse]]


def _decode_token_response(response: httpx.Response) -> TokenResponse:
    try:
        payload = response.json()
    except ValueError as e:
        raise InternalError("Invalid token response, body is not JSON", details={"error": str(e)})
    return _parse_token_response(payload)


def _parse_token_response(payload: Any) -> TokenResponse:
    if not isinstance(payload, dict):
        raise InternalError("Invalid token response, expected a JSON object")
    if not payload.get("token_type"):
        raise InternalError(
            "Invalid token response, did not find token_type",
            details={"response": payload}
        )
    if not payload.get("access_token"):
        raise InternalError("Invalid token response, did not find access_token")
    return TokenResponse(access_token=payload["access_token"], token_type=payload["token_type"])


class MsiLogin:
    """Login exchange against the App Service managed identity endpoint."""

    def __init__(self, endpoint: str, secret: str, resource: str = DEFAULT_RESOURCE,
                 http_client: Optional[httpx.AsyncClient] = None):
        if not endpoint:
            raise ValueError("MSI endpoint must be set")
        if not secret:
            raise ValueError("MSI secret must be set")
        self.endpoint = endpoint
        self.secret = secret
        self.resource = resource
        self.logger = get_logger("provisioning.credentials.msi")
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    async def __call__(self) -> TokenResponse:
        try:
            response = await self._client.get(
                self.endpoint,
                params={"resource": self.resource, "api-version": MSI_API_VERSION},
                headers={"Secret": self.secret},
            )
        except httpx.HTTPError as e:
            self.logger.error("MSI token request failed", error=str(e))
            raise ExternalServiceError("msi", "Token endpoint unavailable", details={"http_error": str(e)})

        if response.status_code != 200:
            raise ExternalServiceError(
                "msi",
                f"Token endpoint error: {response.status_code}",
                details={"status_code": response.status_code}
            )
        return _decode_token_response(response)


class ServicePrincipalLogin:
    """OAuth2 client-credentials login for a service principal."""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str,
                 authority_url: str = "https://login.microsoftonline.com",
                 resource: str = DEFAULT_RESOURCE,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.token_url = f"{authority_url.rstrip('/')}/{tenant_id}/oauth2/token"
        self.client_id = client_id
        self.client_secret = client_secret
        self.resource = resource
        self.logger = get_logger("provisioning.credentials.service_principal")
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    async def __call__(self) -> TokenResponse:
        try:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "resource": self.resource,
                },
            )
        except httpx.HTTPError as e:
            self.logger.error("Service principal login failed", error=str(e))
            raise ExternalServiceError("aad", "Token endpoint unavailable", details={"http_error": str(e)})

        if response.status_code != 200:
            raise ExternalServiceError(
                "aad",
                f"Token endpoint error: {response.status_code}",
                details={"status_code": response.status_code}
            )
        return _decode_token_response(response)


class CredentialCache:
    """Holds the last management plane credential and refreshes it lazily.

    The expiry is always ``login time + ttl``: the expiry claim embedded in
    the returned token is not trusted. There is no lock, so callers racing
    on an expired credential may each perform a login; the exchange is
    idempotent and the last writer wins.
    """

    def __init__(self, login: LoginExchange, ttl_seconds: float = 3600.0,
                 refresh_margin_seconds: float = 60.0,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self._login = login
        self.ttl_seconds = ttl_seconds
        self.refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._metrics = metrics
        self._credential: Optional[Credential] = None
        self.logger = get_logger("provisioning.credentials")

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def seed(self, credential: Credential) -> None:
        """Install a credential obtained elsewhere."""
        self._credential = credential

    def _is_expired(self, credential: Credential, now: float) -> bool:
        return credential.expires_at - self.refresh_margin_seconds <= now

    async def get_credential(self) -> Credential:
        """Return a usable credential, logging in first if needed."""
        now = self._clock()
        current = self._credential
        if current is not None and not self._is_expired(current, now):
            return current

        self.logger.debug(
            "Logging in to management plane",
            expired=current is not None,
        )
        try:
            token = await self._login()
        except Exception:
            if self._metrics:
                self._metrics.increment_counter("credential_refresh_total", status="error")
            raise

        credential = Credential(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._credential = credential
        if self._metrics:
            self._metrics.increment_counter("credential_refresh_total", status="success")
        return credential


def build_login(config: BaseConfig, http_client: Optional[httpx.AsyncClient] = None) -> LoginExchange:
    """Pick the login exchange configured for this deployment."""
    if config.use_service_principal:
        return ServicePrincipalLogin(
            tenant_id=config.service_principal_tenant_id or "",
            client_id=config.service_principal_client_id or "",
            client_secret=config.service_principal_secret or "",
            authority_url=config.login_authority_url,
            http_client=http_client,
        )
    return MsiLogin(
        endpoint=config.msi_endpoint or "",
        secret=config.msi_secret or "",
        http_client=http_client,
    )
