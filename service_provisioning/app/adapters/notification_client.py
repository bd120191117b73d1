"""
Notification/profile API client.

Covers the administrative endpoints used during onboarding and service
management: development profiles, services, logos and messages.
"""

import base64
import binascii
from typing import Annotated, Any, Dict, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shared.errors import (
    ConflictError,
    ExternalServiceError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..policy.models import Service

M = TypeVar("M", bound=BaseModel)

SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"


class DevelopmentProfile(BaseModel):
    """Profile bound to a sandbox fiscal code."""

    model_config = ConfigDict(extra="allow")

    email: str = Field(..., min_length=3)
    version: int = 0


class MessageContent(BaseModel):
    subject: str = Field(..., min_length=10, max_length=120)
    markdown: str = Field(..., min_length=80, max_length=10000)


class NewMessage(BaseModel):
    content: MessageContent


class CreatedMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)


def _validate_base64(value: str) -> str:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("logo must be base64 encoded") from exc
    return value


class Logo(BaseModel):
    """Base64 encoded PNG image."""

    logo: Annotated[str, Field(min_length=1), AfterValidator(_validate_base64)]


def _validate_request(model: Type[M], payload: Any) -> M:
    """Revalidate an outgoing body so malformed requests never leave the process."""
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )


class NotificationClient:
    """HTTP client for the notification API admin surface.

    Every request carries the configured subscription key. Status codes map
    onto the shared error taxonomy: 404 to ``NotFoundError``, 409 to
    ``ConflictError``, everything else to ``ExternalServiceError``. A body
    that does not decode into the expected model is an ``InternalError``.
    """

    def __init__(self, base_url: str, api_key: str,
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.metrics = metrics
        self.logger = get_logger("provisioning.notification_client")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _send(self, method: str, path: str, operation: str,
                    json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = {SUBSCRIPTION_KEY_HEADER: self.api_key}
        url = f"{self.base_url}{path}"
        try:
            if self.metrics:
                with self.metrics.time_remote_call("notification", operation):
                    return await self._client.request(method, url, json=json, headers=headers)
            return await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            self.logger.error("Notification API HTTP error", operation=operation, error=str(e))
            raise ExternalServiceError(
                "notification",
                "Notification API unavailable",
                details={"operation": operation, "http_error": str(e)}
            )

    async def _call(self, method: str, path: str, operation: str, response_model: Optional[Type[M]],
                    json: Optional[Dict[str, Any]] = None) -> Optional[M]:
        """Send one request; with no ``response_model`` the body is not decoded."""
        response = await self._send(method, path, operation, json=json)

        if response.status_code == 404:
            raise NotFoundError(f"{operation}: resource not found", details={"path": path})
        if response.status_code == 409:
            raise ConflictError(f"{operation}: resource already exists", details={"path": path})
        if response.status_code >= 400:
            self.logger.warning(
                "Notification API call failed",
                operation=operation,
                status_code=response.status_code,
                response=response.text[:500]
            )
            raise ExternalServiceError(
                "notification",
                f"{operation} failed: {response.status_code}",
                details={"operation": operation, "status_code": response.status_code}
            )

        if response_model is None:
            return None
        try:
            return response_model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            self.logger.error("Cannot decode notification API response", operation=operation, error=str(e))
            raise InternalError(
                f"{operation}: unexpected response",
                details={"operation": operation}
            )

    async def create_or_update_profile(self, fiscal_code: str,
                                       profile: DevelopmentProfile) -> DevelopmentProfile:
        body = _validate_request(DevelopmentProfile, profile)
        return await self._call(
            "POST", f"/adm/development-profiles/{quote(fiscal_code)}",
            "create_or_update_profile", DevelopmentProfile,
            json=body.model_dump(mode="json"),
        )

    async def get_service(self, service_id: str) -> Service:
        return await self._call("GET", f"/adm/services/{quote(service_id)}", "get_service", Service)

    async def create_service(self, service: Service) -> Service:
        body = _validate_request(Service, service)
        return await self._call(
            "POST", "/adm/services", "create_service", Service,
            json=body.model_dump(mode="json", exclude_none=True),
        )

    async def update_service(self, service_id: str, service: Service) -> Service:
        body = _validate_request(Service, service)
        return await self._call(
            "PUT", f"/adm/services/{quote(service_id)}", "update_service", Service,
            json=body.model_dump(mode="json", exclude_none=True),
        )

    async def send_message(self, fiscal_code: str, message: NewMessage) -> CreatedMessage:
        body = _validate_request(NewMessage, message)
        return await self._call(
            "POST", f"/api/v1/messages/{quote(fiscal_code)}", "send_message", CreatedMessage,
            json=body.model_dump(mode="json"),
        )

    async def upload_service_logo(self, service_id: str, logo: Logo) -> None:
        body = _validate_request(Logo, logo)
        await self._call(
            "PUT", f"/adm/services/{quote(service_id)}/logo", "upload_service_logo", None,
            json=body.model_dump(mode="json"),
        )

    async def upload_organization_logo(self, organization_fiscal_code: str, logo: Logo) -> None:
        body = _validate_request(Logo, logo)
        await self._call(
            "PUT", f"/adm/organizations/{quote(organization_fiscal_code)}/logo", "upload_organization_logo", None,
            json=body.model_dump(mode="json"),
        )
