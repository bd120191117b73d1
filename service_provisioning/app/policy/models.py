"""
Service record models shared by the notification API and the update policy.
"""

import ipaddress
import re
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

ORGANIZATION_FISCAL_CODE = re.compile(r"^[0-9]{11}$")


def _validate_cidr(value: str) -> str:
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR: {value}") from exc
    return value


def _validate_organization_fiscal_code(value: str) -> str:
    if not ORGANIZATION_FISCAL_CODE.match(value):
        raise ValueError("organization fiscal code must be 11 digits")
    return value


CIDR = Annotated[str, AfterValidator(_validate_cidr)]
OrganizationFiscalCode = Annotated[str, AfterValidator(_validate_organization_fiscal_code)]
NonEmptyString = Annotated[str, Field(min_length=1)]


class ServiceScope(str, Enum):
    NATIONAL = "NATIONAL"
    LOCAL = "LOCAL"


class ServiceCategory(str, Enum):
    STANDARD = "STANDARD"
    SPECIAL = "SPECIAL"


class ServiceMetadata(BaseModel):
    """Descriptive metadata of a service."""

    scope: ServiceScope = ServiceScope.LOCAL
    description: Optional[str] = None
    web_url: Optional[str] = None
    app_ios: Optional[str] = None
    app_android: Optional[str] = None
    tos_url: Optional[str] = None
    privacy_url: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    pec: Optional[str] = None
    cta: Optional[str] = None
    support_url: Optional[str] = None
    token_name: Optional[str] = None
    category: Optional[ServiceCategory] = None
    custom_special_flow: Optional[str] = None


class Service(BaseModel):
    """Service record held by the notification API."""

    service_id: NonEmptyString
    service_name: NonEmptyString
    department_name: NonEmptyString
    organization_name: NonEmptyString
    organization_fiscal_code: OrganizationFiscalCode
    authorized_recipients: List[str] = Field(default_factory=list)
    authorized_cidrs: List[CIDR] = Field(default_factory=list)
    is_visible: bool = False
    max_allowed_payment_amount: int = 0
    require_secure_channels: bool = False
    version: Optional[int] = None
    service_metadata: Optional[ServiceMetadata] = None


class ServicePayload(BaseModel):
    """Partial update of a service: only fields present in the request apply."""

    model_config = ConfigDict(extra="ignore")

    service_name: Optional[NonEmptyString] = None
    department_name: Optional[NonEmptyString] = None
    organization_name: Optional[NonEmptyString] = None
    organization_fiscal_code: Optional[OrganizationFiscalCode] = None
    authorized_cidrs: Optional[List[CIDR]] = None
    authorized_recipients: Optional[List[str]] = None
    is_visible: Optional[bool] = None
    max_allowed_payment_amount: Optional[int] = None
    require_secure_channels: Optional[bool] = None
    service_metadata: Optional[ServiceMetadata] = None
