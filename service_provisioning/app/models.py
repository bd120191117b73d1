"""
Data models for the Provisioning Service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionState(str, Enum):
    """Subscription lifecycle states in the management plane."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    SUBMITTED = "submitted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class KeyType(str, Enum):
    """Subscription key slots."""
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @classmethod
    def parse(cls, value: str) -> Optional["KeyType"]:
        """Accept both ``primary`` and the ``primary_key`` form used in URLs."""
        normalized = value.strip().lower()
        if normalized.endswith("_key"):
            normalized = normalized[:-len("_key")]
        try:
            return cls(normalized)
        except ValueError:
            return None


class ApiKeyType(str, Enum):
    """Subscription families distinguished by naming convention."""
    MANAGE = "MANAGE"


class Identity(BaseModel):
    """Verified claims of the authenticated caller."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., description="Stable subject id (oid claim)")
    emails: List[str] = Field(..., min_length=1, description="Email addresses, first is primary")
    given_name: str = Field("", description="Given name")
    family_name: str = Field("", description="Family name")
    organization: Optional[str] = Field(None, description="Organization attribute")
    department: Optional[str] = Field(None, description="Department attribute")
    service_name: Optional[str] = Field(None, description="Service attribute")

    @property
    def email(self) -> str:
        """Email used to look up the management-plane account."""
        return self.emails[0]

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.family_name}".strip()

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Identity":
        """Build an identity from an OIDC/JWT claim set."""
        emails = claims.get("emails")
        if not isinstance(emails, list):
            email = claims.get("email")
            emails = [email] if isinstance(email, str) else []

        return cls(
            subject=claims.get("oid") or claims.get("sub") or "",
            emails=[e for e in emails if isinstance(e, str) and e],
            given_name=claims.get("given_name") or "",
            family_name=claims.get("family_name") or "",
            organization=claims.get("extension_Organization"),
            department=claims.get("extension_Department"),
            service_name=claims.get("extension_Service"),
        )


@dataclass(frozen=True)
class Account:
    """Management-plane user record with its group membership."""
    id: str
    name: str
    email: str
    first_name: str = ""
    last_name: str = ""
    group_names: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class UserRecord:
    """Raw account as listed by the management plane, before group lookup."""
    id: Optional[str]
    name: Optional[str]
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    identities: List[Dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class Product:
    """API product subscriptions attach to."""
    id: str
    name: str
    display_name: Optional[str] = None


class Subscription(BaseModel):
    """Subscription granting a key pair on a product."""

    id: str
    name: str
    display_name: Optional[str] = None
    owner_id: Optional[str] = None
    product_id: Optional[str] = None
    primary_key: Optional[str] = None
    secondary_key: Optional[str] = None
    state: SubscriptionState = SubscriptionState.ACTIVE


class NewUser(BaseModel):
    """Account an admin wants created while subscribing it."""
    email: str
    adb2c_id: str
    first_name: str
    last_name: str


class SubscriptionRequest(BaseModel):
    """Body of a subscription creation request."""
    new_user: Optional[NewUser] = None
