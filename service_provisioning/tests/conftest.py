"""
Shared fixtures for provisioning service tests.
"""

from typing import Dict, Iterable, List, Optional

import pytest
from unittest.mock import AsyncMock

from shared.errors import ProvisioningError
from service_provisioning.app.adapters.notification_client import CreatedMessage, NotificationClient
from service_provisioning.app.caching import LookupCache
from service_provisioning.app.identity import IdentityResolver
from service_provisioning.app.models import (
    Identity,
    Product,
    Subscription,
    SubscriptionState,
    UserRecord,
)
from service_provisioning.app.policy.models import Service
from service_provisioning.app.subscriptions import KeyRotator, SubscriptionProvisioner


class FakeManagementClient:
    """In-memory management plane recording every call."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.groups: Dict[str, List[str]] = {}
        self.products: Dict[str, Product] = {
            "starter": Product(id="/products/p1", name="starter", display_name="Starter"),
        }
        self.subscriptions: Dict[str, Subscription] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, ProvisioningError] = {}
        self._key_version = 0

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation,) + args)
        if operation in self.failures:
            raise self.failures[operation]

    def calls_to(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def add_user(self, name: str, email: str, groups: Iterable[str] = (),
                 first_name: str = "", last_name: str = "") -> UserRecord:
        user = UserRecord(id=f"/users/{name}", name=name, email=email,
                          first_name=first_name, last_name=last_name)
        self.users[name] = user
        self.groups[name] = list(groups)
        return user

    def add_subscription(self, subscription_id: str, owner_id: str) -> Subscription:
        subscription = Subscription(
            id=f"/subscriptions/{subscription_id}",
            name=subscription_id,
            display_name=subscription_id,
            owner_id=owner_id,
            product_id="/products/p1",
            primary_key=f"pk-{subscription_id}",
            secondary_key=f"sk-{subscription_id}",
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def list_users(self, email: Optional[str] = None) -> List[UserRecord]:
        self._record("list_users", email)
        return [user for user in self.users.values() if email is None or user.email == email]

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        self._record("get_user", user_id)
        return self.users.get(user_id)

    async def create_user(self, user_id: str, email: str, first_name: str, last_name: str,
                          subject: str) -> UserRecord:
        self._record("create_user", user_id, email, subject)
        user = self.add_user(user_id, email, first_name=first_name, last_name=last_name)
        return user

    async def list_user_groups(self, user_name: str) -> List[str]:
        self._record("list_user_groups", user_name)
        return list(self.groups.get(user_name, []))

    async def add_user_to_group(self, group_name: str, user_name: str) -> None:
        self._record("add_user_to_group", group_name, user_name)
        self.groups.setdefault(user_name, []).append(group_name)

    async def get_product(self, product_name: str) -> Optional[Product]:
        self._record("get_product", product_name)
        return self.products.get(product_name)

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        self._record("get_subscription", subscription_id)
        return self.subscriptions.get(subscription_id)

    async def create_or_update_subscription(self, subscription_id: str, display_name: str,
                                            product_id: str, user_id: str,
                                            state: SubscriptionState) -> Subscription:
        self._record("create_or_update_subscription", subscription_id, product_id, user_id, state)
        subscription = Subscription(
            id=f"/subscriptions/{subscription_id}",
            name=subscription_id,
            display_name=display_name,
            owner_id=user_id,
            product_id=product_id,
            primary_key=f"pk-{subscription_id}",
            secondary_key=f"sk-{subscription_id}",
            state=state,
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def _regenerate(self, subscription_id: str, field: str) -> None:
        self._key_version += 1
        current = self.subscriptions[subscription_id]
        self.subscriptions[subscription_id] = current.model_copy(
            update={field: f"{field}-v{self._key_version}"}
        )

    async def regenerate_primary_key(self, subscription_id: str) -> None:
        self._record("regenerate_primary_key", subscription_id)
        await self._regenerate(subscription_id, "primary_key")

    async def regenerate_secondary_key(self, subscription_id: str) -> None:
        self._record("regenerate_secondary_key", subscription_id)
        await self._regenerate(subscription_id, "secondary_key")

    async def list_user_subscriptions(self, user_name: str,
                                      filter_expression: Optional[str] = None) -> List[Subscription]:
        self._record("list_user_subscriptions", user_name, filter_expression)
        owned = [s for s in self.subscriptions.values() if s.owner_id == f"/users/{user_name}"]
        if filter_expression is None:
            return owned
        manage = [s for s in owned if s.name.startswith("MANAGE-")]
        if filter_expression.startswith("not("):
            return [s for s in owned if s not in manage]
        return manage


@pytest.fixture
def management_client():
    """In-memory management plane with a developer and an admin account."""
    client = FakeManagementClient()
    client.add_user("dev", "dev@example.com", groups=["developers"], first_name="Ada", last_name="Lovelace")
    client.add_user("admin", "admin@example.com", groups=["ApiAdmin"], first_name="Grace", last_name="Hopper")
    return client


@pytest.fixture
def developer_identity():
    return Identity(
        subject="oid-dev",
        emails=["dev@example.com"],
        given_name="Ada",
        family_name="Lovelace",
        organization="Acme",
        department="Research",
        service_name="Engines",
    )


@pytest.fixture
def admin_identity():
    return Identity(subject="oid-admin", emails=["admin@example.com"], given_name="Grace", family_name="Hopper")


@pytest.fixture
def account_cache():
    return LookupCache("account", max_size=100, ttl_seconds=3600)


@pytest.fixture
def subscription_cache():
    return LookupCache("subscription", max_size=100, ttl_seconds=3600)


@pytest.fixture
def resolver(account_cache):
    return IdentityResolver(account_cache)


@pytest.fixture
def provisioner(subscription_cache):
    return SubscriptionProvisioner(subscription_cache)


@pytest.fixture
def key_rotator(provisioner):
    return KeyRotator(provisioner)


@pytest.fixture
def sample_service():
    return Service(
        service_id="sub-1",
        service_name="Engines",
        department_name="Research",
        organization_name="Acme",
        organization_fiscal_code="12345678901",
        authorized_recipients=["AAAAAA00A00Y000X"],
        authorized_cidrs=["10.0.0.0/24"],
    )


@pytest.fixture
def notification_client(sample_service):
    """Notification API mock answering every call successfully."""
    client = AsyncMock(spec=NotificationClient)
    client.create_or_update_profile.return_value = None
    client.create_service.side_effect = lambda service: service
    client.get_service.return_value = sample_service
    client.update_service.side_effect = lambda service_id, service: service
    client.send_message.return_value = CreatedMessage(id="msg-1")
    client.upload_service_logo.return_value = None
    client.upload_organization_logo.return_value = None
    return client
