"""
Unit tests for provisioning operations.
"""

import pytest

from shared.errors import ExternalServiceError, ForbiddenError, InternalError, NotFoundError, ValidationError
from service_provisioning.app.adapters import Logo
from service_provisioning.app.models import ApiKeyType, Identity, NewUser, SubscriptionRequest
from service_provisioning.app.onboarding import OnboardingWorkflow
from service_provisioning.app.operations import ProvisioningOperations
from service_provisioning.app.policy import ServiceMetadata, ServicePayload, ServiceScope

USER_GROUPS = ["apilimitedmessagewrite", "apiinforead"]


@pytest.fixture
def workflow(provisioner, notification_client):
    return OnboardingWorkflow(
        provisioner,
        notification_client,
        product_name="starter",
        user_groups=USER_GROUPS,
        portal_url="https://developer.example.com",
        fiscal_code_factory=lambda: "ABCDEF12A34Y567X",
    )


@pytest.fixture
def operations(resolver, provisioner, key_rotator, workflow, notification_client):
    return ProvisioningOperations(
        resolver,
        provisioner,
        key_rotator,
        workflow,
        notification_client,
        product_name="starter",
        user_groups=USER_GROUPS,
        logo_url="https://assets.example.com/logos/",
    )


class TestUsers:
    """Account operations."""

    @pytest.mark.asyncio
    async def test_get_user(self, operations, management_client, developer_identity):
        result = await operations.get_user(management_client, developer_identity)

        assert result.value.email == "dev@example.com"

    @pytest.mark.asyncio
    async def test_list_users_as_admin(self, operations, management_client, admin_identity):
        result = await operations.list_users(management_client, admin_identity)

        assert {user.name for user in result.value} == {"dev", "admin"}

    @pytest.mark.asyncio
    async def test_list_users_as_developer(self, operations, management_client, developer_identity):
        result = await operations.list_users(management_client, developer_identity)

        assert isinstance(result.error, ForbiddenError)


class TestSubscriptions:
    """Subscription operations."""

    @pytest.mark.asyncio
    async def test_first_subscription_runs_onboarding(self, operations, management_client,
                                                      notification_client, developer_identity):
        result = await operations.create_subscription(management_client, developer_identity)

        assert result.is_ok
        assert "MANAGE-dev" in management_client.subscriptions
        notification_client.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_onboarding_is_resumed(self, operations, management_client,
                                                notification_client, developer_identity):
        notification_client.send_message.side_effect = ExternalServiceError("notification", "down")

        first = await operations.create_subscription(management_client, developer_identity)

        assert isinstance(first.error, ExternalServiceError)
        assert "MANAGE-dev" not in management_client.subscriptions

        notification_client.send_message.reset_mock(side_effect=True)
        notification_client.create_service.reset_mock()

        retry = await operations.create_subscription(management_client, developer_identity)

        assert retry.is_ok
        assert "MANAGE-dev" in management_client.subscriptions
        notification_client.create_service.assert_awaited_once()
        notification_client.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_later_subscription_skips_onboarding(self, operations, management_client,
                                                       notification_client, developer_identity):
        management_client.add_subscription("MANAGE-dev", owner_id="/users/dev")

        result = await operations.create_subscription(management_client, developer_identity)

        assert result.is_ok
        assert result.value.owner_id == "/users/dev"
        assert result.value.product_id == "/products/p1"
        assert len(management_client.calls_to("create_or_update_subscription")) == 1
        assert management_client.groups["dev"] == ["developers"] + USER_GROUPS
        notification_client.create_or_update_profile.assert_not_awaited()
        notification_client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_caller_cannot_subscribe(self, operations, management_client):
        stranger = Identity(subject="oid-x", emails=["stranger@example.com"])

        result = await operations.create_subscription(management_client, stranger)

        assert isinstance(result.error, ForbiddenError)
        assert management_client.calls_to("create_or_update_subscription") == []

    @pytest.mark.asyncio
    async def test_admin_subscribes_new_user(self, operations, management_client, admin_identity):
        request = SubscriptionRequest(new_user=NewUser(
            email="new@example.com", adb2c_id="oid-new", first_name="New", last_name="User"
        ))

        result = await operations.create_subscription(
            management_client, admin_identity, request, on_behalf_of="new@example.com"
        )

        assert result.is_ok
        (_, user_id, email, subject), = management_client.calls_to("create_user")
        assert email == "new@example.com"
        assert subject == "oid-new"
        assert result.value.owner_id == f"/users/{user_id}"

    @pytest.mark.asyncio
    async def test_new_user_for_other_email_is_ignored(self, operations, management_client,
                                                       developer_identity):
        management_client.add_subscription("MANAGE-dev", owner_id="/users/dev")
        request = SubscriptionRequest(new_user=NewUser(
            email="other@example.com", adb2c_id="oid-o", first_name="O", last_name="T"
        ))

        result = await operations.create_subscription(management_client, developer_identity, request)

        assert result.value.owner_id == "/users/dev"
        assert management_client.calls_to("create_user") == []

    @pytest.mark.asyncio
    async def test_get_subscriptions(self, operations, management_client, developer_identity):
        management_client.add_subscription("MANAGE-dev", owner_id="/users/dev")
        management_client.add_subscription("s1", owner_id="/users/dev")
        management_client.add_subscription("s2", owner_id="/users/other")

        regular = await operations.get_subscriptions(management_client, developer_identity)
        manage = await operations.get_subscriptions(
            management_client, developer_identity, key_type=ApiKeyType.MANAGE
        )

        assert [s.name for s in regular.value] == ["s1"]
        assert [s.name for s in manage.value] == ["MANAGE-dev"]

    @pytest.mark.asyncio
    async def test_admin_lists_on_behalf_of(self, operations, management_client, admin_identity):
        management_client.add_subscription("s1", owner_id="/users/dev")

        result = await operations.get_subscriptions(
            management_client, admin_identity, on_behalf_of="dev@example.com"
        )

        assert [s.name for s in result.value] == ["s1"]


class TestRegenerateKey:
    """Key rotation through the operations surface."""

    @pytest.mark.asyncio
    async def test_regenerate_primary_key(self, operations, management_client, developer_identity):
        management_client.add_subscription("s1", owner_id="/users/dev")

        result = await operations.regenerate_key(management_client, developer_identity, "s1", "primary_key")

        assert result.value.primary_key != "pk-s1"

    @pytest.mark.asyncio
    async def test_invalid_key_type(self, operations, management_client, developer_identity):
        result = await operations.regenerate_key(management_client, developer_identity, "s1", "tertiary")

        assert isinstance(result.error, ValidationError)
        assert management_client.calls == []

    @pytest.mark.asyncio
    async def test_foreign_subscription(self, operations, management_client, developer_identity):
        management_client.add_subscription("s1", owner_id="/users/other")

        result = await operations.regenerate_key(management_client, developer_identity, "s1", "primary_key")

        assert isinstance(result.error, NotFoundError)
        assert management_client.calls_to("regenerate_primary_key") == []

    @pytest.mark.asyncio
    async def test_admin_rotates_any_subscription(self, operations, management_client, admin_identity):
        management_client.add_subscription("s1", owner_id="/users/dev")

        result = await operations.regenerate_key(management_client, admin_identity, "s1", "secondary_key")

        assert result.value.secondary_key != "sk-s1"

    @pytest.mark.asyncio
    async def test_rotation_failure(self, operations, management_client, developer_identity):
        management_client.add_subscription("s1", owner_id="/users/dev")
        management_client.failures["regenerate_primary_key"] = ExternalServiceError("management", "down")

        result = await operations.regenerate_key(management_client, developer_identity, "s1", "primary")

        assert isinstance(result.error, InternalError)


class TestServices:
    """Service operations."""

    @pytest.mark.asyncio
    async def test_get_owned_service(self, operations, management_client, notification_client,
                                     developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")

        result = await operations.get_service(management_client, developer_identity, "sub-1")

        assert result.value.service_id == "sub-1"
        notification_client.get_service.assert_awaited_once_with("sub-1")

    @pytest.mark.asyncio
    async def test_get_foreign_service(self, operations, management_client, notification_client,
                                       developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/other")

        result = await operations.get_service(management_client, developer_identity, "sub-1")

        assert isinstance(result.error, NotFoundError)
        notification_client.get_service.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_service(self, operations, management_client, notification_client,
                                   developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")
        notification_client.get_service.side_effect = NotFoundError("no service")

        result = await operations.get_service(management_client, developer_identity, "sub-1")

        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_developer_update_is_filtered(self, operations, management_client, notification_client,
                                                developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")
        payload = ServicePayload(service_name="Renamed", is_visible=True, max_allowed_payment_amount=999)

        result = await operations.update_service(management_client, developer_identity, "sub-1", payload)

        assert result.value.service_name == "Renamed"
        assert result.value.is_visible is False
        assert result.value.max_allowed_payment_amount == 0
        service_id, sent = notification_client.update_service.await_args.args
        assert service_id == "sub-1"
        assert sent.is_visible is False

    @pytest.mark.asyncio
    async def test_admin_update(self, operations, management_client, notification_client, admin_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")
        payload = ServicePayload(
            is_visible=True,
            service_metadata=ServiceMetadata(scope=ServiceScope.NATIONAL, token_name="token"),
        )

        result = await operations.update_service(management_client, admin_identity, "sub-1", payload)

        assert result.value.is_visible is True
        assert result.value.service_metadata.scope == ServiceScope.NATIONAL
        assert result.value.service_metadata.token_name == "token"

    @pytest.mark.asyncio
    async def test_update_foreign_service(self, operations, management_client, notification_client,
                                          developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/other")

        result = await operations.update_service(
            management_client, developer_identity, "sub-1", ServicePayload(service_name="x")
        )

        assert isinstance(result.error, NotFoundError)
        notification_client.update_service.assert_not_awaited()


class TestLogos:
    """Service and organization logo uploads."""

    LOGO = Logo(logo="iVBORw0KGgo=")

    @pytest.mark.asyncio
    async def test_owner_uploads_service_logo(self, operations, management_client, notification_client,
                                              developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")

        result = await operations.upload_service_logo(management_client, developer_identity, "sub-1", self.LOGO)

        assert result.value == "https://assets.example.com/logos/services/sub-1.png"
        notification_client.upload_service_logo.assert_awaited_once_with("sub-1", self.LOGO)

    @pytest.mark.asyncio
    async def test_foreign_service_logo_is_rejected(self, operations, management_client, notification_client,
                                                    developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/other")

        result = await operations.upload_service_logo(management_client, developer_identity, "sub-1", self.LOGO)

        assert isinstance(result.error, NotFoundError)
        notification_client.upload_service_logo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_uploads_any_service_logo(self, operations, management_client, notification_client,
                                                  admin_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")

        result = await operations.upload_service_logo(management_client, admin_identity, "sub-1", self.LOGO)

        assert result.is_ok

    @pytest.mark.asyncio
    async def test_service_logo_upload_failure(self, operations, management_client, notification_client,
                                               developer_identity):
        management_client.add_subscription("sub-1", owner_id="/users/dev")
        notification_client.upload_service_logo.side_effect = ExternalServiceError("notification", "down")

        result = await operations.upload_service_logo(management_client, developer_identity, "sub-1", self.LOGO)

        assert isinstance(result.error, ExternalServiceError)

    @pytest.mark.asyncio
    async def test_admin_uploads_organization_logo(self, operations, management_client, notification_client,
                                                   admin_identity):
        result = await operations.upload_organization_logo(
            management_client, admin_identity, "12345678901", self.LOGO
        )

        assert result.value == "https://assets.example.com/logos/organizations/12345678901.png"
        notification_client.upload_organization_logo.assert_awaited_once_with("12345678901", self.LOGO)

    @pytest.mark.asyncio
    async def test_developer_cannot_upload_organization_logo(self, operations, management_client,
                                                             notification_client, developer_identity):
        result = await operations.upload_organization_logo(
            management_client, developer_identity, "12345678901", self.LOGO
        )

        assert isinstance(result.error, ForbiddenError)
        notification_client.upload_organization_logo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_organization_fiscal_code(self, operations, management_client, notification_client,
                                                    admin_identity):
        result = await operations.upload_organization_logo(management_client, admin_identity, "123", self.LOGO)

        assert isinstance(result.error, ValidationError)
        notification_client.upload_organization_logo.assert_not_awaited()
