"""
Provisioning operations exposed to the HTTP layer.

Every operation takes the management client and the verified identity of the
caller and returns a ``Result``; expected failures never raise.
"""

import asyncio
from typing import List, Optional

from shared.errors import ForbiddenError, InternalError, NotFoundError, ValidationError
from shared.logging import get_logger
from shared.result import Result, attempt
from .adapters.management_client import ManagementClient
from .adapters.notification_client import Logo, NotificationClient
from .identity.resolver import IdentityResolver
from .models import Account, ApiKeyType, Identity, KeyType, Subscription, SubscriptionRequest, UserRecord
from .onboarding.workflow import OnboardingWorkflow
from .policy.models import ORGANIZATION_FISCAL_CODE, Service, ServicePayload
from .policy.service_update import filter_service_update
from .subscriptions.keys import KeyRotator
from .subscriptions.provisioner import SubscriptionProvisioner


class ProvisioningOperations:
    """Account, subscription and service operations under the role policy."""

    def __init__(self, resolver: IdentityResolver, provisioner: SubscriptionProvisioner,
                 key_rotator: KeyRotator, workflow: OnboardingWorkflow,
                 notification_client: NotificationClient, product_name: str,
                 user_groups: List[str], logo_url: str = ""):
        self.resolver = resolver
        self.provisioner = provisioner
        self.key_rotator = key_rotator
        self.workflow = workflow
        self.notification_client = notification_client
        self.product_name = product_name
        self.user_groups = list(user_groups)
        self.logo_url = logo_url.rstrip("/")
        self.logger = get_logger("provisioning.operations")

    async def _caller(self, client: ManagementClient, identity: Identity) -> Result[Account]:
        return await self.resolver.resolve_acting_account(client, identity)

    def _owner_filter(self, account: Account) -> Optional[str]:
        """Owner id to check subscriptions against; admins see every subscription."""
        return None if self.resolver.is_admin(account) else account.id

    async def get_user(self, client: ManagementClient, identity: Identity,
                       on_behalf_of: Optional[str] = None) -> Result[Account]:
        return await self.resolver.resolve_acting_account(client, identity, on_behalf_of)

    async def list_users(self, client: ManagementClient, identity: Identity) -> Result[List[UserRecord]]:
        """Every management-plane account; admins only."""
        caller = await self._caller(client, identity)
        if caller.is_err:
            return Result.fail(caller.error)
        if not self.resolver.is_admin(caller.value):
            return Result.fail(ForbiddenError("Only administrators can list users"))
        return await attempt(client.list_users())

    async def get_subscriptions(self, client: ManagementClient, identity: Identity,
                                on_behalf_of: Optional[str] = None,
                                key_type: Optional[ApiKeyType] = None) -> Result[List[Subscription]]:
        account = await self.resolver.resolve_acting_account(client, identity, on_behalf_of)
        return await account.and_then_async(
            lambda acting: attempt(self.provisioner.list_subscriptions(client, acting, key_type))
        )

    async def create_subscription(self, client: ManagementClient, identity: Identity,
                                  request: Optional[SubscriptionRequest] = None,
                                  on_behalf_of: Optional[str] = None) -> Result[Subscription]:
        """Subscribe the acting account, onboarding it first if needed.

        An admin may pass ``new_user`` to create the account being subscribed
        when its email matches the acting email.
        """
        request = request or SubscriptionRequest()
        account = await self._subscribing_account(client, identity, request, on_behalf_of)
        if account.is_err:
            return Result.fail(account.error)
        acting = account.value

        onboarded = await attempt(self.provisioner.has_manage_subscription(client, acting))
        if onboarded.is_err:
            return Result.fail(onboarded.error)

        if not onboarded.value:
            self.logger.info("Onboarding account", account_id=acting.id)
            return await self.workflow.run(client, acting, identity)

        groups = await self.provisioner.assign_groups(client, acting, self.user_groups)
        if groups.is_err:
            return Result.fail(groups.error)
        return await self.provisioner.create_subscription(client, acting.id, self.product_name)

    async def _subscribing_account(self, client: ManagementClient, identity: Identity,
                                   request: SubscriptionRequest,
                                   on_behalf_of: Optional[str]) -> Result[Account]:
        caller = await attempt(self.resolver.resolve(client, identity.email))
        if caller.is_err:
            return Result.fail(caller.error)

        is_admin = caller.value is not None and self.resolver.is_admin(caller.value)
        email = on_behalf_of if (is_admin and on_behalf_of) else identity.email

        new_user = request.new_user
        if new_user is None or new_user.email != email:
            return await self.resolver.resolve_acting_account(client, identity, on_behalf_of)

        created = await attempt(self.resolver.create_account_if_not_exists(
            client,
            email=new_user.email,
            subject=new_user.adb2c_id,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
        ))
        if created.is_err:
            return Result.fail(created.error)
        if created.value is None:
            return Result.fail(ForbiddenError("Cannot create the requested account",
                                              details={"email": new_user.email}))
        return Result.ok(created.value)

    async def regenerate_key(self, client: ManagementClient, identity: Identity,
                             subscription_id: str, key_type: str) -> Result[Subscription]:
        parsed = KeyType.parse(key_type)
        if parsed is None:
            return Result.fail(ValidationError(
                "Key type must be one of primary_key or secondary_key",
                details={"key_type": key_type}
            ))

        caller = await self._caller(client, identity)
        if caller.is_err:
            return Result.fail(caller.error)
        owner_id = self._owner_filter(caller.value)

        existing = await attempt(self.provisioner.get_owned_subscription(client, subscription_id, owner_id))
        if existing.is_err:
            return Result.fail(existing.error)
        if existing.value is None:
            return Result.fail(NotFoundError(
                "Cannot find a subscription for the logged in user",
                details={"subscription_id": subscription_id}
            ))

        rotated = await attempt(self.key_rotator.rotate_key(client, subscription_id, owner_id, parsed))
        if rotated.is_err:
            return Result.fail(rotated.error)
        if rotated.value is None:
            return Result.fail(InternalError("Cannot update subscription to renew key"))
        return Result.ok(rotated.value)

    async def _check_service_access(self, client: ManagementClient, account: Account,
                                    service_id: str) -> Result[Subscription]:
        """A service is reachable through the subscription sharing its id."""
        owned = await attempt(self.provisioner.get_owned_subscription(
            client, service_id, self._owner_filter(account)
        ))
        if owned.is_err:
            return Result.fail(owned.error)
        if owned.value is None:
            return Result.fail(NotFoundError(
                "Cannot get a subscription for the logged in user",
                details={"service_id": service_id}
            ))
        return Result.ok(owned.value)

    async def get_service(self, client: ManagementClient, identity: Identity,
                          service_id: str) -> Result[Service]:
        caller = await self._caller(client, identity)
        if caller.is_err:
            return Result.fail(caller.error)

        access = await self._check_service_access(client, caller.value, service_id)
        if access.is_err:
            return Result.fail(access.error)
        return await attempt(self.notification_client.get_service(service_id))

    async def update_service(self, client: ManagementClient, identity: Identity,
                             service_id: str, payload: ServicePayload) -> Result[Service]:
        """Apply the permitted part of ``payload`` to the service."""
        caller, original = await asyncio.gather(
            self._caller(client, identity),
            attempt(self.notification_client.get_service(service_id)),
        )
        if caller.is_err:
            return Result.fail(caller.error)
        account = caller.value

        access = await self._check_service_access(client, account, service_id)
        if access.is_err:
            return Result.fail(access.error)
        if original.is_err:
            return Result.fail(original.error)

        updated = filter_service_update(self.resolver.is_admin(account), original.value, payload)
        self.logger.debug("Updating service", service_id=service_id, account_id=account.id)
        return await attempt(self.notification_client.update_service(service_id, updated))

    async def upload_service_logo(self, client: ManagementClient, identity: Identity,
                                  service_id: str, logo: Logo) -> Result[str]:
        """Replace the logo of a service the caller owns, or of any service for admins.

        Returns the public URL the logo is served from.
        """
        caller = await self._caller(client, identity)
        if caller.is_err:
            return Result.fail(caller.error)

        access = await self._check_service_access(client, caller.value, service_id)
        if access.is_err:
            return Result.fail(access.error)

        uploaded = await attempt(self.notification_client.upload_service_logo(service_id, logo))
        if uploaded.is_err:
            return Result.fail(uploaded.error)
        self.logger.info("Service logo uploaded", service_id=service_id, account_id=caller.value.id)
        return Result.ok(f"{self.logo_url}/services/{service_id}.png")

    async def upload_organization_logo(self, client: ManagementClient, identity: Identity,
                                       organization_fiscal_code: str, logo: Logo) -> Result[str]:
        """Replace an organization logo; admins only."""
        caller = await self._caller(client, identity)
        if caller.is_err:
            return Result.fail(caller.error)
        if not self.resolver.is_admin(caller.value):
            return Result.fail(ForbiddenError("Only administrators can upload organization logos"))
        if not ORGANIZATION_FISCAL_CODE.match(organization_fiscal_code):
            return Result.fail(ValidationError(
                "Organization fiscal code must be 11 digits",
                details={"organization_fiscal_code": organization_fiscal_code}
            ))

        uploaded = await attempt(self.notification_client.upload_organization_logo(organization_fiscal_code, logo))
        if uploaded.is_err:
            return Result.fail(uploaded.error)
        self.logger.info("Organization logo uploaded", organization_fiscal_code=organization_fiscal_code,
                         account_id=caller.value.id)
        return Result.ok(f"{self.logo_url}/organizations/{organization_fiscal_code}.png")
