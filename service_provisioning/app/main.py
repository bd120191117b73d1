"""
Provisioning service: binds verified identities to management-plane accounts
and manages their subscriptions and services.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.metrics import MetricsCollector
from shared.result import Result
from .adapters.management_client import ArmManagementClient, ManagementClient
from .adapters.notification_client import Logo, NotificationClient
from .caching import LookupCache
from .credentials import CredentialCache, build_login
from .identity.resolver import IdentityResolver
from .models import Account, ApiKeyType, Identity, Subscription, SubscriptionRequest, UserRecord
from .onboarding.workflow import OnboardingWorkflow, generate_fake_fiscal_code
from .operations import ProvisioningOperations
from .policy.models import Service, ServicePayload
from .subscriptions.keys import KeyRotator
from .subscriptions.provisioner import SubscriptionProvisioner

IdentityProvider = Callable[[Request], Awaitable[Identity]]


async def claims_identity_provider(request: Request) -> Identity:
    """Read the claims an upstream authenticator placed on the request."""
    claims = getattr(request.state, "identity_claims", None)
    if not claims:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return Identity.from_claims(claims)
    except PydanticValidationError:
        raise HTTPException(status_code=401, detail="Incomplete identity claims")


def account_view(account: Account, is_admin: bool) -> Dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "email": account.email,
        "first_name": account.first_name,
        "last_name": account.last_name,
        "groups": sorted(account.group_names),
        "is_admin": is_admin,
    }


class ProvisioningService(BaseService):
    """Provisioning service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 management_client: Optional[ManagementClient] = None,
                 notification_client: Optional[NotificationClient] = None,
                 identity_provider: Optional[IdentityProvider] = None,
                 metrics: Optional[MetricsCollector] = None):
        super().__init__("provisioning", 8080, config=config, metrics=metrics)

        self.management_client = management_client or self._build_management_client()
        self.notification_client = notification_client or NotificationClient(
            self.config.admin_api_url,
            self.config.admin_api_key,
            timeout=self.config.http_timeout,
            metrics=self.metrics,
        )
        self.identity_provider = identity_provider or claims_identity_provider

        self.account_cache: LookupCache[Account] = self._build_cache("account")
        self.subscription_cache: LookupCache[Subscription] = self._build_cache("subscription")

        self.resolver = IdentityResolver(self.account_cache, admin_group=self.config.admin_group)
        self.provisioner = SubscriptionProvisioner(self.subscription_cache)
        self.workflow = OnboardingWorkflow(
            self.provisioner,
            self.notification_client,
            product_name=self.config.apim_product_name,
            user_groups=self.config.user_groups,
            portal_url=self.config.portal_url,
            metrics=self.metrics,
            fiscal_code_factory=self._fiscal_code_factory(),
        )
        self.operations = ProvisioningOperations(
            self.resolver,
            self.provisioner,
            KeyRotator(self.provisioner),
            self.workflow,
            self.notification_client,
            product_name=self.config.apim_product_name,
            user_groups=self.config.user_groups,
            logo_url=self.config.logo_url,
        )

        self._stats_task: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            self._stats_task = asyncio.create_task(self._log_cache_stats())

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._stats_task:
                self._stats_task.cancel()
            if isinstance(self.management_client, ArmManagementClient):
                await self.management_client.close()
            await self.notification_client.close()

        self._setup_provisioning_routes()
        self.app.state.provisioning_service = self

    def _build_cache(self, name: str) -> LookupCache:
        return LookupCache(
            name,
            max_size=self.config.lookup_cache_size,
            ttl_seconds=self.config.lookup_cache_ttl_seconds,
            metrics=self.metrics,
        )

    def _build_management_client(self) -> ArmManagementClient:
        credentials = CredentialCache(
            build_login(self.config),
            ttl_seconds=self.config.credential_ttl_seconds,
            refresh_margin_seconds=self.config.credential_refresh_margin_seconds,
            metrics=self.metrics,
        )
        return ArmManagementClient(
            management_url=self.config.management_url,
            arm_subscription_id=self.config.arm_subscription_id,
            resource_group=self.config.arm_resource_group,
            service_name=self.config.arm_apim,
            credentials=credentials,
            api_version=self.config.arm_api_version,
            timeout=self.config.http_timeout,
            metrics=self.metrics,
        )

    def _fiscal_code_factory(self) -> Callable[[], str]:
        fixed = self.config.sandbox_fiscal_code
        if fixed:
            return lambda: fixed
        return generate_fake_fiscal_code

    async def _log_cache_stats(self) -> None:
        """Periodically log lookup cache statistics."""
        while True:
            await asyncio.sleep(self.config.cache_stats_interval_seconds)
            for cache in (self.account_cache, self.subscription_cache):
                self.logger.info("Lookup cache stats", **cache.stats())

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "account_cache": f"{len(self.account_cache)}/{self.account_cache.max_size}",
            "subscription_cache": f"{len(self.subscription_cache)}/{self.subscription_cache.max_size}",
        }

    def _setup_provisioning_routes(self):
        """Set up provisioning routes."""

        async def current_identity(request: Request) -> Identity:
            return await self.identity_provider(request)

        client = self.management_client
        ops = self.operations

        def unwrap(result: Result) -> Any:
            # errors are rendered by the ProvisioningError handler
            return result.unwrap()

        @self.app.get("/user")
        async def get_user(identity: Identity = Depends(current_identity),
                           email: Optional[str] = Query(None)):
            """Account of the caller, or of ``email`` when the caller is an admin."""
            account = unwrap(await ops.get_user(client, identity, on_behalf_of=email))
            return {
                "authenticated": {
                    "subject": identity.subject,
                    "email": identity.email,
                    "given_name": identity.given_name,
                    "family_name": identity.family_name,
                },
                "account": account_view(account, self.resolver.is_admin(account)),
            }

        @self.app.get("/users")
        async def list_users(identity: Identity = Depends(current_identity)):
            """All management-plane accounts; admins only."""
            users: List[UserRecord] = unwrap(await ops.list_users(client, identity))
            return {
                "items": [
                    {
                        "id": user.id,
                        "name": user.name,
                        "email": user.email,
                        "first_name": user.first_name,
                        "last_name": user.last_name,
                    }
                    for user in users
                ],
                "length": len(users),
            }

        @self.app.get("/subscriptions")
        async def get_subscriptions(identity: Identity = Depends(current_identity),
                                    email: Optional[str] = Query(None),
                                    key_type: Optional[ApiKeyType] = Query(None)):
            """Subscriptions of the acting account."""
            subscriptions = unwrap(await ops.get_subscriptions(
                client, identity, on_behalf_of=email, key_type=key_type
            ))
            return {"items": subscriptions, "length": len(subscriptions)}

        @self.app.post("/subscriptions", response_model=Subscription)
        async def create_subscription(identity: Identity = Depends(current_identity),
                                      email: Optional[str] = Query(None),
                                      request: Optional[SubscriptionRequest] = Body(None)):
            """Subscribe the acting account to the configured product."""
            return unwrap(await ops.create_subscription(client, identity, request, on_behalf_of=email))

        @self.app.put("/subscriptions/{subscription_id}/{key_type}", response_model=Subscription)
        async def regenerate_key(subscription_id: str, key_type: str,
                                 identity: Identity = Depends(current_identity)):
            """Regenerate the primary or secondary key of a subscription."""
            return unwrap(await ops.regenerate_key(client, identity, subscription_id, key_type))

        @self.app.get("/services/{service_id}", response_model=Service, response_model_exclude_none=True)
        async def get_service(service_id: str, identity: Identity = Depends(current_identity)):
            """Service record tied to one of the caller's subscriptions."""
            return unwrap(await ops.get_service(client, identity, service_id))

        @self.app.put("/services/{service_id}", response_model=Service, response_model_exclude_none=True)
        async def update_service(service_id: str, payload: ServicePayload,
                                 identity: Identity = Depends(current_identity)):
            """Update a service; fields outside the caller's role are ignored."""
            return unwrap(await ops.update_service(client, identity, service_id, payload))

        def created_at(location: str) -> JSONResponse:
            return JSONResponse(status_code=201, content={"location": location}, headers={"Location": location})

        @self.app.put("/services/{service_id}/logo", status_code=201)
        async def upload_service_logo(service_id: str, logo: Logo,
                                      identity: Identity = Depends(current_identity)):
            """Upload the logo of a service the caller owns."""
            return created_at(unwrap(await ops.upload_service_logo(client, identity, service_id, logo)))

        @self.app.put("/organizations/{organization_fiscal_code}/logo", status_code=201)
        async def upload_organization_logo(organization_fiscal_code: str, logo: Logo,
                                           identity: Identity = Depends(current_identity)):
            """Upload an organization logo; admins only."""
            return created_at(unwrap(await ops.upload_organization_logo(
                client, identity, organization_fiscal_code, logo
            )))


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ProvisioningService(config=config or get_config("provisioning", 8080), **kwargs)
    return service.app


if __name__ == "__main__":
    service = ProvisioningService()
    service.run()
