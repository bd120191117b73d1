"""
First-subscription onboarding.

Runs the steps below in order, stopping at the first failure. Steps already
done are not rolled back.

1. Join the configured groups (idempotent)
2. Create the regular subscription returned to the caller
3. Create a development profile for a generated sandbox fiscal code
   (an existing profile is fine)
4. Create a sandbox service tied to the new subscription
5. Send a welcome message to the sandbox fiscal code
6. Create the manage subscription under its deterministic id

The manage subscription marks an account as onboarded, so it is created
only once every other step succeeded and a failed run is retried in full.
"""

import random
import string
from enum import Enum
from typing import Callable, List, Optional

from shared.errors import ConflictError, ProvisioningError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.result import Result, attempt
from ..adapters.management_client import ManagementClient
from ..adapters.notification_client import (
    DevelopmentProfile,
    MessageContent,
    NewMessage,
    NotificationClient,
)
from ..models import Account, Identity, Subscription
from ..policy.models import Service
from ..subscriptions.provisioner import SubscriptionProvisioner, manage_subscription_id

SANDBOX_ORGANIZATION_FISCAL_CODE = "00000000000"


class OnboardingStep(str, Enum):
    ASSIGN_GROUPS = "assign_groups"
    CREATE_SUBSCRIPTION = "create_subscription"
    CREATE_SANDBOX_PROFILE = "create_sandbox_profile"
    CREATE_SANDBOX_SERVICE = "create_sandbox_service"
    SEND_WELCOME_MESSAGE = "send_welcome_message"
    CREATE_MANAGE_SUBSCRIPTION = "create_manage_subscription"
    DONE = "done"


def generate_fake_fiscal_code(rng: Optional[random.Random] = None) -> str:
    """Build a code shaped like a fiscal code that cannot belong to a citizen.

    The literal ``Y`` in the birthplace field never appears in real codes.
    """
    rng = rng or random.SystemRandom()
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(6))
    d = [rng.choice(string.digits) for _ in range(7)]
    return "".join([letters, d[0], d[1], "A", d[2], d[3], "Y", d[4], d[5], d[6], "X"])


def sandbox_service(subscription: Subscription, identity: Identity, fiscal_code: str) -> Service:
    return Service(
        service_id=subscription.name,
        service_name=identity.service_name or "service",
        department_name=identity.department or "department",
        organization_name=identity.organization or "organization",
        organization_fiscal_code=SANDBOX_ORGANIZATION_FISCAL_CODE,
        authorized_recipients=[fiscal_code],
        authorized_cidrs=[],
    )


def welcome_message(account: Account, fiscal_code: str, portal_url: str) -> NewMessage:
    markdown = "\n".join([
        "Hello,",
        "this is a bogus fiscal code you can use to start testing the API:\n",
        fiscal_code,
        "\nYou can start in the developer portal here:",
        portal_url,
    ])
    return NewMessage(content=MessageContent(
        subject=f"Welcome {account.first_name} {account.last_name} !",
        markdown=markdown,
    ))


class OnboardingWorkflow:
    """Provision everything a developer needs on their first subscription."""

    def __init__(self, provisioner: SubscriptionProvisioner, notification_client: NotificationClient,
                 product_name: str, user_groups: List[str], portal_url: str,
                 metrics: Optional[MetricsCollector] = None,
                 fiscal_code_factory: Callable[[], str] = generate_fake_fiscal_code):
        self.provisioner = provisioner
        self.notification_client = notification_client
        self.product_name = product_name
        self.user_groups = list(user_groups)
        self.portal_url = portal_url
        self.metrics = metrics
        self.fiscal_code_factory = fiscal_code_factory
        self.logger = get_logger("provisioning.onboarding")

    async def run(self, client: ManagementClient, account: Account, identity: Identity) -> Result[Subscription]:
        """Onboard ``account`` and return its new regular subscription."""
        step = OnboardingStep.ASSIGN_GROUPS
        groups = await self.provisioner.assign_groups(client, account, self.user_groups)
        if groups.is_err:
            return self._fail(step, account, groups.error)

        step = OnboardingStep.CREATE_SUBSCRIPTION
        created = await self.provisioner.create_subscription(client, account.id, self.product_name)
        if created.is_err:
            return self._fail(step, account, created.error)
        subscription = created.value

        fiscal_code = self.fiscal_code_factory()

        step = OnboardingStep.CREATE_SANDBOX_PROFILE
        profile = await attempt(self.notification_client.create_or_update_profile(
            fiscal_code, DevelopmentProfile(email=account.email, version=0)
        ))
        if profile.is_err:
            if not isinstance(profile.error, ConflictError):
                return self._fail(step, account, profile.error)
            self.logger.info("Sandbox profile already exists", fiscal_code=fiscal_code)

        step = OnboardingStep.CREATE_SANDBOX_SERVICE
        service = await attempt(self._create_sandbox_service(subscription, identity, fiscal_code))
        if service.is_err:
            return self._fail(step, account, service.error)

        step = OnboardingStep.SEND_WELCOME_MESSAGE
        message = await attempt(self.notification_client.send_message(
            fiscal_code, welcome_message(account, fiscal_code, self.portal_url)
        ))
        if message.is_err:
            return self._fail(step, account, message.error)

        step = OnboardingStep.CREATE_MANAGE_SUBSCRIPTION
        manage = await self.provisioner.create_subscription(
            client, account.id, self.product_name, manage_subscription_id(account)
        )
        if manage.is_err:
            return self._fail(step, account, manage.error)
        self.provisioner.invalidate_subscription(manage_subscription_id(account))

        self.logger.debug("Onboarding step reached", step=OnboardingStep.DONE.value, account_id=account.id)
        self._track("success", account)
        return Result.ok(subscription)

    async def _create_sandbox_service(self, subscription: Subscription, identity: Identity,
                                      fiscal_code: str) -> Service:
        try:
            service = sandbox_service(subscription, identity, fiscal_code)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            raise ValidationError("Invalid sandbox service", details={"error": str(e)})
        return await self.notification_client.create_service(service)

    def _fail(self, step: OnboardingStep, account: Account, error: ProvisioningError) -> Result[Subscription]:
        self.logger.error(
            "Onboarding failed",
            step=step.value,
            account_id=account.id,
            code=error.code,
            error=error.message
        )
        self._track("failure", account)
        return Result.fail(error)

    def _track(self, outcome: str, account: Account) -> None:
        """Emit the onboarding telemetry event; never affects the outcome."""
        try:
            self.logger.info(f"onboarding.{outcome}", account_id=account.id, username=account.display_name)
            if self.metrics:
                self.metrics.increment_counter("onboarding_events_total", outcome=outcome)
        except Exception as e:
            self.logger.warning("Cannot record onboarding event", outcome=outcome, error=str(e))
