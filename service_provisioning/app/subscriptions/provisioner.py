"""
Subscription provisioning: ownership-checked lookups, creation and group assignment.
"""

from typing import Iterable, List, Optional

from ulid import ULID

from shared.errors import NotFoundError
from shared.logging import get_logger
from shared.result import Result, attempt, from_optional
from ..adapters.management_client import ManagementClient, odata_quote
from ..caching import LookupCache, cache_key
from ..models import Account, ApiKeyType, Product, Subscription, SubscriptionState

MANAGE_PREFIX = f"{ApiKeyType.MANAGE.value}-"


def manage_subscription_id(account: Account) -> str:
    """Deterministic id of the account's manage subscription."""
    return f"{MANAGE_PREFIX}{account.name}"


def parse_owner_id(resource_id: str) -> str:
    """Short id of a resource from its full path."""
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


def is_owned_by(subscription: Subscription, owner_account_id: Optional[str]) -> bool:
    """``None`` as owner stands for an admin and matches any subscription."""
    return owner_account_id is None or subscription.owner_id == owner_account_id


def subscription_filter(key_type: Optional[ApiKeyType]) -> str:
    prefix = odata_quote(MANAGE_PREFIX)
    if key_type == ApiKeyType.MANAGE:
        return f"startswith(name, {prefix})"
    return f"not(startswith(name, {prefix}))"


class SubscriptionProvisioner:
    """Creates subscriptions and memberships on the management plane."""

    def __init__(self, subscription_cache: LookupCache[Subscription]):
        self.subscription_cache = subscription_cache
        self.logger = get_logger("provisioning.subscriptions")

    async def get_owned_subscription(self, client: ManagementClient, subscription_id: str,
                                     owner_account_id: Optional[str] = None) -> Optional[Subscription]:
        """Return the subscription when it belongs to ``owner_account_id``."""
        return await self.subscription_cache.memoize(
            cache_key(subscription_id, owner_account_id),
            lambda: self.fetch_owned_subscription(client, subscription_id, owner_account_id),
        )

    async def fetch_owned_subscription(self, client: ManagementClient, subscription_id: str,
                                       owner_account_id: Optional[str] = None) -> Optional[Subscription]:
        """Uncached variant of ``get_owned_subscription``."""
        subscription = await client.get_subscription(subscription_id)
        if subscription is None:
            return None
        if not is_owned_by(subscription, owner_account_id):
            self.logger.warning(
                "Subscription owner mismatch",
                subscription_id=subscription_id,
                owner_id=subscription.owner_id,
                requested_owner_id=owner_account_id
            )
            return None
        return subscription

    def invalidate_subscription(self, subscription_id: str) -> None:
        """Forget every cached view of the subscription, whatever the owner filter."""
        self.subscription_cache.invalidate_where(lambda key: key[0] == subscription_id)

    async def create_subscription(self, client: ManagementClient, account_id: str, product_name: str,
                                  subscription_id: Optional[str] = None) -> Result[Subscription]:
        """Subscribe ``account_id`` to ``product_name``.

        A fresh ULID is used unless ``subscription_id`` is given, so calling
        this twice without an id creates two subscriptions. Existing ids are
        overwritten with state ``active``, which reactivates cancelled ones.
        """
        lookup = await attempt(client.get_product(product_name))
        product = lookup.and_then(lambda found: from_optional(found, NotFoundError(
            "Cannot find the API management product",
            details={"product_name": product_name}
        )))

        async def _create(found: Product) -> Result[Subscription]:
            new_id = subscription_id or str(ULID())
            self.logger.info("Creating subscription", subscription_id=new_id, product_id=found.id)
            return await attempt(client.create_or_update_subscription(
                subscription_id=new_id,
                display_name=new_id,
                product_id=found.id,
                user_id=account_id,
                state=SubscriptionState.ACTIVE,
            ))

        return await product.and_then_async(_create)

    async def assign_groups(self, client: ManagementClient, account: Account,
                            group_names: Iterable[str]) -> Result[List[str]]:
        """Join ``account`` to every group it is missing, one at a time.

        Returns the groups actually joined. The first failed join aborts the
        rest and groups joined before it stay joined.
        """
        existing = await attempt(client.list_user_groups(account.name))
        if existing.is_err:
            return Result.fail(existing.error)

        current = set(existing.value or [])
        missing = [group for group in dict.fromkeys(group_names) if group and group not in current]
        if not missing:
            self.logger.debug("Account already belongs to groups", account_id=account.id)
            return Result.ok([])

        added: List[str] = []
        for group in missing:
            joined = await attempt(client.add_user_to_group(group, account.name))
            if joined.is_err:
                self.logger.error("Cannot add account to group", account_id=account.id, group=group,
                                  joined=added, error=joined.error.message)
                return Result.fail(joined.error)
            added.append(group)

        self.logger.info("Account added to groups", account_id=account.id, groups=added)
        return Result.ok(added)

    async def list_subscriptions(self, client: ManagementClient, account: Account,
                                 key_type: Optional[ApiKeyType] = None) -> List[Subscription]:
        """Subscriptions of ``account``: manage ones for ``MANAGE``, the others otherwise."""
        return await client.list_user_subscriptions(account.name, subscription_filter(key_type))

    async def has_manage_subscription(self, client: ManagementClient, account: Account) -> bool:
        subscription = await self.get_owned_subscription(client, manage_subscription_id(account), account.id)
        return subscription is not None
