"""
Maps verified identities onto management-plane accounts.
"""

from typing import Optional

from ulid import ULID

from shared.errors import ForbiddenError
from shared.logging import get_logger, set_account_context
from shared.result import Result, attempt
from ..adapters.management_client import ManagementClient
from ..caching import LookupCache, cache_key
from ..models import Account, Identity

DEFAULT_ADMIN_GROUP = "apiadmin"


class IdentityResolver:
    """Resolve accounts by email and decide whether they act as admins."""

    def __init__(self, account_cache: LookupCache[Account], admin_group: str = DEFAULT_ADMIN_GROUP):
        self.account_cache = account_cache
        self.admin_group = admin_group.lower()
        self.logger = get_logger("provisioning.identity")

    async def resolve(self, client: ManagementClient, email: str) -> Optional[Account]:
        """Return the account registered with ``email`` or ``None``.

        Results are memoized per email; a miss is looked up again next time.
        """
        return await self.account_cache.memoize(
            cache_key(email),
            lambda: self._lookup(client, email),
        )

    async def _lookup(self, client: ManagementClient, email: str) -> Optional[Account]:
        users = await client.list_users(email=email)
        if not users:
            self.logger.debug("No account found", email=email)
            return None
        if len(users) > 1:
            self.logger.warning("Several accounts share an email, using the first one",
                                email=email, matches=len(users))

        user = users[0]
        if not user.id or not user.name:
            self.logger.warning("Account record without id or name", email=email)
            return None

        groups = await client.list_user_groups(user.name)
        return Account(
            id=user.id,
            name=user.name,
            email=user.email or email,
            first_name=user.first_name,
            last_name=user.last_name,
            group_names=frozenset(groups),
        )

    def is_admin(self, account: Account) -> bool:
        return any(group.lower() == self.admin_group for group in account.group_names)

    async def resolve_acting_account(self, client: ManagementClient, identity: Identity,
                                     on_behalf_of: Optional[str] = None) -> Result[Account]:
        """Resolve the account an operation acts on.

        An admin may act on behalf of another account by email; for anybody
        else ``on_behalf_of`` is ignored.
        """
        caller = await attempt(self.resolve(client, identity.email))
        if caller.is_err:
            return caller
        if caller.value is None:
            return Result.fail(ForbiddenError(
                "No account is registered for the authenticated user",
                details={"email": identity.email}
            ))

        account = caller.value
        if on_behalf_of and self.is_admin(account):
            target = await attempt(self.resolve(client, on_behalf_of))
            if target.is_err:
                return target
            if target.value is None:
                return Result.fail(ForbiddenError(
                    "No account is registered for the requested user",
                    details={"email": on_behalf_of}
                ))
            self.logger.info("Acting on behalf of account", admin_id=account.id, account_id=target.value.id)
            account = target.value

        set_account_context(account.id)
        return Result.ok(account)

    async def create_account_if_not_exists(self, client: ManagementClient, email: str, subject: str,
                                           first_name: str, last_name: str) -> Optional[Account]:
        """Return the account for ``email``, creating it bound to ``subject`` when missing."""
        existing = await self.resolve(client, email)
        if existing is not None:
            return existing

        user_id = str(ULID())
        self.logger.info("Creating account", email=email, user_id=user_id)
        await client.create_user(
            user_id=user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            subject=subject,
        )
        self.account_cache.invalidate(cache_key(email))
        return await self.resolve(client, email)
