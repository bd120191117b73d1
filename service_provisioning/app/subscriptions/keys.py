"""
Subscription key rotation.
"""

from typing import Optional

from shared.logging import get_logger
from ..adapters.management_client import ManagementClient
from ..models import KeyType, Subscription
from .provisioner import SubscriptionProvisioner


class KeyRotator:
    """Regenerates subscription keys after re-checking ownership."""

    def __init__(self, provisioner: SubscriptionProvisioner):
        self.provisioner = provisioner
        self.logger = get_logger("provisioning.keys")

    async def rotate_key(self, client: ManagementClient, subscription_id: str,
                         owner_account_id: Optional[str], key_type: KeyType) -> Optional[Subscription]:
        """Regenerate one key and return the refreshed subscription.

        Ownership is always checked against the management plane, never the
        cache. Returns ``None`` when the check fails.
        """
        owned = await self.provisioner.fetch_owned_subscription(client, subscription_id, owner_account_id)
        if owned is None:
            return None

        if key_type == KeyType.PRIMARY:
            await client.regenerate_primary_key(owned.name or subscription_id)
        else:
            await client.regenerate_secondary_key(owned.name or subscription_id)

        self.provisioner.invalidate_subscription(subscription_id)
        self.logger.info("Subscription key regenerated", subscription_id=subscription_id, key_type=key_type.value)
        return await self.provisioner.fetch_owned_subscription(client, subscription_id, owner_account_id)
