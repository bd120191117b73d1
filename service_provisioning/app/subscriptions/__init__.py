"""
Subscription provisioning package.

Creation, ownership-checked lookup, group assignment and key rotation of
management-plane subscriptions.
"""

from .keys import KeyRotator
from .provisioner import (
    MANAGE_PREFIX,
    SubscriptionProvisioner,
    is_owned_by,
    manage_subscription_id,
    parse_owner_id,
    subscription_filter,
)

__all__ = [
    "KeyRotator",
    "MANAGE_PREFIX",
    "SubscriptionProvisioner",
    "is_owned_by",
    "manage_subscription_id",
    "parse_owner_id",
    "subscription_filter",
]
