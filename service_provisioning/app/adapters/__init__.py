"""
Adapters package for the Provisioning Service.

Contains HTTP client wrappers for the external collaborators (management
control plane, notification API). These adapters encapsulate:

- Base URLs and request shapes
- Authentication headers
- Error handling that maps to shared errors

Adapters raise; the engine converts raised errors into results.
"""

from .management_client import ArmManagementClient, ManagementClient, odata_quote
from .notification_client import (
    CreatedMessage,
    DevelopmentProfile,
    Logo,
    MessageContent,
    NewMessage,
    NotificationClient,
)

__all__ = [
    "ArmManagementClient",
    "ManagementClient",
    "odata_quote",
    "CreatedMessage",
    "DevelopmentProfile",
    "Logo",
    "MessageContent",
    "NewMessage",
    "NotificationClient",
]
