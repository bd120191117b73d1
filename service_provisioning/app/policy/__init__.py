"""
Authorization policy package.

Pure functions deciding which parts of a mutation a caller may apply,
together with the service record models they operate on.
"""

from .models import Service, ServiceCategory, ServiceMetadata, ServicePayload, ServiceScope
from .service_update import filter_service_update, updatable_fields

__all__ = [
    "Service",
    "ServiceCategory",
    "ServiceMetadata",
    "ServicePayload",
    "ServiceScope",
    "filter_service_update",
    "updatable_fields",
]
