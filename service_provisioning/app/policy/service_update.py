"""
Role-based filtering of service updates.

Allow-list per role:

================================  =====  =========
field                             admin  non-admin
================================  =====  =========
service_name                      yes    yes
department_name                   yes    yes
organization_name                 yes    yes
organization_fiscal_code          yes    yes
authorized_cidrs                  yes    yes
service_metadata (rules below)    yes    yes
authorized_recipients             yes    dropped
is_visible                        yes    dropped
max_allowed_payment_amount        yes    dropped
require_secure_channels           yes    dropped
================================  =====  =========

Fields outside the caller's allow-list are silently dropped. On top of the
allow-list, metadata rules apply: a non-admin cannot move the scope of a
visible service, cannot set the token name, and cannot promote a service
to the special category.
"""

from typing import Any, Dict, FrozenSet, Optional

from .models import Service, ServiceCategory, ServiceMetadata, ServicePayload, ServiceScope

USER_UPDATABLE_FIELDS: FrozenSet[str] = frozenset({
    "service_name",
    "department_name",
    "organization_name",
    "organization_fiscal_code",
    "authorized_cidrs",
    "service_metadata",
})

ADMIN_UPDATABLE_FIELDS: FrozenSet[str] = frozenset(ServicePayload.model_fields)

_RULED_METADATA_FIELDS = {"scope", "token_name", "category", "custom_special_flow"}


def updatable_fields(is_admin: bool) -> FrozenSet[str]:
    return ADMIN_UPDATABLE_FIELDS if is_admin else USER_UPDATABLE_FIELDS


def filter_service_update(is_admin: bool, original: Service, payload: ServicePayload) -> Service:
    """Merge ``payload`` onto ``original`` keeping only what the caller may change."""
    present = payload.model_fields_set & updatable_fields(is_admin)

    updates: Dict[str, Any] = {}
    for name in present - {"service_metadata"}:
        value = getattr(payload, name)
        # null on a top-level field means "leave as is"
        if value is not None:
            updates[name] = value

    requested_metadata = payload.service_metadata if "service_metadata" in present else None
    updates["service_metadata"] = _merge_metadata(is_admin, original, requested_metadata)

    return original.model_copy(update=updates)


def _merge_metadata(is_admin: bool, original: Service,
                    requested: Optional[ServiceMetadata]) -> ServiceMetadata:
    """Build the metadata block that results from the update.

    Fields set in the requested block overlay the previous ones; fields it
    omits keep their previous values.
    """
    previous = original.service_metadata
    merged_fields = previous.model_dump() if previous is not None else {}
    if requested is not None:
        merged_fields.update(requested.model_dump(exclude_unset=True))
    merged = ServiceMetadata(**merged_fields)
    fields = merged.model_dump(exclude=_RULED_METADATA_FIELDS)

    previous_scope = previous.scope if previous else None
    if not is_admin and original.is_visible:
        scope = previous_scope or ServiceScope.LOCAL
    elif requested is not None and "scope" in requested.model_fields_set:
        scope = requested.scope
    else:
        scope = previous_scope or ServiceScope.LOCAL

    if is_admin:
        token_name = merged.token_name
    else:
        token_name = previous.token_name if previous else None

    if is_admin:
        category = merged.category or ServiceCategory.STANDARD
        custom_flow = merged.custom_special_flow if category == ServiceCategory.SPECIAL else None
    elif previous is not None and previous.category == ServiceCategory.SPECIAL:
        category = ServiceCategory.SPECIAL
        custom_flow = previous.custom_special_flow
    else:
        category = ServiceCategory.STANDARD
        custom_flow = None

    return ServiceMetadata(
        **fields,
        scope=scope,
        token_name=token_name,
        category=category,
        custom_special_flow=custom_flow,
    )
