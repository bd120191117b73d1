"""
Management control plane client (Azure API Management over ARM REST).
"""

from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx

from shared.errors import ExternalServiceError, InternalError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..credentials import CredentialCache
from ..models import Product, Subscription, SubscriptionState, UserRecord


class ManagementClient(Protocol):
    """Operations the provisioning engine needs from the control plane."""

    async def list_users(self, email: Optional[str] = None) -> List[UserRecord]: ...

    async def get_user(self, user_id: str) -> Optional[UserRecord]: ...

    async def create_user(self, user_id: str, email: str, first_name: str, last_name: str,
                          subject: str) -> UserRecord: ...

    async def list_user_groups(self, user_name: str) -> List[str]: ...

    async def add_user_to_group(self, group_name: str, user_name: str) -> None: ...

    async def get_product(self, product_name: str) -> Optional[Product]: ...

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]: ...

    async def create_or_update_subscription(self, subscription_id: str, display_name: str,
                                            product_id: str, user_id: str,
                                            state: SubscriptionState) -> Subscription: ...

    async def regenerate_primary_key(self, subscription_id: str) -> None: ...

    async def regenerate_secondary_key(self, subscription_id: str) -> None: ...

    async def list_user_subscriptions(self, user_name: str,
                                      filter_expression: Optional[str] = None) -> List[Subscription]: ...


def odata_quote(value: str) -> str:
    """Quote a literal for an OData $filter expression."""
    return "'" + value.replace("'", "''") + "'"


def _user_from_contract(contract: Dict[str, Any]) -> UserRecord:
    props = contract.get("properties") or {}
    if not isinstance(props, dict):
        raise _malformed("user", "expected an object in properties")
    return UserRecord(
        id=contract.get("id"),
        name=contract.get("name"),
        email=props.get("email"),
        first_name=props.get("firstName") or "",
        last_name=props.get("lastName") or "",
        identities=list(props.get("identities") or []),
    )


def _malformed(operation: str, reason: str) -> InternalError:
    return InternalError(
        "Malformed management plane response",
        details={"operation": operation, "reason": reason}
    )


def _subscription_from_contract(contract: Dict[str, Any]) -> Subscription:
    props = contract.get("properties") or {}
    if not isinstance(props, dict):
        raise _malformed("subscription", "expected an object in properties")
    try:
        return Subscription(
            id=contract.get("id") or "",
            name=contract.get("name") or "",
            display_name=props.get("displayName"),
            owner_id=props.get("userId") or props.get("ownerId"),
            product_id=props.get("productId") or props.get("scope"),
            primary_key=props.get("primaryKey"),
            secondary_key=props.get("secondaryKey"),
            state=props.get("state") or SubscriptionState.ACTIVE,
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise _malformed("subscription", str(e))


class ArmManagementClient:
    """HTTP client for the API Management control plane.

    Every request carries a bearer token from the credential cache. Calls are
    never retried here; a transport failure or unexpected status surfaces as
    an ``ExternalServiceError``.
    """

    def __init__(self, management_url: str, arm_subscription_id: str, resource_group: str,
                 service_name: str, credentials: CredentialCache,
                 api_version: str = "2018-01-01",
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = (
            f"{management_url.rstrip('/')}/subscriptions/{arm_subscription_id}"
            f"/resourceGroups/{resource_group}/providers/Microsoft.ApiManagement/service/{service_name}"
        )
        self.api_version = api_version
        self.credentials = credentials
        self.metrics = metrics
        self.logger = get_logger("provisioning.management_client")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _send(self, method: str, url: str, operation: str,
                    params: Optional[Dict[str, str]] = None,
                    json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        credential = await self.credentials.get_credential()
        headers = {"Authorization": credential.authorization_header}
        try:
            if self.metrics:
                with self.metrics.time_remote_call("management", operation):
                    return await self._client.request(method, url, params=params, json=json, headers=headers)
            return await self._client.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            self.logger.error("Management plane HTTP error", operation=operation, error=str(e))
            raise ExternalServiceError(
                "management",
                "Management plane unavailable",
                details={"operation": operation, "http_error": str(e)}
            )

    async def _request(self, method: str, path: str, operation: str,
                       params: Optional[Dict[str, str]] = None,
                       json: Optional[Dict[str, Any]] = None,
                       allow_not_found: bool = False) -> Optional[Dict[str, Any]]:
        query = {"api-version": self.api_version}
        if params:
            query.update(params)

        response = await self._send(method, f"{self.base_url}/{path}", operation, params=query, json=json)

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            self.logger.warning(
                "Management plane call failed",
                operation=operation,
                status_code=response.status_code,
                response=response.text[:500]
            )
            raise ExternalServiceError(
                "management",
                f"{operation} failed: {response.status_code}",
                details={"operation": operation, "status_code": response.status_code}
            )
        if not response.content:
            return {}
        return self._decode(response, operation)

    def _decode(self, response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            self.logger.error("Management plane returned invalid JSON", operation=operation, error=str(e))
            raise _malformed(operation, "invalid JSON")
        if not isinstance(payload, dict):
            raise _malformed(operation, "expected a JSON object")
        return payload

    @staticmethod
    def _page_items(page: Dict[str, Any], operation: str) -> List[Dict[str, Any]]:
        items = page.get("value") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise _malformed(operation, "expected a list of objects in value")
        return items

    async def _list(self, path: str, operation: str,
                    params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Collect every page of a collection, following nextLink."""
        page = await self._request("GET", path, operation, params=params) or {}
        items = list(self._page_items(page, operation))
        next_link = page.get("nextLink")
        while next_link:
            response = await self._send("GET", next_link, operation)
            if response.status_code >= 400:
                raise ExternalServiceError(
                    "management",
                    f"{operation} failed: {response.status_code}",
                    details={"operation": operation, "status_code": response.status_code}
                )
            page = self._decode(response, operation)
            items.extend(self._page_items(page, operation))
            next_link = page.get("nextLink")
        return items

    async def list_users(self, email: Optional[str] = None) -> List[UserRecord]:
        params = {"$filter": f"email eq {odata_quote(email)}"} if email else None
        contracts = await self._list("users", "list_users", params=params)
        return [_user_from_contract(contract) for contract in contracts]

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        contract = await self._request("GET", f"users/{quote(user_id)}", "get_user", allow_not_found=True)
        return _user_from_contract(contract) if contract is not None else None

    async def create_user(self, user_id: str, email: str, first_name: str, last_name: str,
                          subject: str) -> UserRecord:
        body = {
            "properties": {
                "email": email,
                "firstName": first_name,
                "lastName": last_name,
                "identities": [{"provider": "AadB2C", "id": subject}],
                "state": "active",
                "confirmation": "signup",
            }
        }
        contract = await self._request("PUT", f"users/{quote(user_id)}", "create_user", json=body)
        return _user_from_contract(contract or {})

    async def list_user_groups(self, user_name: str) -> List[str]:
        contracts = await self._list(f"users/{quote(user_name)}/groups", "list_user_groups")
        return [contract["name"] for contract in contracts if contract.get("name")]

    async def add_user_to_group(self, group_name: str, user_name: str) -> None:
        await self._request("PUT", f"groups/{quote(group_name)}/users/{quote(user_name)}", "add_user_to_group")

    async def get_product(self, product_name: str) -> Optional[Product]:
        contract = await self._request("GET", f"products/{quote(product_name)}", "get_product",
                                       allow_not_found=True)
        if not contract or not contract.get("id"):
            return None
        return Product(
            id=contract["id"],
            name=contract.get("name") or product_name,
            display_name=(contract.get("properties") or {}).get("displayName"),
        )

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        contract = await self._request("GET", f"subscriptions/{quote(subscription_id)}", "get_subscription",
                                       allow_not_found=True)
        return _subscription_from_contract(contract) if contract is not None else None

    async def create_or_update_subscription(self, subscription_id: str, display_name: str,
                                            product_id: str, user_id: str,
                                            state: SubscriptionState) -> Subscription:
        body = {
            "properties": {
                "displayName": display_name,
                "productId": product_id,
                "userId": user_id,
                "state": state.value,
            }
        }
        contract = await self._request("PUT", f"subscriptions/{quote(subscription_id)}",
                                       "create_or_update_subscription", json=body)
        return _subscription_from_contract(contract or {})

    async def regenerate_primary_key(self, subscription_id: str) -> None:
        await self._request("POST", f"subscriptions/{quote(subscription_id)}/regeneratePrimaryKey",
                            "regenerate_primary_key")

    async def regenerate_secondary_key(self, subscription_id: str) -> None:
        await self._request("POST", f"subscriptions/{quote(subscription_id)}/regenerateSecondaryKey",
                            "regenerate_secondary_key")

    async def list_user_subscriptions(self, user_name: str,
                                      filter_expression: Optional[str] = None) -> List[Subscription]:
        params = {"$filter": filter_expression} if filter_expression else None
        contracts = await self._list(f"users/{quote(user_name)}/subscriptions", "list_user_subscriptions",
                                     params=params)
        return [_subscription_from_contract(contract) for contract in contracts]
