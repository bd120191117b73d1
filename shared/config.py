"""
Shared configuration management for the provisioning service.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROVISIONING_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    http_timeout: float = Field(default=10.0)

    # Management control plane (Azure API Management through ARM)
    management_url: str = Field(default="https://management.azure.com")
    arm_subscription_id: str = Field(default="")
    arm_resource_group: str = Field(default="")
    arm_apim: str = Field(default="")
    arm_api_version: str = Field(default="2018-01-01")

    # Management plane login: managed identity by default, service principal on demand
    msi_endpoint: Optional[str] = Field(default=None)
    msi_secret: Optional[str] = Field(default=None)
    use_service_principal: bool = Field(default=False)
    service_principal_client_id: Optional[str] = Field(default=None)
    service_principal_secret: Optional[str] = Field(default=None)
    service_principal_tenant_id: Optional[str] = Field(default=None)
    login_authority_url: str = Field(default="https://login.microsoftonline.com")
    credential_ttl_seconds: int = Field(default=3600)
    credential_refresh_margin_seconds: int = Field(default=60)

    # Provisioning
    apim_product_name: str = Field(default="starter")
    apim_user_groups: str = Field(default="")
    admin_group: str = Field(default="apiadmin")

    # Notification / profile API
    admin_api_url: str = Field(default="http://localhost:7071")
    admin_api_key: str = Field(default="")
    portal_url: str = Field(default="http://localhost:3000")
    logo_url: str = Field(default="http://localhost:3000/logos")
    sandbox_fiscal_code: Optional[str] = Field(default=None)

    # Lookup caches
    lookup_cache_size: int = Field(default=100)
    lookup_cache_ttl_seconds: int = Field(default=3600)
    cache_stats_interval_seconds: int = Field(default=10)

    @property
    def user_groups(self) -> List[str]:
        """Groups every onboarded account must join, parsed from the comma separated setting."""
        return [group.strip() for group in self.apim_user_groups.split(",") if group.strip()]


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
