"""Factory for the upstream auth client."""

from prometheus_proxy.auth.azure import AzureClient
from prometheus_proxy.auth.base import AuthClient
from prometheus_proxy.config.settings import Settings


def build_auth_client(settings: Settings) -> AuthClient:
    """Build an uninitialized auth client from settings.

    The caller runs ``init_client`` once logging is configured.
    """
    return AzureClient(
        tenant_id=settings.azure_tenant_id,
        client_id=settings.azure_client_id,
        client_secret=settings.azure_client_secret,
    )
