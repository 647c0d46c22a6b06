"""Azure AD authentication for Azure Managed Prometheus.

Two mutually exclusive strategies, selected once at startup:

- App registration (client secret) via an msal confidential client,
  which keeps an in-memory token cache and refreshes transparently.
- Workload identity via azure-identity, exchanging the platform-issued
  token file mounted into the pod for an access token.

Both SDKs are synchronous and run in worker threads.
"""

import asyncio
import logging
import os
from dataclasses import dataclass

from prometheus_proxy.auth.base import AuthClient, CredentialStrategy
from prometheus_proxy.auth.errors import (
    CredentialConstructionError,
    EmptyTokenError,
    NotInitializedError,
    UnsetClientIdError,
    UpstreamAuthError,
)
from prometheus_proxy.logging.audit import get_audit_logger

AZURE_SCOPES = ["https://prometheus.monitor.azure.com/.default"]
AZURE_TENANT_PREFIX = "https://login.microsoftonline.com/"
AZURE_WORKLOAD_IDENTITY_TOKEN_PATH = "/var/run/secrets/azure/tokens/azure-identity-token"

CLIENT_ID_ENV_VAR = "AZURE_CLIENT_ID"
# Left behind by an unresolved Helm template value
CLIENT_ID_PLACEHOLDER = "<no value>"

# msal marks where an app token came from
TOKEN_SOURCE_CACHE = "cache"


def validate_client_id(client_id: str | None) -> bool:
    """A client id is usable if it is set and not the template placeholder."""
    return bool(client_id) and client_id != CLIENT_ID_PLACEHOLDER


@dataclass(frozen=True)
class CredentialConfig:
    tenant_id: str
    client_id: str
    client_secret: str = ""

    @property
    def authority(self) -> str:
        return AZURE_TENANT_PREFIX + self.tenant_id

    @property
    def uses_client_secret(self) -> bool:
        return bool(self.client_secret)

    def log_fields(self) -> dict:
        return {"client_id": self.client_id, "tenant_id": self.tenant_id}


class AppSecretStrategy(CredentialStrategy):
    """Acquires tokens with an app registration's client secret.

    ``acquire_token_for_client`` looks in the app token cache first and
    only calls the identity provider on a miss or when the cached token
    is due for refresh. Its ``token_source`` field tells the two apart.
    """

    mode = "app_secret"

    def __init__(self, config: CredentialConfig, logger: logging.Logger):
        self._config = config
        self._logger = logger
        self._app = None

    def init(self) -> None:
        # Lazy import keeps msal out of workload-identity-only processes
        import msal

        self._logger.debug(
            "creating new confidential client",
            extra={"audit_data": self._config.log_fields()},
        )
        try:
            self._app = msal.ConfidentialClientApplication(
                self._config.client_id,
                client_credential=self._config.client_secret,
                authority=self._config.authority,
            )
        except Exception as e:
            raise CredentialConstructionError(
                f"failed to create confidential client: {e}"
            ) from e

    async def acquire_token(self) -> str:
        fields = self._config.log_fields()
        self._logger.debug(
            "acquiring azure token using app registration credentials",
            extra={"audit_data": fields},
        )
        try:
            result = await asyncio.to_thread(self._app.acquire_token_for_client, AZURE_SCOPES)
        except Exception as e:
            self._logger.error(
                "failed to acquire azure token",
                extra={"audit_data": {**fields, "error": str(e)}},
            )
            raise UpstreamAuthError(f"failed to acquire azure token: {e}") from e

        result = result or {}
        if "error" in result:
            error = _describe_error(result)
            self._logger.error(
                "failed to acquire azure token",
                extra={"audit_data": {**fields, "error": error}},
            )
            raise UpstreamAuthError(f"failed to acquire azure token: {error}")

        token = result.get("access_token") or ""
        if not token:
            self._logger.error("acquired empty azure token", extra={"audit_data": fields})
            raise EmptyTokenError()

        if result.get("token_source") == TOKEN_SOURCE_CACHE:
            self._logger.debug("acquired azure token using cache/refresh", extra={"audit_data": fields})
        else:
            self._logger.debug(
                "acquired azure token from identity provider",
                extra={"audit_data": fields},
            )
        return token


class WorkloadIdentityStrategy(CredentialStrategy):
    """Acquires tokens with an AKS workload identity federated credential.

    The credential re-reads the projected token file whenever it needs a
    new access token, so a missing or unreadable file surfaces per
    request rather than at startup.
    """

    mode = "workload_identity"

    def __init__(
        self,
        config: CredentialConfig,
        logger: logging.Logger,
        token_file_path: str = AZURE_WORKLOAD_IDENTITY_TOKEN_PATH,
    ):
        self._config = config
        self._logger = logger
        self._token_file_path = token_file_path
        self._credential = None

    def init(self) -> None:
        from azure.identity import WorkloadIdentityCredential

        self._logger.debug(
            "creating new workload identity credential",
            extra={"audit_data": self._config.log_fields()},
        )
        try:
            self._credential = WorkloadIdentityCredential(
                tenant_id=self._config.tenant_id,
                client_id=self._config.client_id,
                token_file_path=self._token_file_path,
            )
        except ValueError as e:
            raise CredentialConstructionError(
                f"failed to create workload identity credential: {e}"
            ) from e

    async def acquire_token(self) -> str:
        from azure.core.exceptions import AzureError

        fields = self._config.log_fields()
        self._logger.debug(
            "acquiring azure token using workload identity credentials",
            extra={"audit_data": fields},
        )
        try:
            access_token = await asyncio.to_thread(self._credential.get_token, *AZURE_SCOPES)
        except (AzureError, OSError) as e:
            self._logger.error(
                "failed to acquire azure token",
                extra={"audit_data": {**fields, "error": str(e)}},
            )
            raise UpstreamAuthError(f"failed to acquire azure token: {e}") from e

        if not access_token or not access_token.token:
            self._logger.error("acquired empty azure token", extra={"audit_data": fields})
            raise EmptyTokenError()

        self._logger.debug("acquired azure token successfully", extra={"audit_data": fields})
        return access_token.token

    async def close(self) -> None:
        if self._credential is not None:
            self._credential.close()
            self._credential = None


class AzureClient(AuthClient):
    """Authenticates requests to Azure Managed Prometheus.

    Holds exactly one credential strategy once ``init_client`` succeeds.
    The strategy is shared by all in-flight requests.
    """

    def __init__(self, tenant_id: str, client_id: str = "", client_secret: str = ""):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.logger = get_audit_logger()
        self._strategy: CredentialStrategy | None = None

    @property
    def strategy(self) -> CredentialStrategy | None:
        return self._strategy

    @property
    def mode(self) -> str:
        if self.credential_config().uses_client_secret:
            return AppSecretStrategy.mode
        return WorkloadIdentityStrategy.mode

    def credential_config(self) -> CredentialConfig:
        return CredentialConfig(
            tenant_id=self.tenant_id,
            client_id=self.client_id,
            client_secret=self._client_secret,
        )

    def init_client(self, logger: logging.Logger) -> None:
        self.logger = logger
        logger.info(
            "using azure client for authentication",
            extra={"audit_data": {
                "mode": self.mode,
                "client_id": self.client_id,
                "tenant_id": self.tenant_id,
            }},
        )

        if self.credential_config().uses_client_secret:
            strategy = AppSecretStrategy(self.credential_config(), logger)
        else:
            if not validate_client_id(self.client_id):
                self.refresh_client_id()
            strategy = WorkloadIdentityStrategy(self.credential_config(), logger)

        strategy.init()
        self._strategy = strategy

    def refresh_client_id(self) -> None:
        """Re-read the client id from the environment.

        Workload identity injects AZURE_CLIENT_ID into the pod, which is
        not always resolved when the proxy's own config is rendered.
        """
        client_id = os.environ.get(CLIENT_ID_ENV_VAR, "")
        if not validate_client_id(client_id):
            self.logger.error(
                "AZURE_CLIENT_ID environment variable is unset",
                extra={"audit_data": {"client_id": client_id}},
            )
            raise UnsetClientIdError()
        self.client_id = client_id

    async def acquire_token(self) -> str:
        if self._strategy is None:
            raise NotInitializedError()
        return await self._strategy.acquire_token()

    async def close(self) -> None:
        if self._strategy is not None:
            await self._strategy.close()


def _describe_error(result: dict) -> str:
    error = result.get("error", "unknown_error")
    description = result.get("error_description")
    return f"{error}: {description}" if description else error
