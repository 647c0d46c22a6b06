"""Abstract bases for upstream authentication."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ClientHeader:
    key: str
    value: str


class CredentialStrategy(ABC):
    """One way of obtaining a bearer token from an identity provider.

    Implementations own their token cache and must be safe to call from
    many concurrent requests.
    """

    mode: str = ""

    @abstractmethod
    def init(self) -> None:
        """Construct the underlying provider credential."""
        ...

    @abstractmethod
    async def acquire_token(self) -> str:
        """Return a non-empty bearer token for the backend scope."""
        ...

    async def close(self) -> None:
        """Cleanup resources. Override if the credential holds connections."""
        pass


class AuthClient(ABC):
    """The only interface the forwarding handler depends on."""

    @abstractmethod
    def init_client(self, logger: logging.Logger) -> None:
        """Select and build the credential strategy. Called once at startup."""
        ...

    @abstractmethod
    async def acquire_token(self) -> str:
        ...

    async def get_headers(self) -> list[ClientHeader]:
        """Headers authenticating one outbound request."""
        token = await self.acquire_token()
        return [ClientHeader(key="Authorization", value=f"Bearer {token}")]

    async def close(self) -> None:
        pass
