"""Error hierarchy for the Prometheus proxy.

Authentication errors are raised by the auth client during startup or
token acquisition. ``UpstreamCallError`` covers transport failures
reaching the Prometheus backend. Each class carries the HTTP status the
forwarding handler answers with when it surfaces per request.
"""


class ProxyError(Exception):
    """Base error for all proxy errors.

    Attributes:
        status_code: HTTP status returned to the caller when this error
            reaches the forwarding handler. Defaults to ``500``.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class AuthError(ProxyError):
    """Base authentication error."""


class NotInitializedError(AuthError):
    """Token requested before ``init_client`` established a credential."""

    def __init__(self, message: str = "azure client not initialized"):
        super().__init__(message)


class CredentialConstructionError(AuthError):
    """The credential library rejected the secret, authority or identifier."""


class UnsetClientIdError(AuthError):
    """Workload identity mode cannot resolve a usable client id."""

    def __init__(self, message: str = "environment variable AZURE_CLIENT_ID is unset"):
        super().__init__(message)


class UpstreamAuthError(AuthError):
    """The identity provider failed or rejected the token exchange."""


class EmptyTokenError(AuthError):
    """The identity provider answered successfully but without a token."""

    def __init__(self, message: str = "empty authentication token"):
        super().__init__(message)


class UpstreamCallError(ProxyError):
    """Transport failure calling the Prometheus backend.

    ``status_code`` is best-effort: 504 for timeouts, 502 otherwise.
    """

    status_code = 502
