"""Exception hierarchy for the Kubernetes API client.

Every error raised for a request carries the request path, the HTTP status
code (when there was a response) and the response body for diagnostics.
"""

from __future__ import annotations


class KubeError(Exception):
    """Base class for all client errors."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code
        self.body = body


class ConfigError(KubeError):
    """Missing or invalid kubeconfig / in-cluster configuration."""


class AuthenticationError(KubeError):
    """401/403 from the server, or a credential that could not be obtained.

    Never retried automatically.
    """


class ExecCredentialError(AuthenticationError):
    """The exec credential helper failed or produced unusable output."""


class ClientError(KubeError):
    """A 4xx response other than 401/403."""


class NotFoundError(ClientError):
    """404."""


class ConflictError(ClientError):
    """409."""


class GoneError(ClientError):
    """410: the requested resource version is too old to resume from."""


class ServerError(KubeError):
    """A 5xx response."""


class UnexpectedResponseError(KubeError):
    """A status code outside the 2xx-5xx ranges the client understands."""


class PoolExhaustedError(KubeError):
    """No pooled connection became available within the checkout timeout."""


class MalformedEventError(KubeError):
    """A watch stream line that is not a ``{type, object}`` JSON document."""


class WatchRetriesExhaustedError(KubeError):
    """A watch gave up after its configured number of consecutive failures."""
