"""Exception taxonomy shared by the analysis engine and its collaborators.

The orchestrator downgrades remote-path failures (connectivity, inference,
remote write) to the offline fallback. Explicit user actions (manual sync,
sign-in/up) see these exceptions unmodified.
"""

from __future__ import annotations


class CassavaError(Exception):
    """Base exception for the cassava analysis engine."""


class ConnectivityError(CassavaError):
    """No network path to the remote services."""


class NoConnectivityError(ConnectivityError):
    """An operation that requires the network was requested while offline."""


class InferenceError(CassavaError):
    """The classifier was unreachable, timed out, or failed.

    Attributes:
        status_code: HTTP status for remote classifiers, if any.
        detail: Server-provided detail message, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class MalformedResponseError(InferenceError):
    """The classifier answered but the payload is unusable."""


class ModelNotReadyError(InferenceError):
    """The on-device model has not finished loading."""


class RemoteBackendError(CassavaError):
    """A remote database or object-store call failed despite connectivity."""


class RemoteWriteError(RemoteBackendError):
    """Image upload or database write failed."""


class LocalStoreError(CassavaError):
    """The local embedded database is unavailable or corrupt."""


class AuthError(CassavaError):
    """Authentication failed or no authenticated session is available."""


class NotInitializedError(CassavaError):
    """A component was used before ``initialize()`` completed."""
