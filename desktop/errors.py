"""Sync engine exception types."""

from __future__ import annotations


class SyncEngineError(Exception):
    """Base class for sync engine failures."""


class NotFoundError(SyncEngineError):
    """An id does not resolve to an import, workspace, collection or request."""


class StorageUnavailableError(SyncEngineError):
    """A backend locator (path, directory handle, repository root) is missing."""


class UnsupportedOperationError(SyncEngineError):
    """The storage strategy of an import cannot perform the operation."""


class CommitBlockedError(SyncEngineError):
    """Queued writes for the import are still pending or failed."""


class HostBridgeError(SyncEngineError):
    """A host bridge command failed."""


class RemoteAuthRequiredError(SyncEngineError):
    """The backend has no GitHub session for this client."""


class WriteScopeRequiredError(SyncEngineError):
    """The GitHub session lacks write scope; ``reauth_url`` starts a step-up authorization."""

    code = "WRITE_SCOPE_REQUIRED"

    def __init__(self, reauth_url: str) -> None:
        super().__init__("GitHub write access is required to commit")
        self.reauth_url = reauth_url


class RemoteBackendError(SyncEngineError):
    """The backend answered with an unexpected status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidPathError(SyncEngineError):
    """A file path is empty, absolute or escapes the import root."""
