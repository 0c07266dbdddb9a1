"""Application-level exception types.

Convention:
- ``InternalServerError``: errors whose details must never reach clients
  (decryption failures, config validation, etc.). The global handler logs the
  full message at ERROR and returns a generic "Internal server error" (500).
- ``GitHubAPIError`` / ``GitHubOAuthError``: upstream GitHub failures. The
  global handler answers 502 with the message, which never contains tokens.
- ``InvalidOrExpiredStateError``: an OAuth callback carried a state that is
  unknown, expired or already used (400).
- ``ValueError``: *business logic* validation errors that are safe to
  forward to clients. The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class InvalidOrExpiredStateError(Exception):
    """Raised when an OAuth state cannot be consumed."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired OAuth state")


class GitHubAPIError(Exception):
    """Raised when a GitHub REST API call answers with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubOAuthError(Exception):
    """Raised when the OAuth code exchange fails or returns no token."""
