"""Origin checks, return-target normalization and session cookies."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

if TYPE_CHECKING:
    from fastapi import Request, Response

    from backend.config import Settings
    from backend.services.oauth_service import AuthIntent


def normalize_return_to(value: object, app_origin: str) -> str:
    """Reduce a post-auth redirect target to a same-origin path.

    Relative paths are kept. Absolute URLs survive only when their origin is
    ``app_origin``, reduced to path, query and fragment. Anything else becomes
    ``"/"``.
    """
    if not isinstance(value, str) or not value.strip():
        return "/"
    trimmed = value.strip()
    if trimmed.startswith("/"):
        return trimmed
    parts = urlsplit(trimmed)
    if not parts.scheme or not parts.netloc:
        return "/"
    if f"{parts.scheme}://{parts.netloc}" != app_origin:
        return "/"
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    fragment = f"#{parts.fragment}" if parts.fragment else ""
    return f"{path}{query}{fragment}"


def is_same_origin(request: Request, app_origin: str) -> bool:
    """True when the request's Origin header equals the configured app origin."""
    origin = request.headers.get("origin")
    if not origin or not app_origin:
        return False
    parts = urlsplit(origin.strip())
    if not parts.scheme or not parts.netloc:
        return False
    return f"{parts.scheme}://{parts.netloc}" == app_origin


def request_origin(request: Request, fallback_origin: str) -> str:
    """Public origin of the request, honoring proxy forwarding headers."""
    proto = request.headers.get("x-forwarded-proto") or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if not host:
        return fallback_origin
    return f"{proto}://{host}"


def append_auth_result(return_to: str, intent: AuthIntent) -> str:
    """Add ``github_write=1`` or ``github_read=1`` to a same-origin return path."""
    parts = urlsplit(return_to if return_to.startswith("/") else "/")
    query = parse_qsl(parts.query, keep_blank_values=True)
    key = "github_write" if intent == "write" else "github_read"
    query = [(k, v) for k, v in query if k != key]
    query.append((key, "1"))
    return urlunsplit(("", "", parts.path or "/", urlencode(query), parts.fragment))


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=True,
        samesite="lax",
        path="/",
        max_age=settings.session_ttl_seconds,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )
