"""GitHub webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac

from backend.services.crypto_service import safe_string_equal

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``X-Hub-Signature-256`` value GitHub would send for ``payload``."""
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, secret: str, signature_header: str) -> bool:
    """Check a signature header against the raw body in constant time."""
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    return safe_string_equal(compute_signature(payload, secret), signature_header)
