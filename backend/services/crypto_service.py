"""Token generation, hashing and authenticated encryption for secrets at rest."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_ASSOCIATED_DATA = b"eshttp-github-session"
_IV_BYTES = 12
_TAG_BYTES = 16


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    """Decode unpadded base64url. Raises ValueError on malformed input."""
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Malformed base64url value") from exc


def random_token(num_bytes: int = 32) -> str:
    """Return a URL-safe random token carrying ``num_bytes`` of entropy."""
    return b64url_encode(secrets.token_bytes(num_bytes))


def sha256_b64url(value: str) -> str:
    """Hash a string with SHA-256 and return the digest as base64url."""
    return b64url_encode(hashlib.sha256(value.encode()).digest())


def pkce_code_challenge(verifier: str) -> str:
    """Compute the S256 PKCE challenge for a code verifier."""
    return sha256_b64url(verifier)


def safe_string_equal(left: str, right: str) -> bool:
    """Compare two strings in constant time."""
    return hmac.compare_digest(left.encode(), right.encode())


def encrypt_secret(plaintext: str, key: bytes) -> str:
    """Encrypt a string with AES-256-GCM.

    Returns ``iv.tag.ciphertext``, each part base64url encoded. A fresh random
    IV is drawn per call.
    """
    iv = os.urandom(_IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode(), _ASSOCIATED_DATA)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return ".".join((b64url_encode(iv), b64url_encode(tag), b64url_encode(ciphertext)))


def decrypt_secret(payload: str, key: bytes) -> str:
    """Decrypt a value produced by :func:`encrypt_secret`. Raises ValueError on failure."""
    parts = payload.split(".")
    if len(parts) != 3:
        raise ValueError("Failed to decrypt credential data")
    try:
        iv, tag, ciphertext = (b64url_decode(part) for part in parts)
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, _ASSOCIATED_DATA)
    except (InvalidTag, ValueError) as exc:
        raise ValueError("Failed to decrypt credential data") from exc
    return plaintext.decode()
