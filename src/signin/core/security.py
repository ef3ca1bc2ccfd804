"""Security utilities for the sign-in flow."""

import base64
import hashlib
import secrets


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token.

    Args:
        length: Number of random bytes to generate (default 32)

    Returns:
        URL-safe base64 encoded token
    """
    return (
        base64.urlsafe_b64encode(secrets.token_bytes(length))
        .decode("utf-8")
        .rstrip("=")
    )


def generate_state() -> str:
    """Generate the anti-CSRF state value (256 bits of entropy)."""
    return generate_secure_token(32)


def generate_nonce() -> str:
    """Generate an OIDC nonce binding the ID token to one login attempt."""
    return generate_secure_token(32)


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


def generate_opaque_credential_hash() -> str:
    """Hash a random credential that is never handed to anyone.

    Accounts provisioned from an external identity get this instead of a
    password so that direct password login can never succeed for them.
    """
    credential = secrets.token_hex(32)
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def email_domain(email: str | None) -> str | None:
    """Return the lower-cased domain part of an email address."""
    normalized = normalize_email(email)
    if not normalized or "@" not in normalized:
        return None
    return normalized.rsplit("@", 1)[1] or None


def sanitize_local_path(path: str | None, fallback: str = "/") -> str:
    """Only allow same-site absolute paths as redirect targets."""
    if not path:
        return fallback
    path = path.strip()
    # Browsers read "/\host" like "//host", a protocol-relative URL
    if not path.startswith("/") or path[1:2] in ("/", "\\"):
        return fallback
    if any(ord(c) < 32 for c in path):
        return fallback
    return path
