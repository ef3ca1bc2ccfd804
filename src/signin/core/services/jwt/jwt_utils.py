import base64
import json
from dataclasses import dataclass
from typing import Any, Final

from src.signin.core.errors import InvalidIdentityToken

MAX_JWT_CHARS: Final = 8192
MAX_HEADER_BYTES: Final = 8 * 1024
MAX_PAYLOAD_BYTES: Final = 64 * 1024
_ALLOWED: Final = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_."
)  # no '='


def _split_compact_jwt(token: str) -> tuple[str, str, str]:
    if not token or len(token) > MAX_JWT_CHARS:
        raise InvalidIdentityToken("Invalid JWT size")
    if any(ch not in _ALLOWED for ch in token):
        raise InvalidIdentityToken("Invalid JWT characters")
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise InvalidIdentityToken("Invalid JWT format")
    return parts[0], parts[1], parts[2]


def _decode_segment(seg: str, what: str, max_bytes: int) -> dict[str, Any]:
    pad = (-len(seg)) % 4
    try:
        raw = base64.urlsafe_b64decode((seg + "=" * pad).encode("ascii"))
    except ValueError as e:
        raise InvalidIdentityToken(f"Invalid base64url in {what}") from e
    if len(raw) > max_bytes:
        raise InvalidIdentityToken(f"{what} too large")
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidIdentityToken(f"Invalid JSON in {what}") from e
    if not isinstance(obj, dict):
        raise InvalidIdentityToken(f"{what} must be a JSON object")
    return obj


@dataclass(frozen=True)
class JwtPreview:
    header: dict[str, Any]
    claims: dict[str, Any]
    alg: str | None
    kid: str | None
    iss: str | None


def preview_jwt(token: str) -> JwtPreview:
    """Decode header and payload without verifying anything.

    Used to pick the algorithm and signing key before verification, and to
    reject structurally broken tokens before any network call.
    """
    h_seg, p_seg, _ = _split_compact_jwt(token)
    header = _decode_segment(h_seg, "JWT header", MAX_HEADER_BYTES)
    claims = _decode_segment(p_seg, "JWT payload", MAX_PAYLOAD_BYTES)
    iss = claims.get("iss")
    return JwtPreview(
        header=header,
        claims=claims,
        alg=header.get("alg"),
        kid=header.get("kid"),
        iss=iss.rstrip("/") if isinstance(iss, str) and iss else None,
    )
