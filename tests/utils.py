import base64
import time
from typing import Any
from urllib.parse import parse_qs, urlparse

from authlib.jose import jwt


def oct_jwk(key: bytes, kid: str) -> dict[str, str]:
    return {
        "kty": "oct",
        "k": base64.urlsafe_b64encode(key).rstrip(b"=").decode("ascii"),
        "alg": "HS256",
        "kid": kid,
    }


def make_id_token(
    claims: dict[str, Any],
    key: bytes,
    kid: str,
    expires_in: int = 3600,
) -> str:
    """Sign an HS256 ID token; ``iat``/``exp`` are filled in unless given."""
    now = int(time.time())
    payload = {"iat": now, "exp": now + expires_in, **claims}
    token = jwt.encode({"alg": "HS256", "kid": kid, "typ": "JWT"}, payload, key)
    return token.decode("ascii") if isinstance(token, bytes) else token


def query_param(url: str, name: str) -> str | None:
    values = parse_qs(urlparse(url).query).get(name)
    return values[0] if values else None
