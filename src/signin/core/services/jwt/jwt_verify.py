"""ID token verification."""

import time
from typing import Any

from authlib.jose import JoseError, JsonWebKey, JsonWebToken
from loguru import logger

from src.signin.core.errors import InvalidIdentityToken
from src.signin.core.services.jwt.jwks import JwksService
from src.signin.core.services.jwt.jwt_utils import JwtPreview, preview_jwt
from src.signin.runtime.config.config_data import OIDCProviderConfig
from src.signin.runtime.context import get_config


def _as_list(v):
    return [v] if isinstance(v, str) else list(v or ())


class JwtVerificationService:
    def __init__(self, jwks_service: JwksService):
        self._jwks_service = jwks_service

    async def _signing_keys(self, provider: OIDCProviderConfig, kid: str | None):
        jwks = await self._jwks_service.fetch_jwks(provider)
        keys = [k for k in jwks.get("keys", []) if not kid or k.get("kid") == kid]
        if kid and not keys:
            # Key rotation: refetch once before giving up
            jwks = await self._jwks_service.fetch_jwks(provider, force_refresh=True)
            keys = [k for k in jwks.get("keys", []) if k.get("kid") == kid]
        if not keys:
            raise InvalidIdentityToken(f"No JWK matches kid={kid}")
        return JsonWebKey.import_key_set({"keys": keys})

    async def verify_id_token(
        self,
        token: str,
        provider: OIDCProviderConfig,
        *,
        expected_nonce: str | None = None,
        preview: JwtPreview | None = None,
    ) -> dict[str, Any]:
        """Verify signature, issuer, audience and lifetime of an ID token.

        Args:
            token: Compact-serialized ID token
            provider: Configuration of the provider that issued the token
            expected_nonce: Nonce sent with the authorization request
            preview: Already decoded header and payload, if available

        Returns:
            The verified claims

        Raises:
            InvalidIdentityToken: On any verification failure
            ProviderError: If the signing keys cannot be fetched
        """
        cfg = get_config()
        pv = preview or preview_jwt(token)

        if pv.alg not in cfg.jwt.allowed_algorithms:
            raise InvalidIdentityToken(f"Disallowed JWT algorithm {pv.alg}")

        expected_issuer = provider.issuer.rstrip("/")
        if pv.iss != expected_issuer:
            raise InvalidIdentityToken(f"Invalid issuer {pv.iss}")

        key_set = await self._signing_keys(provider, pv.kid)
        claims_options = {
            "iss": {"essential": True, "values": [expected_issuer, provider.issuer]},
            "aud": {"essential": True, "values": [provider.client_id]},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }

        try:
            claims = JsonWebToken(cfg.jwt.allowed_algorithms).decode(
                token, key_set, claims_options=claims_options
            )
            claims.validate(now=int(time.time()), leeway=cfg.jwt.clock_skew)
        except (JoseError, ValueError) as exc:
            raise InvalidIdentityToken(f"JWT error: {exc}") from exc

        if expected_nonce is not None and claims.get("nonce") != expected_nonce:
            raise InvalidIdentityToken("Invalid or missing nonce")

        aud_list = _as_list(claims.get("aud"))
        azp = claims.get("azp")
        if azp and azp != provider.client_id:
            raise InvalidIdentityToken("Invalid azp")
        if not azp and len(aud_list) > 1:
            raise InvalidIdentityToken("Missing azp for multi-audience token")

        logger.debug("ID token verified for issuer {}", expected_issuer)
        return dict(claims)
