"""OIDC client for the authorization code flow against the chat-platform provider."""

import base64
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from src.signin.core.errors import InvalidIdentityToken, TokenExchangeFailed
from src.signin.core.models.identity import ExternalIdentity
from src.signin.core.services.jwt.jwt_utils import preview_jwt
from src.signin.core.services.jwt.jwt_verify import JwtVerificationService
from src.signin.runtime.config.config_data import OIDCProviderConfig
from src.signin.runtime.context import get_config


class TokenResponse(BaseModel):
    """Token endpoint response.

    ``team`` is sent by Slack next to the signed ID token. It is not covered
    by any signature and must never feed an authorization decision.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    token_type: str | None = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str
    team: dict[str, Any] | None = None


class OidcClientService:
    def __init__(self, jwt_verify_service: JwtVerificationService):
        self._jwt_verify_service = jwt_verify_service

    def provider_config(self, provider: str | None = None) -> OIDCProviderConfig:
        config = get_config()
        name = provider or config.oidc.default_provider
        try:
            return config.oidc.providers[name]
        except KeyError:
            raise TokenExchangeFailed(f"OIDC provider '{name}' is not configured") from None

    def build_authorization_url(
        self, state: str, nonce: str, provider: str | None = None
    ) -> str:
        """Build the provider authorization URL carrying ``state`` and ``nonce``."""
        provider_config = self.provider_config(provider)
        params = {
            "response_type": "code",
            "client_id": provider_config.client_id,
            "scope": " ".join(provider_config.scopes),
            "redirect_uri": provider_config.redirect_uri,
            "state": state,
            "nonce": nonce,
        }
        return f"{provider_config.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code(
        self, code: str, redirect_uri: str | None = None, provider: str | None = None
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            TokenExchangeFailed: On transport errors, non-2xx responses,
                ``ok: false`` bodies, malformed JSON or a missing ID token.
                ``provider_error_code`` carries the provider's error code.
        """
        provider_config = self.provider_config(provider)
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or provider_config.redirect_uri,
            "client_id": provider_config.client_id,
        }
        credentials = f"{provider_config.client_id}:{provider_config.client_secret}"
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {base64.b64encode(credentials.encode()).decode()}",
        }

        try:
            async with httpx.AsyncClient(timeout=provider_config.timeout_seconds) as client:
                response = await client.post(
                    provider_config.token_endpoint, data=form, headers=headers
                )
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(
                f"Token endpoint unreachable: {type(exc).__name__}: {exc}",
                provider_error_code="network_error",
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise TokenExchangeFailed(
                f"Malformed token response (HTTP {response.status_code})",
                provider_error_code="malformed_response",
            )

        if response.status_code >= 400 or body.get("ok") is False or "error" in body:
            error_code = str(body.get("error") or f"http_{response.status_code}")
            raise TokenExchangeFailed(
                f"Token exchange rejected (HTTP {response.status_code}): {error_code}",
                provider_error_code=error_code,
            )

        try:
            tokens = TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise TokenExchangeFailed(
                "Token response without a usable ID token",
                provider_error_code="missing_id_token",
            ) from exc

        logger.debug("Authorization code exchanged")
        return tokens

    async def validate_identity_token(
        self,
        id_token: str,
        nonce: str | None = None,
        provider: str | None = None,
        token_response: TokenResponse | None = None,
    ) -> ExternalIdentity:
        """Verify the ID token and extract the external identity.

        Only signed claims decide identity and workspace. The unsigned
        ``team`` object of ``token_response`` is read for the workspace
        display name alone.

        Raises:
            InvalidIdentityToken: On any verification failure
        """
        config = get_config()
        name = provider or config.oidc.default_provider
        provider_config = self.provider_config(name)

        # Structural check before any network round trip for keys
        preview = preview_jwt(id_token)
        claims = await self._jwt_verify_service.verify_id_token(
            id_token, provider_config, expected_nonce=nonce, preview=preview
        )

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidIdentityToken("ID token has no subject")

        display_name = claims.get("name") or " ".join(
            part for part in (claims.get("given_name"), claims.get("family_name")) if part
        )

        workspace_id = None
        if provider_config.workspace_claim:
            workspace_id = claims.get(provider_config.workspace_claim)

        workspace_name = claims.get("https://slack.com/team_name")
        if not workspace_name and token_response and token_response.team:
            workspace_name = token_response.team.get("name")

        return ExternalIdentity(
            provider=name,
            provider_user_id=subject,
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            display_name=display_name or None,
            avatar_url=claims.get("picture"),
            provider_workspace_id=str(workspace_id) if workspace_id else None,
            workspace_name=workspace_name,
        )
