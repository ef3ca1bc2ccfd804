from unittest.mock import patch

import httpx
import pytest

from src.signin.core.errors import InvalidIdentityToken, TokenExchangeFailed
from src.signin.core.services import OidcClientService, TokenResponse
from tests.fixtures.oidc import ACME_WORKSPACE
from tests.utils import query_param

_CLIENT_PATH = "src.signin.core.services.oidc_client_service.httpx.AsyncClient"


class TestAuthorizationUrl:
    def test_url_carries_state_and_nonce(self, oidc_client_service: OidcClientService, oidc_provider_config):
        url = oidc_client_service.build_authorization_url("state-1", "nonce-1")

        assert url.startswith(oidc_provider_config.authorization_endpoint + "?")
        assert query_param(url, "state") == "state-1"
        assert query_param(url, "nonce") == "nonce-1"
        assert query_param(url, "response_type") == "code"
        assert query_param(url, "scope") == "openid profile email"
        assert query_param(url, "client_id") == oidc_provider_config.client_id
        assert query_param(url, "redirect_uri") == oidc_provider_config.redirect_uri

    def test_unknown_provider(self, oidc_client_service: OidcClientService):
        with pytest.raises(TokenExchangeFailed):
            oidc_client_service.build_authorization_url("s", "n", provider="github")


class TestExchangeCode:
    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_success(
        self, mock_client_cls, oidc_client_service, oidc_provider_config,
        mock_http_response_factory, patch_async_client,
    ):
        client = patch_async_client(
            mock_client_cls,
            mock_http_response_factory(
                {"ok": True, "access_token": "xoxp", "id_token": "a.b.c", "team": {"name": "Acme"}}
            ),
        )

        tokens = await oidc_client_service.exchange_code("code-1")

        assert tokens.id_token == "a.b.c"
        assert tokens.team == {"name": "Acme"}
        args, kwargs = client.post.call_args
        assert args == (oidc_provider_config.token_endpoint,)
        assert kwargs["data"]["code"] == "code-1"
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["headers"]["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_ok_false_body(
        self, mock_client_cls, oidc_client_service, mock_http_response_factory, patch_async_client
    ):
        patch_async_client(
            mock_client_cls, mock_http_response_factory({"ok": False, "error": "invalid_code"})
        )

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oidc_client_service.exchange_code("code-1")

        assert exc_info.value.provider_error_code == "invalid_code"

    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_http_error_status(
        self, mock_client_cls, oidc_client_service, mock_http_response_factory, patch_async_client
    ):
        patch_async_client(mock_client_cls, mock_http_response_factory({}, status_code=500))

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oidc_client_service.exchange_code("code-1")

        assert exc_info.value.provider_error_code == "http_500"

    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_network_error(self, mock_client_cls, oidc_client_service, patch_async_client):
        patch_async_client(mock_client_cls, side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oidc_client_service.exchange_code("code-1")

        assert exc_info.value.provider_error_code == "network_error"

    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_malformed_body(
        self, mock_client_cls, oidc_client_service, mock_http_response_factory, patch_async_client
    ):
        patch_async_client(mock_client_cls, mock_http_response_factory(ValueError("not json")))

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oidc_client_service.exchange_code("code-1")

        assert exc_info.value.provider_error_code == "malformed_response"

    @pytest.mark.asyncio
    @patch(_CLIENT_PATH)
    async def test_missing_id_token(
        self, mock_client_cls, oidc_client_service, mock_http_response_factory, patch_async_client
    ):
        patch_async_client(
            mock_client_cls, mock_http_response_factory({"ok": True, "access_token": "xoxp"})
        )

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oidc_client_service.exchange_code("code-1")

        assert exc_info.value.provider_error_code == "missing_id_token"


class TestValidateIdentityToken:
    @pytest.mark.asyncio
    async def test_identity_from_signed_claims(self, oidc_client_service, id_token_factory):
        token = id_token_factory(nonce="n-1", picture="https://img.test/a.png")

        identity = await oidc_client_service.validate_identity_token(token, nonce="n-1")

        assert identity.provider == "slack"
        assert identity.provider_user_id == "U_ALICE"
        assert identity.email == "alice@acme.com"
        assert identity.email_verified is True
        assert identity.display_name == "Alice Example"
        assert identity.avatar_url == "https://img.test/a.png"
        assert identity.provider_workspace_id == ACME_WORKSPACE

    @pytest.mark.asyncio
    async def test_unsigned_team_only_feeds_display_name(self, oidc_client_service, id_token_factory):
        token = id_token_factory(nonce="n-1", team_id="T_SIGNED")
        tokens = TokenResponse(id_token=token, team={"id": "T_FORGED", "name": "Acme Inc"})

        identity = await oidc_client_service.validate_identity_token(
            token, nonce="n-1", token_response=tokens
        )

        assert identity.provider_workspace_id == "T_SIGNED"
        assert identity.workspace_name == "Acme Inc"

    @pytest.mark.asyncio
    async def test_no_workspace_claim(self, oidc_client_service, id_token_factory):
        token = id_token_factory(nonce="n-1", team_id=None)

        identity = await oidc_client_service.validate_identity_token(token, nonce="n-1")

        assert identity.provider_workspace_id is None

    @pytest.mark.asyncio
    async def test_nonce_is_enforced(self, oidc_client_service, id_token_factory):
        token = id_token_factory(nonce="n-1")

        with pytest.raises(InvalidIdentityToken):
            await oidc_client_service.validate_identity_token(token, nonce="n-2")

    @pytest.mark.asyncio
    async def test_garbage_token(self, oidc_client_service):
        with pytest.raises(InvalidIdentityToken):
            await oidc_client_service.validate_identity_token("not-a-jwt", nonce="n-1")
