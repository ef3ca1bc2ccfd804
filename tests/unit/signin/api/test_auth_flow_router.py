from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import httpx
import pytest

from src.signin.api.http.app import app
from src.signin.api.http.app_data import ApplicationDependencies
from src.signin.core.services import TokenResponse
from src.signin.entities.account import AccountRole
from tests.utils import query_param

COOKIE = "session_id"


@pytest.fixture
async def client(
    db_service,
    jwks_cache,
    jwks_service_fake,
    jwt_verify_service,
    oidc_client_service,
    session_storage,
    state_token_manager,
    session_manager,
) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client against the app with test services wired in."""
    app.state.app_dependencies = ApplicationDependencies(
        jwks_cache=jwks_cache,
        jwks_service=jwks_service_fake,
        jwt_verify_service=jwt_verify_service,
        oidc_client_service=oidc_client_service,
        session_storage=session_storage,
        state_token_manager=state_token_manager,
        session_manager=session_manager,
        database_service=db_service,
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    del app.state.app_dependencies


def _use_session(client: httpx.AsyncClient, session_id: str) -> None:
    client.cookies.clear()
    client.cookies.set(COOKIE, session_id)


def _cookie_value(response: httpx.Response) -> str | None:
    for header in response.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        if name == COOKIE:
            return rest.split(";", 1)[0].strip('"')
    return None


class TestLogin:
    @pytest.mark.asyncio
    async def test_redirects_to_provider(self, client, acme_tenant, oidc_provider_config):
        response = await client.get("/auth/web/login", params={"tenant": "acme"})

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(oidc_provider_config.authorization_endpoint)
        assert query_param(location, "state")
        assert _cookie_value(response) is None

    @pytest.mark.asyncio
    async def test_json_format(self, client, acme_tenant):
        response = await client.get("/auth/web/login", params={"tenant": "acme", "format": "json"})

        assert response.status_code == 200
        assert query_param(response.json()["authorization_url"], "nonce")

    @pytest.mark.asyncio
    async def test_unknown_tenant_redirects_to_failure_page(self, client):
        response = await client.get("/auth/web/login", params={"tenant": "nope"})

        assert response.status_code == 302
        assert response.headers["location"] == "/login?error=tenant_not_found"

    @pytest.mark.asyncio
    async def test_unknown_tenant_json(self, client):
        response = await client.get("/auth/web/login", params={"tenant": "nope", "format": "json"})

        assert response.status_code == 404
        assert response.json()["detail"] == "That organization does not exist."

    @pytest.mark.asyncio
    async def test_tenant_is_required(self, client):
        response = await client.get("/auth/web/login")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_provider_parameter_selects_provider(
        self, client, acme_tenant, app_config, oidc_provider_config
    ):
        app_config.oidc.providers["microsoft"] = oidc_provider_config.model_copy(
            update={"authorization_endpoint": "https://login.microsoft.test/authorize"}
        )

        response = await client.get(
            "/auth/web/login", params={"tenant": "acme", "provider": "microsoft"}
        )

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://login.microsoft.test/authorize?")

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client, acme_tenant):
        redirect = await client.get(
            "/auth/web/login", params={"tenant": "acme", "provider": "github"}
        )
        as_json = await client.get(
            "/auth/web/login", params={"tenant": "acme", "provider": "github", "format": "json"}
        )

        assert redirect.status_code == 302
        assert redirect.headers["location"] == "/login?error=provider_unknown"
        assert as_json.status_code == 400
        assert as_json.json()["detail"] == "That sign-in provider is not available."


class TestCallback:
    @pytest.mark.asyncio
    async def test_successful_sign_in_sets_cookie(
        self, client, acme_tenant, id_token_factory, oidc_client_service, monkeypatch, session_manager
    ):
        login = await client.get("/auth/web/login", params={"tenant": "acme"})
        location = login.headers["location"]
        monkeypatch.setattr(
            oidc_client_service,
            "exchange_code",
            AsyncMock(
                return_value=TokenResponse(
                    id_token=id_token_factory(nonce=query_param(location, "nonce"))
                )
            ),
        )

        response = await client.get(
            "/auth/web/callback",
            params={"code": "code-1", "state": query_param(location, "state")},
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/t/acme/dashboard"
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie
        session = await session_manager.get(_cookie_value(response))
        assert session.tenant_slug == "acme"

    @pytest.mark.asyncio
    async def test_replay_redirects_with_retry(
        self, client, acme_tenant, id_token_factory, oidc_client_service, monkeypatch
    ):
        login = await client.get("/auth/web/login", params={"tenant": "acme"})
        location = login.headers["location"]
        monkeypatch.setattr(
            oidc_client_service,
            "exchange_code",
            AsyncMock(
                return_value=TokenResponse(
                    id_token=id_token_factory(nonce=query_param(location, "nonce"))
                )
            ),
        )
        params = {"code": "code-1", "state": query_param(location, "state")}
        await client.get("/auth/web/callback", params=params)
        client.cookies.clear()

        response = await client.get("/auth/web/callback", params=params)

        assert response.status_code == 302
        assert response.headers["location"] == "/login?error=state_invalid&retry=1"
        assert _cookie_value(response) is None

    @pytest.mark.asyncio
    async def test_provider_denial(self, client, acme_tenant):
        login = await client.get("/auth/web/login", params={"tenant": "acme"})

        response = await client.get(
            "/auth/web/callback",
            params={"error": "access_denied", "state": query_param(login.headers["location"], "state")},
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/login?error=provider_denied&retry=1"
        assert _cookie_value(response) is None

    @pytest.mark.asyncio
    async def test_forged_state(self, client):
        response = await client.get("/auth/web/callback", params={"code": "c", "state": "forged"})

        assert response.headers["location"] == "/login?error=state_invalid&retry=1"


class TestSessionEndpoints:
    @pytest.mark.asyncio
    async def test_me_requires_session(self, client):
        response = await client.get("/auth/web/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me(self, client, acme_tenant, account_factory, session_manager):
        account = account_factory(acme_tenant, "alice@acme.com", role=AccountRole.MANAGER)
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.get("/auth/web/me")

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == account.id
        assert body["tenant_slug"] == "acme"
        assert body["role"] == "manager"
        assert body["is_super_admin"] is False

    @pytest.mark.asyncio
    async def test_tenants_for_member(
        self, client, acme_tenant, beta_tenant, account_factory, session_manager
    ):
        account = account_factory(acme_tenant, "alice@acme.com")
        account_factory(beta_tenant, "alice@acme.com")
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.get("/auth/web/tenants")

        assert response.status_code == 200
        assert [(t["slug"], t["current"]) for t in response.json()] == [
            ("acme", True),
            ("beta", False),
        ]

    @pytest.mark.asyncio
    async def test_tenants_for_super_admin(
        self, client, acme_tenant, beta_tenant, account_factory, session_manager
    ):
        admin = account_factory(acme_tenant, "ops@operator.test", is_super_admin=True)
        handle = await session_manager.commit(
            admin.id, acme_tenant.id, "acme", is_super_admin=True
        )
        _use_session(client, handle.session_id)

        response = await client.get("/auth/web/tenants")

        assert [t["slug"] for t in response.json()] == ["acme", "beta"]

    @pytest.mark.asyncio
    async def test_switch_tenant_rotates_session(
        self, client, acme_tenant, beta_tenant, account_factory, session_manager
    ):
        account = account_factory(acme_tenant, "alice@acme.com")
        other = account_factory(beta_tenant, "alice@acme.com")
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.post("/auth/web/switch-tenant", json={"tenant_slug": "beta"})

        assert response.status_code == 200
        assert response.json() == {
            "user_id": other.id,
            "tenant_id": beta_tenant.id,
            "tenant_slug": "beta",
        }
        new_id = _cookie_value(response)
        assert new_id and new_id != handle.session_id
        assert await session_manager.get(handle.session_id) is None

    @pytest.mark.asyncio
    async def test_switch_tenant_without_account(
        self, client, acme_tenant, beta_tenant, account_factory, session_manager
    ):
        account = account_factory(acme_tenant, "alice@acme.com")
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.post("/auth/web/switch-tenant", json={"tenant_slug": "beta"})

        assert response.status_code == 403
        assert await session_manager.get(handle.session_id) is not None

    @pytest.mark.asyncio
    async def test_super_admin_switch_mirrors_account(
        self, client, acme_tenant, beta_tenant, account_factory, session_manager
    ):
        admin = account_factory(
            acme_tenant, "ops@operator.test", is_super_admin=True, role=AccountRole.ADMIN
        )
        handle = await session_manager.commit(
            admin.id, acme_tenant.id, "acme", is_super_admin=True
        )
        _use_session(client, handle.session_id)

        response = await client.post("/auth/web/switch-tenant", json={"tenant_slug": "beta"})

        assert response.status_code == 200
        assert response.json()["tenant_id"] == beta_tenant.id
        assert response.json()["user_id"] != admin.id

    @pytest.mark.asyncio
    async def test_switch_to_unknown_tenant(self, client, acme_tenant, account_factory, session_manager):
        account = account_factory(acme_tenant, "alice@acme.com")
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.post("/auth/web/switch-tenant", json={"tenant_slug": "nope"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_logout(self, client, acme_tenant, account_factory, session_manager):
        account = account_factory(acme_tenant, "alice@acme.com")
        handle = await session_manager.commit(account.id, acme_tenant.id, "acme")
        _use_session(client, handle.session_id)

        response = await client.post("/auth/web/logout")

        assert response.status_code == 200
        assert response.json() == {"message": "Logged out"}
        assert await session_manager.get(handle.session_id) is None

    @pytest.mark.asyncio
    async def test_logout_without_session(self, client):
        response = await client.post("/auth/web/logout")
        assert response.status_code == 200


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["x-content-type-options"] == "nosniff"
        assert "x-request-id" in response.headers

    @pytest.mark.asyncio
    async def test_ready(self, client):
        response = await client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"]["session_storage"]["type"] == "InMemorySessionStorage"

    @pytest.mark.asyncio
    async def test_not_ready_when_store_is_down(self, client, session_storage, monkeypatch):
        monkeypatch.setattr(session_storage, "ping", AsyncMock(return_value=False))

        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["session_storage"]["status"] == "unhealthy"
