"""OIDC testing fixtures: signed ID tokens, identities and seeded tenants."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from sqlmodel import Session

from src.signin.core.models.identity import ExternalIdentity
from src.signin.core.security import generate_opaque_credential_hash, normalize_email
from src.signin.entities.account import Account, AccountRepository, AccountRole
from src.signin.entities.tenant import Tenant, TenantRepository
from tests.utils import make_id_token

ACME_WORKSPACE = "T_ACME"


@pytest.fixture
def id_token_factory(
    signing_key: bytes, kid_for_jwt: str, issuer: str, client_id: str
) -> Callable[..., str]:
    """Build ID tokens the way the provider signs them."""

    def _make(
        sub: str = "U_ALICE",
        email: str | None = "alice@acme.com",
        nonce: str | None = None,
        team_id: str | None = ACME_WORKSPACE,
        **claims: Any,
    ) -> str:
        payload: dict[str, Any] = {
            "iss": issuer,
            "aud": client_id,
            "sub": sub,
            "email_verified": True,
            "name": "Alice Example",
            **claims,
        }
        if email is not None:
            payload["email"] = email
        if nonce is not None:
            payload["nonce"] = nonce
        if team_id is not None:
            payload["https://slack.com/team_id"] = team_id
        return make_id_token(payload, signing_key, kid_for_jwt)

    return _make


@pytest.fixture
def identity_factory() -> Callable[..., ExternalIdentity]:
    def _make(
        sub: str = "U_ALICE",
        email: str | None = "alice@acme.com",
        workspace: str | None = ACME_WORKSPACE,
        **fields: Any,
    ) -> ExternalIdentity:
        values = {
            "provider": "slack",
            "provider_user_id": sub,
            "email": email,
            "email_verified": True,
            "display_name": "Alice Example",
            "provider_workspace_id": workspace,
            **fields,
        }
        return ExternalIdentity(**values)

    return _make


@pytest.fixture
def acme_tenant(session: Session) -> Tenant:
    """Existing tenant bound to the acme workspace."""
    return TenantRepository(session).create(
        Tenant(name="Acme", slug="acme", external_workspace_id=ACME_WORKSPACE)
    )


@pytest.fixture
def beta_tenant(session: Session) -> Tenant:
    """Existing tenant without a workspace binding."""
    return TenantRepository(session).create(Tenant(name="Beta", slug="beta"))


@pytest.fixture
def account_factory(session: Session) -> Callable[..., Account]:
    def _make(tenant: Tenant, email: str, **fields: Any) -> Account:
        return AccountRepository(session).create(
            Account(
                tenant_id=tenant.id,
                email=email,
                email_normalized=normalize_email(email),
                role=fields.pop("role", AccountRole.MEMBER),
                credential_hash=generate_opaque_credential_hash(),
                **fields,
            )
        )

    return _make


@pytest.fixture
def mock_http_response_factory() -> Callable[..., Mock]:
    """Factory for httpx-like responses."""

    def create_response(json_data: Any, status_code: int = 200) -> Mock:
        response = Mock()
        response.status_code = status_code
        if isinstance(json_data, Exception):
            response.json.side_effect = json_data
        else:
            response.json.return_value = json_data
        return response

    return create_response


@pytest.fixture
def patch_async_client():
    """Wire a patched ``httpx.AsyncClient`` class to an async client mock."""

    def _wire(mock_client_cls: Mock, response: Any = None, side_effect: Any = None) -> AsyncMock:
        client = AsyncMock()
        client.post.return_value = response
        client.get.return_value = response
        if side_effect is not None:
            client.post.side_effect = side_effect
            client.get.side_effect = side_effect
        mock_client_cls.return_value.__aenter__.return_value = client
        mock_client_cls.return_value.__aexit__.return_value = False
        return client

    return _wire
