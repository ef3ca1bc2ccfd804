"""Records kept in the key/value session store."""

import time

from pydantic import BaseModel, Field


class PendingAuthState(BaseModel):
    """Single-use anti-CSRF state bound to one outbound authorization request."""

    token: str = Field(description="Opaque state value sent to the provider")
    tenant_hint: str = Field(description="Tenant slug, alias or new-tenant sentinel")
    nonce: str = Field(description="OIDC nonce expected in the ID token")
    provider: str = Field(description="OIDC provider identifier")
    auth_tenant_id: str | None = Field(
        default=None,
        description="Tenant of an already authenticated session that started the flow",
    )
    issued_at: float = Field(description="Issue timestamp")
    ttl: int = Field(description="Validity in seconds")
    consumed: bool = Field(default=False, description="Whether the state was used")

    @classmethod
    def create(
        cls,
        token: str,
        tenant_hint: str,
        nonce: str,
        provider: str,
        auth_tenant_id: str | None = None,
        ttl_seconds: int = 600,
    ) -> "PendingAuthState":
        return cls(
            token=token,
            tenant_hint=tenant_hint,
            nonce=nonce,
            provider=provider,
            auth_tenant_id=auth_tenant_id,
            issued_at=time.time(),
            ttl=ttl_seconds,
        )

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.ttl

    def is_expired(self) -> bool:
        return time.time() > self.expires_at


class UserSession(BaseModel):
    """Authenticated session scoped to exactly one tenant."""

    id: str = Field(description="Session identifier")
    user_id: str = Field(description="Internal account ID")
    tenant_id: str = Field(description="Tenant the session is scoped to")
    tenant_slug: str = Field(description="Slug of the session tenant")
    is_super_admin: bool = Field(default=False)
    provider: str | None = Field(default=None, description="OIDC provider identifier")
    created_at: int = Field(description="Creation timestamp")
    last_accessed_at: int = Field(description="Last access timestamp")
    expires_at: int = Field(description="Session expiration timestamp")

    @classmethod
    def create(
        cls,
        session_id: str,
        user_id: str,
        tenant_id: str,
        tenant_slug: str,
        is_super_admin: bool = False,
        provider: str | None = None,
        session_max_age: int = 86400,
    ) -> "UserSession":
        """Create a new user session with timestamps."""
        now = int(time.time())
        return cls(
            id=session_id,
            user_id=user_id,
            tenant_id=tenant_id,
            tenant_slug=tenant_slug,
            is_super_admin=is_super_admin,
            provider=provider,
            created_at=now,
            last_accessed_at=now,
            expires_at=now + session_max_age,
        )

    def is_expired(self) -> bool:
        return time.time() > self.expires_at

    def update_access(self) -> None:
        self.last_accessed_at = int(time.time())

    @property
    def ttl_remaining(self) -> int:
        return max(int(self.expires_at - time.time()), 1)
