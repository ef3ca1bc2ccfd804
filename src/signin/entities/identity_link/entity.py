"""Identity link domain entity."""

from datetime import datetime

from pydantic import Field

from src.signin.entities._base import Entity


class IdentityLink(Entity):
    """Maps an external identity to exactly one account in one tenant.

    The same ``(provider, provider_user_id)`` may appear once per tenant.
    A link is never re-pointed to another account except by an admin.
    """

    provider: str = Field(description="Identity provider key")
    provider_user_id: str = Field(description="Subject claim from the ID token")
    account_id: str = Field(description="Internal account this identity maps to")
    tenant_id: str = Field(description="Tenant of the linked account")
    workspace_id: str | None = Field(
        default=None, description="Provider workspace seen at link time"
    )
    email: str | None = Field(default=None)
    display_name: str | None = Field(default=None)
    avatar_url: str | None = Field(default=None)
    last_login_at: datetime | None = Field(default=None)
