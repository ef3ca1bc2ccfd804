"""Tenant domain entity."""

from pydantic import Field

from src.signin.entities._base import Entity


class Tenant(Entity):
    """An isolated organization whose users are partitioned from all others."""

    name: str = Field(description="Display name of the organization")
    slug: str = Field(description="Unique, URL-safe tenant identifier")
    external_workspace_id: str | None = Field(
        default=None,
        description="Provider workspace this tenant is bound to, if any",
    )
    is_active: bool = Field(default=True)
