"""Identity link database table model."""

from datetime import datetime

from sqlalchemy import Column, Index, String, UniqueConstraint
from sqlmodel import Field

from src.signin.entities._base import EntityTable


class IdentityLinkTable(EntityTable, table=True):
    """Database persistence model for identity links.

    Uniqueness is per tenant; the global ``(provider, provider_user_id)``
    index backs the cross-tenant lookup.
    """

    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_user_id", "tenant_id", name="uq_identity_link_tenant"
        ),
        Index("ix_identity_link_provider_user", "provider", "provider_user_id"),
    )

    provider: str = Field(sa_column=Column(String(64), nullable=False))
    provider_user_id: str = Field(sa_column=Column(String(255), nullable=False))
    account_id: str = Field(foreign_key="accounttable.id", index=True)
    tenant_id: str = Field(foreign_key="tenanttable.id", index=True)
    workspace_id: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
    email: str | None = Field(default=None, sa_column=Column(String(320), nullable=True))
    display_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    avatar_url: str | None = Field(default=None, sa_column=Column(String(1024), nullable=True))
    last_login_at: datetime | None = Field(default=None)
