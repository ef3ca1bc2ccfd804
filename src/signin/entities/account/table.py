"""Account database table model."""

from sqlalchemy import Column, Enum, Index, String
from sqlmodel import Field

from src.signin.entities._base import EntityTable
from src.signin.entities.account.entity import AccountRole


class AccountTable(EntityTable, table=True):
    """Database persistence model for accounts.

    ``email_normalized`` is indexed on its own so the cross-tenant email
    lookup is a single index scan. It is not unique within a tenant: one
    person may reach a tenant through several provider identities, each
    with its own account.
    """

    __table_args__ = (Index("ix_account_tenant_email", "tenant_id", "email_normalized"),)

    tenant_id: str = Field(foreign_key="tenanttable.id", index=True)
    email: str | None = Field(default=None, sa_column=Column(String(320), nullable=True))
    email_normalized: str | None = Field(
        default=None, sa_column=Column(String(320), nullable=True, index=True)
    )
    display_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    avatar_url: str | None = Field(default=None, sa_column=Column(String(1024), nullable=True))
    role: AccountRole = Field(
        default=AccountRole.MEMBER,
        sa_column=Column(
            Enum(
                AccountRole,
                native_enum=False,
                length=16,
                values_callable=lambda roles: [r.value for r in roles],
            ),
            nullable=False,
        ),
    )
    is_super_admin: bool = Field(default=False, index=True)
    is_account_owner: bool = Field(default=False)
    is_active: bool = Field(default=True)
    auth_provider: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    credential_hash: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
