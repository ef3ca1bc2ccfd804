"""Account domain entity."""

from enum import Enum

from pydantic import Field

from src.signin.entities._base import Entity


class AccountRole(str, Enum):
    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "AccountRole") -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {AccountRole.MEMBER: 0, AccountRole.MANAGER: 1, AccountRole.ADMIN: 2}


class Account(Entity):
    """An internal user account. Belongs to exactly one tenant.

    Super-admins hold one physical account per tenant they have entered.
    """

    tenant_id: str = Field(description="Tenant the account belongs to")
    email: str | None = Field(default=None, description="Email as last reported")
    email_normalized: str | None = Field(
        default=None, description="Lower-cased email used for matching"
    )
    display_name: str | None = Field(default=None)
    avatar_url: str | None = Field(default=None)
    role: AccountRole = Field(default=AccountRole.MEMBER)
    is_super_admin: bool = Field(default=False)
    is_account_owner: bool = Field(default=False)
    is_active: bool = Field(default=True)
    auth_provider: str | None = Field(
        default=None, description="Provider the account was provisioned through"
    )
    credential_hash: str | None = Field(
        default=None,
        description="Hash of an opaque credential; never used for password login",
    )
