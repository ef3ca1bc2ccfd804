"""Identity values passed between the OIDC client, resolver and session layer."""

from dataclasses import dataclass

from pydantic import BaseModel, Field

from src.signin.entities.account import Account
from src.signin.entities.tenant import Tenant


class ExternalIdentity(BaseModel):
    """Verified claims about a user asserted by the identity provider.

    Only ``workspace_name`` may come from unsigned response data and it is
    used for display purposes only.
    """

    provider: str
    provider_user_id: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None
    avatar_url: str | None = None
    provider_workspace_id: str | None = Field(
        default=None, description="Workspace id taken from the signed ID token"
    )
    workspace_name: str | None = Field(
        default=None, description="Unverified workspace name, display only"
    )


@dataclass
class ResolvedAccount:
    """Outcome of identity resolution: the account and its effective tenant."""

    account: Account
    tenant: Tenant
    created: bool = False
    tenant_created: bool = False

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def tenant_slug(self) -> str:
        return self.tenant.slug
