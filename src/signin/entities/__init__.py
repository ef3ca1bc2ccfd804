"""Persisted entities: tenants, accounts and identity links."""

from .account import Account, AccountRepository, AccountRole, AccountTable
from .identity_link import IdentityLink, IdentityLinkRepository, IdentityLinkTable
from .tenant import Tenant, TenantRepository, TenantTable

__all__ = [
    "Account",
    "AccountRepository",
    "AccountRole",
    "AccountTable",
    "IdentityLink",
    "IdentityLinkRepository",
    "IdentityLinkTable",
    "Tenant",
    "TenantRepository",
    "TenantTable",
]
