"""Identity link entity module.

- IdentityLink: Domain entity linking an external identity to an account
- IdentityLinkTable: Database persistence model
- IdentityLinkRepository: Data access layer
"""

from .entity import IdentityLink
from .repository import IdentityLinkRepository
from .table import IdentityLinkTable

__all__ = ["IdentityLink", "IdentityLinkTable", "IdentityLinkRepository"]
