"""Account entity module.

- Account: Domain entity for a tenant-scoped user account
- AccountTable: Database persistence model
- AccountRepository: Data access layer
"""

from .entity import Account, AccountRole
from .repository import AccountRepository
from .table import AccountTable

__all__ = ["Account", "AccountRole", "AccountTable", "AccountRepository"]
