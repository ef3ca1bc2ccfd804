"""Tenant entity module.

- Tenant: Domain entity for an organization
- TenantTable: Database persistence model
- TenantRepository: Data access layer
"""

from .entity import Tenant
from .repository import TenantRepository
from .table import TenantTable

__all__ = ["Tenant", "TenantTable", "TenantRepository"]
