"""Tenant database table model."""

from sqlalchemy import Column, String
from sqlmodel import Field

from src.signin.entities._base import EntityTable


class TenantTable(EntityTable, table=True):
    """Database persistence model for tenants.

    The unique index on ``slug`` is what makes concurrent slug allocation
    safe: a lost race surfaces as an IntegrityError at insert time.
    """

    name: str = Field(sa_column=Column(String(255), nullable=False))
    slug: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    external_workspace_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True, index=True)
    )
    is_active: bool = Field(default=True)
