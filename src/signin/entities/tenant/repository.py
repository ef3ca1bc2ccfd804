from sqlmodel import Session, select

from src.signin.entities.tenant.entity import Tenant
from src.signin.entities.tenant.table import TenantTable


class TenantRepository:
    """Data-access layer for tenants."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, tenant_id: str) -> Tenant | None:
        row = self._session.get(TenantTable, tenant_id)
        if row is None:
            return None
        return Tenant.model_validate(row, from_attributes=True)

    def get_by_slug(self, slug: str) -> Tenant | None:
        statement = select(TenantTable).where(TenantTable.slug == slug)
        row = self._session.exec(statement).first()
        if row is None:
            return None
        return Tenant.model_validate(row, from_attributes=True)

    def list_slugs_with_prefix(self, base: str) -> set[str]:
        """Return ``base`` and every ``base-<suffix>`` slug already taken."""
        statement = select(TenantTable.slug).where(
            (TenantTable.slug == base) | (TenantTable.slug.like(f"{base}-%"))
        )
        return set(self._session.exec(statement).all())

    def list_all(self, active_only: bool = False) -> list[Tenant]:
        statement = select(TenantTable).order_by(TenantTable.slug)
        if active_only:
            statement = statement.where(TenantTable.is_active == True)  # noqa: E712
        rows = self._session.exec(statement).all()
        return [Tenant.model_validate(row, from_attributes=True) for row in rows]

    def list_by_ids(self, tenant_ids: list[str]) -> list[Tenant]:
        if not tenant_ids:
            return []
        statement = (
            select(TenantTable)
            .where(TenantTable.id.in_(tenant_ids))
            .order_by(TenantTable.slug)
        )
        rows = self._session.exec(statement).all()
        return [Tenant.model_validate(row, from_attributes=True) for row in rows]

    def create(self, tenant: Tenant) -> Tenant:
        """Insert a tenant and commit.

        Raises:
            sqlalchemy.exc.IntegrityError: If the slug is already taken
        """
        row = TenantTable(**tenant.model_dump())
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return Tenant.model_validate(row, from_attributes=True)
