from sqlmodel import Session, select

from src.signin.entities.identity_link.entity import IdentityLink
from src.signin.entities.identity_link.table import IdentityLinkTable


class IdentityLinkRepository:
    """Data-access layer for identity links."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, link_id: str) -> IdentityLink | None:
        row = self._session.get(IdentityLinkTable, link_id)
        if row is None:
            return None
        return IdentityLink.model_validate(row, from_attributes=True)

    def get_for_tenant(
        self, provider: str, provider_user_id: str, tenant_id: str
    ) -> IdentityLink | None:
        statement = select(IdentityLinkTable).where(
            (IdentityLinkTable.provider == provider)
            & (IdentityLinkTable.provider_user_id == provider_user_id)
            & (IdentityLinkTable.tenant_id == tenant_id)
        )
        row = self._session.exec(statement).first()
        if row is None:
            return None
        return IdentityLink.model_validate(row, from_attributes=True)

    def find_by_provider_user(
        self,
        provider: str,
        provider_user_id: str,
        exclude_tenant_id: str | None = None,
    ) -> list[IdentityLink]:
        """Find the links of one external identity across all tenants."""
        statement = select(IdentityLinkTable).where(
            (IdentityLinkTable.provider == provider)
            & (IdentityLinkTable.provider_user_id == provider_user_id)
        )
        if exclude_tenant_id is not None:
            statement = statement.where(IdentityLinkTable.tenant_id != exclude_tenant_id)
        rows = self._session.exec(statement.order_by(IdentityLinkTable.created_at)).all()
        return [IdentityLink.model_validate(row, from_attributes=True) for row in rows]

    def account_ids_with_provider(self, provider: str, account_ids: list[str]) -> set[str]:
        """Return which of ``account_ids`` already have a link for ``provider``."""
        if not account_ids:
            return set()
        statement = select(IdentityLinkTable.account_id).where(
            (IdentityLinkTable.provider == provider)
            & (IdentityLinkTable.account_id.in_(account_ids))
        )
        return set(self._session.exec(statement).all())

    def create(self, link: IdentityLink) -> IdentityLink:
        """Insert a link and commit.

        Raises:
            sqlalchemy.exc.IntegrityError: If the identity is already linked in this tenant
        """
        row = IdentityLinkTable(**link.model_dump())
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return IdentityLink.model_validate(row, from_attributes=True)

    def update_profile(self, link: IdentityLink) -> IdentityLink:
        """Persist mutable profile fields; the account binding is left untouched."""
        row = self._session.get(IdentityLinkTable, link.id)
        if row is None:
            raise ValueError(f"Identity link {link.id} not found")
        row.email = link.email
        row.display_name = link.display_name
        row.avatar_url = link.avatar_url
        row.workspace_id = link.workspace_id
        row.last_login_at = link.last_login_at
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return IdentityLink.model_validate(row, from_attributes=True)

    def repoint(self, link_id: str, account_id: str, tenant_id: str) -> IdentityLink:
        """Re-bind a link to another account. Administrative use only."""
        row = self._session.get(IdentityLinkTable, link_id)
        if row is None:
            raise ValueError(f"Identity link {link_id} not found")
        row.account_id = account_id
        row.tenant_id = tenant_id
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return IdentityLink.model_validate(row, from_attributes=True)
