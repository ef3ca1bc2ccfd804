from sqlmodel import Session, select

from src.signin.entities.account.entity import Account
from src.signin.entities.account.table import AccountTable


class AccountRepository:
    """Data-access layer for accounts."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, account_id: str) -> Account | None:
        row = self._session.get(AccountTable, account_id)
        if row is None:
            return None
        return Account.model_validate(row, from_attributes=True)

    def get_by_tenant_email(self, tenant_id: str, email_normalized: str) -> Account | None:
        """Oldest account in the tenant with this email."""
        accounts = self.find_by_tenant_email(tenant_id, email_normalized)
        return accounts[0] if accounts else None

    def find_by_tenant_email(self, tenant_id: str, email_normalized: str) -> list[Account]:
        statement = select(AccountTable).where(
            (AccountTable.tenant_id == tenant_id)
            & (AccountTable.email_normalized == email_normalized)
        )
        rows = self._session.exec(statement.order_by(AccountTable.created_at)).all()
        return [Account.model_validate(row, from_attributes=True) for row in rows]

    def find_by_email(
        self,
        email_normalized: str,
        exclude_tenant_id: str | None = None,
        active_only: bool = False,
    ) -> list[Account]:
        """Find accounts across all tenants by normalized email."""
        statement = select(AccountTable).where(
            AccountTable.email_normalized == email_normalized
        )
        if exclude_tenant_id is not None:
            statement = statement.where(AccountTable.tenant_id != exclude_tenant_id)
        if active_only:
            statement = statement.where(AccountTable.is_active == True)  # noqa: E712
        rows = self._session.exec(statement.order_by(AccountTable.created_at)).all()
        return [Account.model_validate(row, from_attributes=True) for row in rows]

    def get_many(self, account_ids: list[str]) -> list[Account]:
        if not account_ids:
            return []
        statement = select(AccountTable).where(AccountTable.id.in_(account_ids))
        rows = self._session.exec(statement.order_by(AccountTable.created_at)).all()
        return [Account.model_validate(row, from_attributes=True) for row in rows]

    def create(self, account: Account) -> Account:
        """Insert an account and commit.

        Raises:
            sqlalchemy.exc.IntegrityError: If the row violates a table constraint
        """
        row = AccountTable(**account.model_dump())
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return Account.model_validate(row, from_attributes=True)

    def delete(self, account_id: str) -> None:
        row = self._session.get(AccountTable, account_id)
        if row is not None:
            self._session.delete(row)
            self._session.commit()

    def update(self, account: Account) -> Account:
        row = self._session.get(AccountTable, account.id)
        if row is None:
            raise ValueError(f"Account {account.id} not found")
        for field, value in account.model_dump(exclude={"id", "created_at", "updated_at"}).items():
            setattr(row, field, value)
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return Account.model_validate(row, from_attributes=True)
