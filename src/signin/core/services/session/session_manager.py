"""Server-side sessions scoped to one tenant."""

from dataclasses import dataclass

from loguru import logger
from pydantic import ValidationError

from src.signin.core.errors import SessionCommitFailed
from src.signin.core.models.session import UserSession
from src.signin.core.security import generate_session_id
from src.signin.core.storage.session_storage import SessionStorage, StorageError
from src.signin.entities.account import Account
from src.signin.runtime.context import get_config

SESSION_PREFIX = "session:"


@dataclass(frozen=True)
class SessionHandle:
    session_id: str
    user_id: str
    tenant_id: str
    tenant_slug: str
    expires_at: int


class SessionManager:
    """Commits, reads and destroys user sessions."""

    def __init__(self, storage: SessionStorage):
        self._storage = storage

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    async def commit(
        self,
        user_id: str,
        tenant_id: str,
        tenant_slug: str,
        previous_session_id: str | None = None,
        is_super_admin: bool = False,
        provider: str | None = None,
    ) -> SessionHandle:
        """Write a new session under a freshly generated identifier.

        Any session the client presented before signing in is destroyed, so
        a pre-planted session id can never become authenticated.

        Raises:
            SessionCommitFailed: If the triple is incomplete or the store fails
        """
        if not (user_id and tenant_id and tenant_slug):
            raise SessionCommitFailed("Refusing to commit a session without user and tenant")

        try:
            if previous_session_id:
                await self._storage.delete(self._key(previous_session_id))

            max_age = get_config().app.session_max_age
            session = UserSession.create(
                session_id=generate_session_id(),
                user_id=user_id,
                tenant_id=tenant_id,
                tenant_slug=tenant_slug,
                is_super_admin=is_super_admin,
                provider=provider,
                session_max_age=max_age,
            )
            await self._storage.set(self._key(session.id), session, max_age)
        except StorageError as exc:
            raise SessionCommitFailed(f"Session store write failed: {exc}") from exc

        return SessionHandle(
            session_id=session.id,
            user_id=session.user_id,
            tenant_id=session.tenant_id,
            tenant_slug=session.tenant_slug,
            expires_at=session.expires_at,
        )

    async def verify(self, handle: SessionHandle) -> bool:
        """Re-read a just committed session and check it landed intact."""
        try:
            stored = await self._storage.get(self._key(handle.session_id), UserSession)
        except (StorageError, ValidationError):
            logger.opt(exception=True).warning("Session verification read failed")
            return False

        return (
            stored is not None
            and not stored.is_expired()
            and stored.user_id == handle.user_id
            and stored.tenant_id == handle.tenant_id
            and stored.tenant_slug == handle.tenant_slug
        )

    async def get(self, session_id: str) -> UserSession | None:
        """Load a live session and record the access."""
        if not session_id:
            return None
        key = self._key(session_id)
        try:
            session = await self._storage.get(key, UserSession)
        except ValidationError:
            logger.warning("Discarding unreadable session record")
            await self._storage.delete(key)
            return None

        if session is None:
            return None
        if session.is_expired():
            await self._storage.delete(key)
            return None

        session.update_access()
        await self._storage.set(key, session, session.ttl_remaining)
        return session

    async def switch_tenant(
        self, session_id: str, account: Account, tenant_slug: str
    ) -> SessionHandle:
        """Move a live session to ``account`` under a rotated identifier.

        Raises:
            SessionCommitFailed: If the session is gone or the store fails
        """
        current = await self.get(session_id)
        if current is None:
            raise SessionCommitFailed("No live session to switch")
        return await self.commit(
            user_id=account.id,
            tenant_id=account.tenant_id,
            tenant_slug=tenant_slug,
            previous_session_id=session_id,
            is_super_admin=account.is_super_admin,
            provider=current.provider,
        )

    async def destroy(self, session_id: str | None) -> None:
        """Delete a session. Storage failures are logged, never raised."""
        if not session_id:
            return
        try:
            await self._storage.delete(self._key(session_id))
        except Exception:
            logger.opt(exception=True).error("Failed to destroy session record")

    async def purge_expired(self) -> int:
        purged = 0
        for key in await self._storage.list_keys(f"{SESSION_PREFIX}*"):
            session = await self._storage.get(key, UserSession)
            if session is not None and session.is_expired():
                await self._storage.delete(key)
                purged += 1
        return purged + await self._storage.cleanup_expired()
