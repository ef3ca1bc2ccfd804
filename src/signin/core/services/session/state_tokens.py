"""Single-use anti-CSRF state for the authorization redirect."""

from loguru import logger

from src.signin.core.errors import StateAlreadyConsumed, StateExpired, StateNotFound
from src.signin.core.models.session import PendingAuthState
from src.signin.core.security import generate_nonce, generate_state
from src.signin.core.storage.session_storage import SessionStorage
from src.signin.runtime.context import get_config

STATE_PREFIX = "state:"


class StateTokenManager:
    """Issues state tokens and validates each of them exactly once."""

    def __init__(self, storage: SessionStorage):
        self._storage = storage

    @staticmethod
    def _key(token: str) -> str:
        return f"{STATE_PREFIX}{token}"

    async def issue(
        self,
        tenant_hint: str,
        provider: str | None = None,
        auth_tenant_id: str | None = None,
        ttl_seconds: int | None = None,
    ) -> PendingAuthState:
        """Create and store a pending state for one login attempt.

        The record outlives its logical expiry by one extra TTL so that a
        late callback is reported as expired rather than unknown.
        """
        config = get_config()
        ttl = config.auth.state_ttl_seconds if ttl_seconds is None else ttl_seconds
        pending = PendingAuthState.create(
            token=generate_state(),
            tenant_hint=tenant_hint,
            nonce=generate_nonce(),
            provider=provider or config.oidc.default_provider,
            auth_tenant_id=auth_tenant_id,
            ttl_seconds=ttl,
        )
        await self._storage.set(self._key(pending.token), pending, max(ttl * 2, 1))
        return pending

    async def validate_and_consume(self, token: str) -> PendingAuthState:
        """Consume a state token.

        Returns:
            The pending state; its ``tenant_hint`` drives resolution.

        Raises:
            StateNotFound: Unknown token
            StateExpired: Token presented after its TTL
            StateAlreadyConsumed: Token was already used
        """
        if not token:
            raise StateNotFound("Empty state parameter")

        key = self._key(token)
        pending, flipped = await self._storage.consume(key, PendingAuthState)
        if pending is None:
            raise StateNotFound("No pending state for token")

        if pending.is_expired():
            await self._storage.delete(key)
            raise StateExpired(f"State expired {pending.expires_at:.0f}")

        if not flipped:
            raise StateAlreadyConsumed("State token already used")

        # The consumed record stays until its retention TTL so that replays
        # are reported as already consumed.
        logger.debug("State token consumed for tenant hint {}", pending.tenant_hint)
        return pending

    async def purge_expired(self) -> int:
        """Remove expired state records from backends without native TTL."""
        purged = 0
        for key in await self._storage.list_keys(f"{STATE_PREFIX}*"):
            pending = await self._storage.get(key, PendingAuthState)
            if pending is not None and pending.is_expired():
                await self._storage.delete(key)
                purged += 1
        return purged + await self._storage.cleanup_expired()
