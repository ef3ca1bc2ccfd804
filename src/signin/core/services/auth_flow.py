"""Orchestration of the tenant-aware sign-in flow.

``begin_login`` issues a single-use state and points the browser at the
provider. ``handle_callback`` drives one callback through state
validation, code exchange, ID token validation, account resolution and
session commit. A failure at any step ends the attempt; nothing is retried.
"""

from dataclasses import dataclass
from enum import Enum

from loguru import logger
from sqlmodel import Session

from src.signin.core.errors import (
    AccountProvisioningFailed,
    ProviderDenied,
    SessionCommitFailed,
    SignInError,
    StateNotFound,
    TenantNotFound,
    UnknownProvider,
)
from src.signin.core.models.identity import ResolvedAccount
from src.signin.core.security import generate_secure_token, sanitize_local_path
from src.signin.core.services.identity import IdentityResolver
from src.signin.core.services.oidc_client_service import OidcClientService
from src.signin.core.services.session import (
    SessionHandle,
    SessionManager,
    StateTokenManager,
)
from src.signin.core.services.tenant import TenantDirectory
from src.signin.runtime.context import get_config


class AuthFlowState(str, Enum):
    IDLE = "idle"
    STATE_ISSUED = "state_issued"
    CALLBACK_RECEIVED = "callback_received"
    STATE_VALIDATED = "state_validated"
    TOKEN_EXCHANGED = "token_exchanged"
    IDENTITY_VALIDATED = "identity_validated"
    ACCOUNT_RESOLVED = "account_resolved"
    SESSION_COMMITTED = "session_committed"
    FAILED = "failed"


@dataclass(frozen=True)
class LoginRedirect:
    url: str
    state: str


@dataclass(frozen=True)
class CallbackResult:
    handle: SessionHandle
    redirect_url: str
    resolved: ResolvedAccount


class _FlowTrace:
    """Tracks and logs the state of a single flow."""

    def __init__(self) -> None:
        self.flow_id = generate_secure_token(8)
        self.state = AuthFlowState.IDLE
        self._log = logger.bind(flow_id=self.flow_id)

    def advance(self, new_state: AuthFlowState, **details) -> None:
        self._log.bind(**details).info("auth.flow {} -> {}", self.state.value, new_state.value)
        self.state = new_state

    def fail(self, exc: SignInError) -> None:
        failed_in = self.state
        self.state = AuthFlowState.FAILED
        self._log.bind(failed_in=failed_in.value, reason=exc.code).info(
            "auth.flow {} -> failed ({})", failed_in.value, exc.code
        )


class AuthFlowController:
    def __init__(
        self,
        db: Session,
        oidc_client: OidcClientService,
        state_tokens: StateTokenManager,
        sessions: SessionManager,
    ):
        self._directory = TenantDirectory(db)
        self._resolver = IdentityResolver(db)
        self._oidc_client = oidc_client
        self._state_tokens = state_tokens
        self._sessions = sessions

    async def begin_login(
        self,
        tenant_hint: str,
        auth_tenant_id: str | None = None,
        provider: str | None = None,
    ) -> LoginRedirect:
        """Issue a state for ``tenant_hint`` and build the provider redirect.

        ``provider`` picks one of the enabled OIDC providers; the default
        provider is used when it is omitted.

        Raises:
            UnknownProvider: If ``provider`` is not an enabled provider
            TenantNotFound: If the hint is neither the new-tenant sentinel
                nor an active tenant
        """
        trace = _FlowTrace()
        hint = (tenant_hint or "").strip().lower()
        oidc_config = get_config().oidc
        provider = provider or oidc_config.default_provider
        try:
            if provider not in oidc_config.providers:
                raise UnknownProvider(f"Login requested for unknown provider {provider!r}")
            if not self._directory.is_new_tenant_hint(hint):
                tenant = self._directory.find_active_by_slug(hint)
                if tenant is None:
                    raise TenantNotFound(f"Login requested for unknown tenant {hint!r}")
                hint = tenant.slug

            pending = await self._state_tokens.issue(
                hint, provider=provider, auth_tenant_id=auth_tenant_id
            )
            url = self._oidc_client.build_authorization_url(
                pending.token, pending.nonce, provider=pending.provider
            )
        except SignInError as exc:
            trace.fail(exc)
            raise

        trace.advance(AuthFlowState.STATE_ISSUED, tenant_hint=hint, provider=provider)
        return LoginRedirect(url=url, state=pending.token)

    async def handle_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        previous_session_id: str | None = None,
    ) -> CallbackResult:
        """Complete a sign-in from the provider callback.

        Raises:
            SignInError: The subclass names the step that failed
        """
        trace = _FlowTrace()
        trace.advance(AuthFlowState.CALLBACK_RECEIVED)
        try:
            return await self._complete(trace, code, state, error, previous_session_id)
        except SignInError as exc:
            trace.fail(exc)
            raise

    async def _complete(
        self,
        trace: _FlowTrace,
        code: str | None,
        state: str | None,
        error: str | None,
        previous_session_id: str | None,
    ) -> CallbackResult:
        if error:
            # Burn the state so the same redirect cannot be replayed
            if state:
                try:
                    await self._state_tokens.validate_and_consume(state)
                except SignInError as exc:
                    logger.debug("Denied callback carried an unusable state ({})", exc.code)
            raise ProviderDenied(f"Provider returned error={error}", provider_error_code=error)

        if not code or not state:
            raise StateNotFound("Callback without code or state")

        pending = await self._state_tokens.validate_and_consume(state)
        trace.advance(AuthFlowState.STATE_VALIDATED, tenant_hint=pending.tenant_hint)

        tokens = await self._oidc_client.exchange_code(code, provider=pending.provider)
        trace.advance(AuthFlowState.TOKEN_EXCHANGED)

        identity = await self._oidc_client.validate_identity_token(
            tokens.id_token,
            nonce=pending.nonce,
            provider=pending.provider,
            token_response=tokens,
        )
        trace.advance(AuthFlowState.IDENTITY_VALIDATED, provider=identity.provider)

        resolved = self._resolver.resolve(
            pending.tenant_hint, identity, session_auth_tenant_id=pending.auth_tenant_id
        )
        trace.advance(
            AuthFlowState.ACCOUNT_RESOLVED,
            account_id=resolved.account.id,
            tenant_id=resolved.tenant.id,
        )

        if resolved.account.tenant_id != resolved.tenant_id:
            raise AccountProvisioningFailed("Resolved account is outside the session tenant")

        handle = await self._sessions.commit(
            user_id=resolved.account.id,
            tenant_id=resolved.tenant_id,
            tenant_slug=resolved.tenant_slug,
            previous_session_id=previous_session_id,
            is_super_admin=resolved.account.is_super_admin,
            provider=identity.provider,
        )
        if not await self._sessions.verify(handle):
            await self._sessions.destroy(handle.session_id)
            raise SessionCommitFailed("Committed session did not verify")
        trace.advance(AuthFlowState.SESSION_COMMITTED)

        return CallbackResult(
            handle=handle,
            redirect_url=self.landing_url(resolved),
            resolved=resolved,
        )

    @staticmethod
    def landing_url(resolved: ResolvedAccount) -> str:
        landing = get_config().auth.landing
        if resolved.account.is_super_admin:
            return sanitize_local_path(landing.super_admin_path)
        return sanitize_local_path(landing.dashboard_path.format(tenant_slug=resolved.tenant_slug))
