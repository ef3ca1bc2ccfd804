"""Browser sign-in endpoints: tenant-aware login, callback and session handling."""

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import BaseModel
from sqlmodel import Session

from src.signin.api.http.deps import (
    get_auth_flow_controller,
    get_current_session,
    get_db_session,
    get_optional_session,
    get_session_id,
    get_session_manager,
)
from src.signin.core.errors import SessionCommitFailed, SignInError
from src.signin.core.models.session import UserSession
from src.signin.core.services import AuthFlowController, IdentityResolver, SessionManager
from src.signin.core.services.tenant import TenantDirectory
from src.signin.entities.account import Account, AccountRepository
from src.signin.runtime.context import get_config

router = APIRouter(prefix="/web", tags=["auth-web"])


class SessionState(BaseModel):
    """Current session as seen by a web client."""

    user_id: str
    tenant_id: str
    tenant_slug: str
    is_super_admin: bool
    email: str | None = None
    display_name: str | None = None
    role: str | None = None
    expires_at: int


class TenantSummary(BaseModel):
    id: str
    slug: str
    name: str
    current: bool = False


class SwitchTenantRequest(BaseModel):
    tenant_slug: str


def _session_cookie_settings() -> dict[str, Any]:
    """Cookie flags for the session handle.

    SameSite=Lax still sends the cookie on the top-level GET navigation that
    brings the browser back from the provider.
    """
    config = get_config()
    return {
        "httponly": True,
        "secure": config.security.secure_cookies and config.app.environment == "production",
        "samesite": config.security.cookie_samesite,
        "path": "/",
    }


def _set_session_cookie(response: Response, session_id: str) -> None:
    config = get_config()
    response.set_cookie(
        key=config.security.session_cookie_name,
        value=session_id,
        max_age=config.app.session_max_age,
        **_session_cookie_settings(),
    )


def _failure_redirect(exc: SignInError) -> RedirectResponse:
    params = {"error": exc.code}
    if exc.retryable:
        params["retry"] = "1"
    failure_path = get_config().auth.landing.failure_path
    return RedirectResponse(
        url=f"{failure_path}?{urlencode(params)}", status_code=status.HTTP_302_FOUND
    )


def _log_failure(exc: SignInError) -> None:
    if exc.log_detail:
        logger.opt(exception=exc).error(
            "Sign-in failed: {} ({})", exc.code, exc.detail
        )
    else:
        logger.warning("Sign-in failed: {} ({})", exc.code, exc.detail)


@router.get("/login", response_model=None)
async def initiate_login(
    tenant: str,
    provider: str | None = None,
    response_format: str | None = Query(default=None, alias="format"),
    session: UserSession | None = Depends(get_optional_session),
    controller: AuthFlowController = Depends(get_auth_flow_controller),
) -> RedirectResponse | dict[str, str]:
    """Start a sign-in for the tenant named by ``tenant``.

    ``tenant`` is a tenant slug, a reserved alias, or the new-tenant
    sentinel. ``provider`` names one of the enabled OIDC providers and
    defaults to the configured default. With ``format=json`` the provider
    URL is returned instead of a redirect.
    """
    try:
        redirect = await controller.begin_login(
            tenant,
            auth_tenant_id=session.tenant_id if session else None,
            provider=provider,
        )
    except SignInError as exc:
        _log_failure(exc)
        if response_format == "json":
            raise HTTPException(status_code=exc.status_code, detail=exc.user_message) from None
        return _failure_redirect(exc)

    if response_format == "json":
        return {"authorization_url": redirect.url}
    return RedirectResponse(url=redirect.url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def handle_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    previous_session_id: str | None = Depends(get_session_id),
    controller: AuthFlowController = Depends(get_auth_flow_controller),
) -> RedirectResponse:
    """Complete a sign-in and land the browser in its tenant.

    Failures never set a session cookie; the browser is sent to the failure
    landing with the error code, and ``retry=1`` when logging in again may
    succeed.
    """
    # State, code and session ids are never logged
    logger.debug("Callback received")
    try:
        result = await controller.handle_callback(
            code, state, error=error, previous_session_id=previous_session_id
        )
    except SignInError as exc:
        _log_failure(exc)
        return _failure_redirect(exc)

    response = RedirectResponse(url=result.redirect_url, status_code=status.HTTP_302_FOUND)
    _set_session_cookie(response, result.handle.session_id)
    return response


@router.get("/me")
async def get_session_state(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db_session),
) -> SessionState:
    """Describe the signed-in account and its tenant."""
    account = AccountRepository(db).get(session.user_id)
    return SessionState(
        user_id=session.user_id,
        tenant_id=session.tenant_id,
        tenant_slug=session.tenant_slug,
        is_super_admin=session.is_super_admin,
        email=account.email if account else None,
        display_name=account.display_name if account else None,
        role=account.role.value if account else None,
        expires_at=session.expires_at,
    )


def _accessible_accounts(db: Session, account: Account) -> list[Account]:
    """Active accounts of the same person across tenants, matched by email."""
    accounts = [account] if account.is_active else []
    if account.email_normalized:
        accounts.extend(
            AccountRepository(db).find_by_email(
                account.email_normalized, exclude_tenant_id=account.tenant_id, active_only=True
            )
        )
    return accounts


@router.get("/tenants")
async def list_tenants(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db_session),
) -> list[TenantSummary]:
    """Tenants the signed-in user can switch to."""
    directory = TenantDirectory(db)
    if session.is_super_admin:
        tenants = directory.list_tenants(active_only=True)
    else:
        account = AccountRepository(db).get(session.user_id)
        if account is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        tenant_ids = [a.tenant_id for a in _accessible_accounts(db, account)]
        tenants = [t for t in directory.list_by_ids(tenant_ids) if t.is_active]

    return [
        TenantSummary(id=t.id, slug=t.slug, name=t.name, current=t.id == session.tenant_id)
        for t in tenants
    ]


@router.post("/switch-tenant")
async def switch_tenant(
    body: SwitchTenantRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db_session),
    session_manager: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Move the session to another tenant under a rotated session id."""
    directory = TenantDirectory(db)
    target = directory.find_active_by_slug(body.tenant_slug)
    if target is None:
        raise HTTPException(status_code=404, detail="Tenant not found")

    current = AccountRepository(db).get(session.user_id)
    if current is None or not current.is_active:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if current.tenant_id == target.id:
        account = current
    elif session.is_super_admin and current.is_super_admin:
        account = IdentityResolver(db).super_admin_account_in(target, current)
    else:
        account = next(
            (a for a in _accessible_accounts(db, current) if a.tenant_id == target.id),
            None,
        )
        if account is None:
            raise HTTPException(status_code=403, detail="No account in that tenant")

    try:
        handle = await session_manager.switch_tenant(session.id, account, target.slug)
    except SessionCommitFailed as exc:
        _log_failure(exc)
        raise HTTPException(status_code=exc.status_code, detail=exc.user_message) from None

    logger.info("Session moved to tenant {}", target.slug)
    response = JSONResponse(
        {
            "user_id": handle.user_id,
            "tenant_id": handle.tenant_id,
            "tenant_slug": handle.tenant_slug,
        }
    )
    _set_session_cookie(response, handle.session_id)
    return response


@router.post("/logout")
async def logout(
    response: Response,
    session_id: str | None = Depends(get_session_id),
    session_manager: SessionManager = Depends(get_session_manager),
) -> dict[str, str]:
    """Sign out. Always succeeds and always clears the cookie."""
    await session_manager.destroy(session_id)
    response.delete_cookie(get_config().security.session_cookie_name, path="/")
    return {"message": "Logged out"}
