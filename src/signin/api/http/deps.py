"""FastAPI dependency implementations."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from src.signin.api.http.app_data import ApplicationDependencies
from src.signin.core.models.session import UserSession
from src.signin.core.services import (
    AuthFlowController,
    OidcClientService,
    SessionManager,
    StateTokenManager,
)
from src.signin.runtime.context import get_config


def get_db_session(request: Request) -> Iterator[Session]:
    """Yield a database session that is closed after the request."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    db = app_deps.database_service.get_session()
    try:
        yield db
    finally:
        db.close()


def get_oidc_client_service(request: Request) -> OidcClientService:
    """Get the OIDC Client service instance."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    return app_deps.oidc_client_service


def get_state_token_manager(request: Request) -> StateTokenManager:
    """Get the state token manager instance."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    return app_deps.state_token_manager


def get_session_manager(request: Request) -> SessionManager:
    """Get the session manager instance."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    return app_deps.session_manager


def get_auth_flow_controller(
    db: Session = Depends(get_db_session),
    oidc_client_service: OidcClientService = Depends(get_oidc_client_service),
    state_token_manager: StateTokenManager = Depends(get_state_token_manager),
    session_manager: SessionManager = Depends(get_session_manager),
) -> AuthFlowController:
    """Build a flow controller bound to the request's database session."""
    return AuthFlowController(db, oidc_client_service, state_token_manager, session_manager)


def get_session_id(request: Request) -> str | None:
    return request.cookies.get(get_config().security.session_cookie_name)


async def get_optional_session(
    session_id: str | None = Depends(get_session_id),
    session_manager: SessionManager = Depends(get_session_manager),
) -> UserSession | None:
    """Return the live session or None.

    A session missing any part of the user/tenant triple counts as
    unauthenticated.
    """
    if not session_id:
        return None
    session = await session_manager.get(session_id)
    if session is None:
        return None
    if not (session.user_id and session.tenant_id and session.tenant_slug):
        return None
    return session


async def get_current_session(
    session: UserSession | None = Depends(get_optional_session),
) -> UserSession:
    """Require an authenticated, tenant-scoped session."""
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session
