"""Core services exports."""

from src.signin.core.storage.session_storage import (
    InMemorySessionStorage,
    RedisSessionStorage,
)

from .auth_flow import AuthFlowController, AuthFlowState, CallbackResult, LoginRedirect
from .database.db_session import DbSessionService
from .identity import IdentityResolver
from .jwt.jwks import JWKSCache, JWKSCacheInMemory, JwksService
from .jwt.jwt_verify import JwtVerificationService
from .oidc_client_service import OidcClientService, TokenResponse
from .session import SessionHandle, SessionManager, StateTokenManager
from .tenant import TenantDirectory

__all__ = [
    # Flow
    "AuthFlowController",
    "AuthFlowState",
    "CallbackResult",
    "LoginRedirect",
    # JWT Services
    "JWKSCache",
    "JWKSCacheInMemory",
    "JwksService",
    "JwtVerificationService",
    # OIDC Services
    "OidcClientService",
    "TokenResponse",
    # Session Services
    "SessionHandle",
    "SessionManager",
    "StateTokenManager",
    # Tenants and accounts
    "IdentityResolver",
    "TenantDirectory",
    # Session Storage for testing
    "InMemorySessionStorage",
    "RedisSessionStorage",
    # Database Service
    "DbSessionService",
]
