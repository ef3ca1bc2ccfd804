from dataclasses import dataclass

from src.signin.core.services import (
    DbSessionService,
    JWKSCacheInMemory,
    JwksService,
    JwtVerificationService,
    OidcClientService,
    SessionManager,
    StateTokenManager,
)
from src.signin.core.storage import SessionStorage


@dataclass
class ApplicationDependencies:
    jwks_cache: JWKSCacheInMemory
    jwks_service: JwksService
    jwt_verify_service: JwtVerificationService
    oidc_client_service: OidcClientService
    session_storage: SessionStorage
    state_token_manager: StateTokenManager
    session_manager: SessionManager
    database_service: DbSessionService
