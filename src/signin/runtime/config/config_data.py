"""Pydantic models for parsing the config.yaml configuration file.

This module contains Pydantic models that correspond to the structure of config.yaml.
These models handle validation and type conversion of the YAML configuration data.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, computed_field


class CORSConfig(BaseModel):
    """CORS configuration for the application."""

    origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    allow_credentials: bool = True
    allow_methods: list[str] = Field(default=["GET", "POST", "OPTIONS"])
    allow_headers: list[str] = Field(default=["*"])


class RedisConfig(BaseModel):
    """Redis configuration model."""

    enabled: bool = Field(default=False, description="Enable Redis session storage")
    url: str = Field(default="", description="Redis connection URL")
    password: str | None = Field(
        default=None, description="Password for Redis authentication"
    )
    socket_timeout: float = Field(
        default=2.0, description="Socket connect/read timeout in seconds"
    )

    @computed_field
    @property
    def connection_string(self) -> str:
        """Construct the Redis connection string with password if provided."""
        if self.password and "@" not in self.url:
            parts = self.url.split("://", 1)
            if len(parts) == 2:
                scheme, rest = parts
                return f"{scheme}://:{self.password}@{rest}"
        return self.url


class OIDCProviderConfig(BaseModel):
    """OIDC provider configuration model."""

    authorization_endpoint: str = Field(description="OIDC authorization endpoint URL")
    token_endpoint: str = Field(description="OIDC token endpoint URL")
    issuer: str = Field(description="OIDC issuer URL")
    jwks_uri: str = Field(description="JWKS endpoint for ID token validation")
    scopes: list[str] = Field(
        default_factory=lambda: ["openid", "profile", "email"],
        description="OIDC scopes to request during authentication",
    )
    client_id: str = Field(description="Client ID for the OIDC provider")
    client_secret: str = Field(description="Client secret for the OIDC provider")
    redirect_uri: str = Field(description="Redirect URI registered with the provider")
    workspace_claim: str | None = Field(
        default="https://slack.com/team_id",
        description="Signed ID token claim carrying the provider workspace id",
    )
    timeout_seconds: float = Field(
        default=5.0, description="Timeout for token and JWKS requests"
    )
    enabled: bool = Field(default=True, description="Enable this provider")


class OIDCConfig(BaseModel):
    """OIDC configuration model."""

    providers: dict[str, OIDCProviderConfig] = Field(
        default_factory=dict, description="OIDC provider configurations"
    )
    default_provider: str = Field(
        default="slack", description="Provider used by the sign-in flow"
    )
    jwks_prefetch: bool = Field(
        default=True, description="Fetch provider JWKS at startup"
    )


class JWTConfig(BaseModel):
    """ID token validation configuration."""

    allowed_algorithms: list[str] = Field(
        default_factory=lambda: ["RS256", "RS512", "ES256", "ES384"],
        description="JWT algorithms allowed for token validation",
    )
    clock_skew: int = Field(default=60, description="Clock skew tolerance in seconds")
    jwks_cache_ttl: int = Field(default=3600, description="JWKS cache TTL in seconds")


class LandingConfig(BaseModel):
    """Post-login redirect targets."""

    super_admin_path: str = Field(
        default="/select-tenant", description="Landing for super-admin accounts"
    )
    dashboard_path: str = Field(
        default="/t/{tenant_slug}/dashboard",
        description="Landing for ordinary accounts; formatted with tenant_slug",
    )
    failure_path: str = Field(
        default="/login", description="Landing for failed sign-in attempts"
    )


class AuthFlowConfig(BaseModel):
    """Sign-in flow, tenant and identity resolution settings."""

    state_ttl_seconds: int = Field(
        default=600, description="Lifetime of a pending authorization state"
    )
    new_tenant_hint: str = Field(
        default="new", description="Tenant hint that requests a new tenant"
    )
    tenant_aliases: dict[str, str] = Field(
        default_factory=lambda: {"default-org": "default"},
        description="Reserved tenant hints mapped to real slugs",
    )
    reserved_slugs: list[str] = Field(
        default_factory=lambda: [
            "new",
            "admin",
            "api",
            "auth",
            "login",
            "logout",
            "select-tenant",
        ],
        description="Slugs never allocated to new tenants",
    )
    public_email_domains: list[str] = Field(
        default_factory=lambda: [
            "gmail.com",
            "googlemail.com",
            "outlook.com",
            "hotmail.com",
            "live.com",
            "yahoo.com",
            "icloud.com",
            "proton.me",
            "protonmail.com",
        ],
        description="Mail domains that never name a tenant",
    )
    super_admin_domains: list[str] = Field(
        default_factory=list,
        description="Email domains whose accounts are elevated to super-admin",
    )
    require_verified_email: bool = Field(
        default=True,
        description="Only match accounts by email when the provider verified it",
    )
    invites_admit_linked_identities: bool = Field(
        default=False,
        description=(
            "Let an identity linked in another tenant sign in to a tenant that "
            "pre-provisioned an account for its email"
        ),
    )
    slug_max_attempts: int = Field(
        default=10, description="Insert attempts before slug allocation fails"
    )
    landing: LandingConfig = Field(default_factory=LandingConfig)


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "plain"] = Field(default="plain", description="Log format")
    file: str | None = Field(default=None, description="Log file path")
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )


class DatabaseConfig(BaseModel):
    """Database configuration model."""

    url: str = Field(
        default="sqlite:///./signin.db", description="Database connection URL"
    )
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    pool_recycle: int = Field(default=1800, description="Pool recycle time in seconds")
    password_env_var: str | None = Field(
        default=None,
        description="Environment variable name containing database password",
    )
    password_file: str | None = Field(
        default=None,
        description="Path to file containing database password",
    )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @computed_field
    @property
    def password(self) -> str | None:
        """Resolve the database password from a secrets file or environment variable."""
        if self.password_file:
            try:
                with open(self.password_file) as f:
                    return f.read().strip()
            except OSError as e:
                raise ValueError("Failed to read database password from file.") from e
        if self.password_env_var:
            password = os.getenv(self.password_env_var)
            if not password:
                raise ValueError(
                    f"Environment variable {self.password_env_var} not set"
                )
            return password
        return None

    @computed_field
    @property
    def connection_string(self) -> str:
        """Construct the database connection string with password if provided."""
        from sqlalchemy.engine import make_url

        base_url = make_url(self.url)
        resolved_password = self.password
        if resolved_password and not base_url.password:
            base_url = base_url.set(password=resolved_password)
        return base_url.render_as_string(hide_password=False)


class AppConfig(BaseModel):
    """Application configuration model."""

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    host: str = Field(default="localhost", description="Application host")
    port: int = Field(default=8000, description="Application port")
    session_max_age: int = Field(
        default=86400, description="Session maximum age in seconds"
    )
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )

    @property
    def base_url(self) -> str:
        """Construct the base URL from host and port."""
        scheme = "https" if self.environment == "production" else "http"
        return f"{scheme}://{self.host}:{self.port}"


class SecurityConfig(BaseModel):
    """Cookie settings for the session handle."""

    session_cookie_name: str = Field(
        default="session_id", description="Name of the session cookie"
    )
    secure_cookies: bool = Field(
        default=True, description="Force secure cookies in production"
    )
    cookie_samesite: Literal["lax", "strict", "none"] = Field(
        default="lax", description="SameSite cookie attribute"
    )


class ConfigData(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    redis: RedisConfig = Field(
        default_factory=RedisConfig, description="Redis configuration"
    )
    oidc: OIDCConfig = Field(
        default_factory=OIDCConfig, description="OIDC configuration"
    )
    jwt: JWTConfig = Field(
        default_factory=JWTConfig, description="ID token validation configuration"
    )
    auth: AuthFlowConfig = Field(
        default_factory=AuthFlowConfig, description="Sign-in flow configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
