"""Tenant lookup and provisioning with collision-free slug allocation."""

import re
import secrets
import unicodedata

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from src.signin.core.errors import SlugAllocationFailed
from src.signin.entities.tenant import Tenant, TenantRepository
from src.signin.runtime.context import get_config

MAX_SLUG_LENGTH = 48
FALLBACK_SLUG = "workspace"
# Attempts that look for the smallest free numeric suffix before random suffixes are used
DETERMINISTIC_ATTEMPTS = 3

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str | None) -> str:
    """Turn a display name into a URL-safe slug (``"Acme Corp."`` -> ``"acme-corp"``)."""
    if not value:
        return ""
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode()
    slug = _NON_SLUG.sub("-", ascii_value.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


class TenantDirectory:
    """Read access to tenants plus the tenant provisioner."""

    def __init__(self, db: Session):
        self._db = db
        self._tenants = TenantRepository(db)

    def is_new_tenant_hint(self, tenant_hint: str | None) -> bool:
        return (tenant_hint or "").strip().lower() == get_config().auth.new_tenant_hint

    def canonical_slug(self, tenant_hint: str) -> str:
        """Map a tenant hint through the reserved aliases."""
        hint = tenant_hint.strip().lower()
        return get_config().auth.tenant_aliases.get(hint, hint)

    def find_by_slug(self, tenant_hint: str) -> Tenant | None:
        if not tenant_hint:
            return None
        return self._tenants.get_by_slug(self.canonical_slug(tenant_hint))

    def find_by_id(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    def find_active_by_slug(self, tenant_hint: str) -> Tenant | None:
        """Like find_by_slug, but inactive tenants count as missing."""
        tenant = self.find_by_slug(tenant_hint)
        if tenant is None or not tenant.is_active:
            return None
        return tenant

    def list_tenants(self, active_only: bool = True) -> list[Tenant]:
        return self._tenants.list_all(active_only=active_only)

    def list_by_ids(self, tenant_ids: list[str]) -> list[Tenant]:
        return self._tenants.list_by_ids(tenant_ids)

    def _next_free_slug(self, base: str, reserved: set[str]) -> str:
        taken = self._tenants.list_slugs_with_prefix(base) | reserved
        if base not in taken:
            return base
        suffix = 1
        while f"{base}-{suffix}" in taken:
            suffix += 1
        return f"{base}-{suffix}"

    def create_with_unique_slug(
        self,
        base_name: str,
        display_name: str | None = None,
        external_workspace_id: str | None = None,
    ) -> Tenant:
        """Create a tenant under the first free slug derived from ``base_name``.

        A prior read cannot guarantee uniqueness under concurrency, so every
        candidate is inserted directly and a unique-constraint violation
        simply moves on to the next candidate.

        Raises:
            SlugAllocationFailed: If every attempt lost a race
        """
        auth_config = get_config().auth
        base = slugify(base_name) or FALLBACK_SLUG
        reserved = set(auth_config.reserved_slugs) | set(auth_config.tenant_aliases)

        for attempt in range(auth_config.slug_max_attempts):
            if attempt < DETERMINISTIC_ATTEMPTS:
                candidate = self._next_free_slug(base, reserved)
            else:
                candidate = f"{base}-{secrets.token_hex(3)}"

            tenant = Tenant(
                name=display_name or base_name or candidate,
                slug=candidate,
                external_workspace_id=external_workspace_id,
            )
            try:
                created = self._tenants.create(tenant)
            except IntegrityError:
                self._db.rollback()
                logger.info("Slug {} was taken concurrently, retrying", candidate)
                continue

            logger.info("Created tenant {} ({})", created.slug, created.id)
            return created

        raise SlugAllocationFailed(
            f"Could not allocate a slug for '{base}' after "
            f"{auth_config.slug_max_attempts} attempts"
        )
