"""Resolution of a verified external identity to exactly one internal account."""

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from src.signin.core.errors import (
    AccountInactive,
    AccountProvisioningFailed,
    IdentityBoundToAnotherTenant,
    TenantNotFound,
    WorkspaceMismatch,
)
from src.signin.core.models.identity import ExternalIdentity, ResolvedAccount
from src.signin.core.security import (
    email_domain,
    generate_opaque_credential_hash,
    normalize_email,
)
from src.signin.core.services.tenant.tenant_directory import FALLBACK_SLUG, TenantDirectory
from src.signin.entities._base import utc_now
from src.signin.entities.account import Account, AccountRepository, AccountRole
from src.signin.entities.identity_link import IdentityLink, IdentityLinkRepository
from src.signin.entities.tenant import Tenant
from src.signin.runtime.context import get_config

# A failed account insert is retried once; failing again is terminal
CREATE_ATTEMPTS = 2


class IdentityResolver:
    """Determines the single account a sign-in authenticates as.

    Resolution order for a tenant hint:

    1. the new-tenant sentinel provisions a tenant and its owner account;
    2. the hint must name an active tenant;
    3. a tenant bound to a provider workspace only admits that workspace;
    4. a link for this identity in the tenant wins;
    5. a match in another tenant admits super-admins into their own tenant
       and fails closed for everyone else, unless
       ``auth.invites_admit_linked_identities`` lets a pre-provisioned
       account in the target tenant admit them;
    6. otherwise an unlinked account with the same email is linked, or a
       member account is created.

    Independently, accounts from an allow-listed email domain are elevated
    to super-admin.
    """

    def __init__(self, db: Session):
        self._db = db
        self._directory = TenantDirectory(db)
        self._accounts = AccountRepository(db)
        self._links = IdentityLinkRepository(db)

    def resolve(
        self,
        tenant_hint: str,
        identity: ExternalIdentity,
        session_auth_tenant_id: str | None = None,
    ) -> ResolvedAccount:
        """Resolve ``identity`` against ``tenant_hint``.

        Raises:
            TenantNotFound, WorkspaceMismatch, IdentityBoundToAnotherTenant,
            AccountInactive, AccountProvisioningFailed
        """
        if self._directory.is_new_tenant_hint(tenant_hint):
            resolved = self._provision_new_tenant(identity)
        else:
            resolved = self._resolve_in_tenant(tenant_hint, identity, session_auth_tenant_id)

        if not resolved.account.is_active:
            raise AccountInactive(f"Account {resolved.account.id} is deactivated")

        resolved.account = self._apply_elevated_domain(resolved.account, identity)

        if resolved.account.tenant_id != resolved.tenant.id:
            raise AccountProvisioningFailed(
                f"Resolved account {resolved.account.id} does not belong to tenant {resolved.tenant.id}"
            )

        logger.info(
            "Resolved identity to account {} in tenant {} (created={}, tenant_created={})",
            resolved.account.id,
            resolved.tenant.slug,
            resolved.created,
            resolved.tenant_created,
        )
        return resolved

    # ------------------------------------------------------------------ steps

    def _provision_new_tenant(self, identity: ExternalIdentity) -> ResolvedAccount:
        base_name, display_name = self._tenant_name_for(identity)
        tenant = self._directory.create_with_unique_slug(
            base_name,
            display_name=display_name,
            external_workspace_id=identity.provider_workspace_id,
        )
        created = self._create_account(
            tenant, identity, role=AccountRole.ADMIN, is_account_owner=True
        )
        account = self._link(created, identity, discard_on_conflict=True)
        return ResolvedAccount(
            account=account, tenant=tenant, created=account.id == created.id, tenant_created=True
        )

    def _resolve_in_tenant(
        self,
        tenant_hint: str,
        identity: ExternalIdentity,
        session_auth_tenant_id: str | None,
    ) -> ResolvedAccount:
        tenant = self._directory.find_active_by_slug(tenant_hint)
        if tenant is None:
            raise TenantNotFound(f"No active tenant for hint {tenant_hint!r}")

        if (
            tenant.external_workspace_id
            and identity.provider_workspace_id
            and tenant.external_workspace_id != identity.provider_workspace_id
        ):
            raise WorkspaceMismatch(
                f"Tenant {tenant.slug} is bound to workspace {tenant.external_workspace_id}, "
                f"identity came from {identity.provider_workspace_id}"
            )

        link = self._links.get_for_tenant(
            identity.provider, identity.provider_user_id, tenant.id
        )
        if link is not None:
            account = self._account_for_link(link)
            return ResolvedAccount(account=self._sync_profile(account, link, identity), tenant=tenant)

        email = self._matchable_email(identity)
        matches = self._cross_tenant_matches(identity, email, exclude_tenant_id=tenant.id)

        privileged = next((a for a in matches if a.is_super_admin and a.is_active), None)
        if privileged is not None:
            return self._resolve_super_admin(privileged, identity, session_auth_tenant_id)

        invited = (
            self._unlinked_account_in_tenant(tenant.id, email, identity.provider)
            if email
            else None
        )

        if matches:
            if invited is None or not get_config().auth.invites_admit_linked_identities:
                raise IdentityBoundToAnotherTenant(
                    f"Identity {identity.provider}:{identity.provider_user_id} already belongs to "
                    f"tenant(s) {sorted({a.tenant_id for a in matches})}"
                )
            logger.info(
                "Identity known in another tenant admitted to {} by invited account {}",
                tenant.slug,
                invited.id,
            )

        if invited is not None:
            account = self._link(invited, identity)
            return ResolvedAccount(account=self._sync_profile(account, None, identity), tenant=tenant)

        created = self._create_account(tenant, identity, role=AccountRole.MEMBER)
        account = self._link(created, identity, discard_on_conflict=True)
        return ResolvedAccount(account=account, tenant=tenant, created=account.id == created.id)

    def _resolve_super_admin(
        self,
        privileged: Account,
        identity: ExternalIdentity,
        session_auth_tenant_id: str | None,
    ) -> ResolvedAccount:
        if session_auth_tenant_id and session_auth_tenant_id != privileged.tenant_id:
            tenant = self._directory.find_by_id(session_auth_tenant_id)
            if tenant is None or not tenant.is_active:
                raise TenantNotFound(f"Authenticated tenant {session_auth_tenant_id} not found")
            account = self.super_admin_account_in(tenant, privileged, identity)
            logger.info("Super-admin {} entering tenant {}", privileged.id, tenant.slug)
            return ResolvedAccount(account=account, tenant=tenant)

        tenant = self._directory.find_by_id(privileged.tenant_id)
        if tenant is None:
            raise AccountProvisioningFailed(f"Account {privileged.id} references a missing tenant")
        link = self._links.get_for_tenant(identity.provider, identity.provider_user_id, tenant.id)
        if link is None:
            self._link(privileged, identity)
        logger.info("Super-admin {} signed in to home tenant {}", privileged.id, tenant.slug)
        return ResolvedAccount(account=self._sync_profile(privileged, link, identity), tenant=tenant)

    def super_admin_account_in(
        self, tenant: Tenant, privileged: Account, identity: ExternalIdentity | None = None
    ) -> Account:
        """Find or mirror a super-admin's physical account in ``tenant``."""
        if identity is not None:
            link = self._links.get_for_tenant(identity.provider, identity.provider_user_id, tenant.id)
            if link is not None:
                return self._account_for_link(link)

        email = privileged.email_normalized
        if email:
            existing = self._accounts.get_by_tenant_email(tenant.id, email)
            if existing is not None:
                if identity is not None and self._links.get_for_tenant(
                    identity.provider, identity.provider_user_id, tenant.id
                ) is None:
                    self._link(existing, identity)
                return existing

        mirror = Account(
            tenant_id=tenant.id,
            email=privileged.email,
            email_normalized=email,
            display_name=privileged.display_name,
            avatar_url=privileged.avatar_url,
            role=AccountRole.ADMIN,
            is_super_admin=True,
            auth_provider=privileged.auth_provider,
            credential_hash=generate_opaque_credential_hash(),
        )
        try:
            account = self._accounts.create(mirror)
        except IntegrityError as exc:
            self._db.rollback()
            raise AccountProvisioningFailed("Could not mirror super-admin account") from exc
        if identity is not None:
            account = self._link(account, identity, discard_on_conflict=True)
        return account

    def _apply_elevated_domain(self, account: Account, identity: ExternalIdentity) -> Account:
        auth_config = get_config().auth
        allowed = {d.lower() for d in auth_config.super_admin_domains}
        domain = email_domain(self._matchable_email(identity))
        if not domain or domain not in allowed:
            return account

        changed = False
        if not account.is_super_admin:
            account.is_super_admin = True
            changed = True
        if not account.role.at_least(AccountRole.ADMIN):
            account.role = AccountRole.ADMIN
            changed = True
        if changed:
            account = self._accounts.update(account)
            logger.info("Elevated account {} to super-admin by email domain", account.id)
        return account

    # ---------------------------------------------------------------- helpers

    def _matchable_email(self, identity: ExternalIdentity) -> str | None:
        if get_config().auth.require_verified_email and not identity.email_verified:
            return None
        return normalize_email(identity.email)

    def _tenant_name_for(self, identity: ExternalIdentity) -> tuple[str, str]:
        """Derive ``(slug base, display name)`` for a tenant created at sign-in."""
        public_domains = {d.lower() for d in get_config().auth.public_email_domains}
        domain = email_domain(identity.email)
        if domain and domain not in public_domains:
            label = domain.split(".")[0]
            return label, identity.workspace_name or label.capitalize()
        if identity.display_name:
            return identity.display_name, identity.workspace_name or identity.display_name
        return FALLBACK_SLUG, identity.workspace_name or "My Workspace"

    def _cross_tenant_matches(
        self, identity: ExternalIdentity, email: str | None, exclude_tenant_id: str
    ) -> list[Account]:
        """Accounts outside the target tenant that belong to this identity.

        Backed by the global ``(provider, provider_user_id)`` and email
        indexes, so the cost does not grow with the number of tenants.
        """
        links = self._links.find_by_provider_user(
            identity.provider, identity.provider_user_id, exclude_tenant_id=exclude_tenant_id
        )
        linked_ids = [link.account_id for link in links]
        matches = self._accounts.get_many(linked_ids)

        if email:
            by_email = [
                a
                for a in self._accounts.find_by_email(email, exclude_tenant_id=exclude_tenant_id)
                if a.id not in linked_ids
            ]
            with_provider = self._links.account_ids_with_provider(
                identity.provider, [a.id for a in by_email]
            )
            matches.extend(a for a in by_email if a.id not in with_provider)
        return matches

    def _unlinked_account_in_tenant(
        self, tenant_id: str, email: str, provider: str
    ) -> Account | None:
        candidates = self._accounts.find_by_tenant_email(tenant_id, email)
        linked = self._links.account_ids_with_provider(provider, [a.id for a in candidates])
        return next((a for a in candidates if a.id not in linked), None)

    def _account_for_link(self, link: IdentityLink) -> Account:
        account = self._accounts.get(link.account_id)
        if account is None:
            raise AccountProvisioningFailed(f"Identity link {link.id} points to a missing account")
        return account

    def _create_account(
        self,
        tenant: Tenant,
        identity: ExternalIdentity,
        role: AccountRole,
        is_account_owner: bool = False,
    ) -> Account:
        # Unverified addresses are kept for display but never indexed for matching
        email = self._matchable_email(identity)
        for _ in range(CREATE_ATTEMPTS):
            try:
                return self._accounts.create(
                    Account(
                        tenant_id=tenant.id,
                        email=identity.email,
                        email_normalized=email,
                        display_name=identity.display_name,
                        avatar_url=identity.avatar_url,
                        role=role,
                        is_account_owner=is_account_owner,
                        auth_provider=identity.provider,
                        credential_hash=generate_opaque_credential_hash(),
                    )
                )
            except IntegrityError:
                self._db.rollback()
                logger.warning("Account insert in tenant {} failed, retrying", tenant.slug)
        raise AccountProvisioningFailed(
            f"Account creation in tenant {tenant.slug} failed {CREATE_ATTEMPTS} times"
        )

    def _link(
        self, account: Account, identity: ExternalIdentity, discard_on_conflict: bool = False
    ) -> Account:
        """Link ``identity`` to ``account``; returns the account that owns the link.

        With ``discard_on_conflict`` a freshly created ``account`` is deleted
        when a concurrent request linked the identity to another account.
        """
        link = IdentityLink(
            provider=identity.provider,
            provider_user_id=identity.provider_user_id,
            account_id=account.id,
            tenant_id=account.tenant_id,
            workspace_id=identity.provider_workspace_id,
            email=identity.email,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
            last_login_at=utc_now(),
        )
        try:
            self._links.create(link)
            return account
        except IntegrityError as exc:
            self._db.rollback()
            winner = self._links.get_for_tenant(
                identity.provider, identity.provider_user_id, account.tenant_id
            )
            if winner is None:
                raise AccountProvisioningFailed("Identity link insert failed") from exc
            if winner.account_id == account.id:
                return account
            if discard_on_conflict:
                self._accounts.delete(account.id)
            return self._account_for_link(winner)

    def _sync_profile(
        self, account: Account, link: IdentityLink | None, identity: ExternalIdentity
    ) -> Account:
        """Refresh mutable profile fields from the latest provider claims."""
        if link is not None:
            link.email = identity.email or link.email
            link.display_name = identity.display_name or link.display_name
            link.avatar_url = identity.avatar_url or link.avatar_url
            link.workspace_id = identity.provider_workspace_id or link.workspace_id
            link.last_login_at = utc_now()
            self._links.update_profile(link)

        changed = False
        if identity.display_name and identity.display_name != account.display_name:
            account.display_name = identity.display_name
            changed = True
        if identity.avatar_url and identity.avatar_url != account.avatar_url:
            account.avatar_url = identity.avatar_url
            changed = True
        if not account.email and identity.email:
            account.email = identity.email
            account.email_normalized = self._matchable_email(identity)
            changed = True
        if not changed:
            return account
        return self._accounts.update(account)
