"""Administrative commands for tenants, accounts and identity links."""

import asyncio

import typer
from rich.prompt import Confirm
from rich.table import Table

from src.signin.core.errors import SlugAllocationFailed
from src.signin.core.security import generate_opaque_credential_hash, normalize_email
from src.signin.core.services.session import SessionManager, StateTokenManager
from src.signin.core.services.tenant import TenantDirectory
from src.signin.core.storage import get_session_storage
from src.signin.entities.account import Account, AccountRepository, AccountRole
from src.signin.entities.identity_link import IdentityLinkRepository

from .utils import console, database_session, fail, get_database_service

db_app = typer.Typer(help="🗄️  Database commands")
tenants_app = typer.Typer(help="🏢 Tenant management")
accounts_app = typer.Typer(help="👤 Account management")
identities_app = typer.Typer(help="🔗 Identity link management")
maintenance_app = typer.Typer(help="🧹 Maintenance tasks")


@db_app.command("init")
def init_db() -> None:
    """Create all tables."""
    get_database_service().create_all()
    console.print("[green]✅ Database initialized[/green]")


@tenants_app.command("list")
def list_tenants(
    include_inactive: bool = typer.Option(
        False, "--all", "-a", help="Include deactivated tenants"
    ),
) -> None:
    """List tenants."""
    with database_session() as db:
        tenants = TenantDirectory(db).list_tenants(active_only=not include_inactive)

    if not tenants:
        console.print("[yellow]No tenants found[/yellow]")
        return

    table = Table(title="Tenants")
    table.add_column("Slug", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Workspace", style="blue")
    table.add_column("Active", style="yellow")
    table.add_column("ID", style="dim")
    for tenant in tenants:
        table.add_row(
            tenant.slug,
            tenant.name,
            tenant.external_workspace_id or "",
            "✅" if tenant.is_active else "❌",
            tenant.id,
        )
    console.print(table)
    console.print(f"\n[green]Found {len(tenants)} tenants[/green]")


@tenants_app.command("create")
def create_tenant(
    name: str = typer.Argument(..., help="Display name; the slug is derived from it"),
    workspace_id: str | None = typer.Option(
        None, "--workspace-id", "-w", help="Bind the tenant to a provider workspace"
    ),
) -> None:
    """Create a tenant under a unique slug."""
    with database_session() as db:
        try:
            tenant = TenantDirectory(db).create_with_unique_slug(
                name, display_name=name, external_workspace_id=workspace_id
            )
        except SlugAllocationFailed as e:
            raise fail(str(e)) from e
    console.print(f"[green]✅ Created tenant '{tenant.slug}' ({tenant.id})[/green]")


@accounts_app.command("invite")
def invite_account(
    tenant_slug: str = typer.Argument(..., help="Tenant to create the account in"),
    email: str = typer.Argument(..., help="Email the user will sign in with"),
    role: AccountRole = typer.Option(AccountRole.MEMBER, "--role", "-r", help="Account role"),
) -> None:
    """Pre-provision an account; the user's first sign-in links to it."""
    with database_session() as db:
        tenant = TenantDirectory(db).find_active_by_slug(tenant_slug)
        if tenant is None:
            raise fail(f"Tenant '{tenant_slug}' not found")
        accounts = AccountRepository(db)
        if accounts.get_by_tenant_email(tenant.id, normalize_email(email) or ""):
            raise fail(f"'{email}' already has an account in '{tenant.slug}'")
        account = accounts.create(
            Account(
                tenant_id=tenant.id,
                email=email,
                email_normalized=normalize_email(email),
                role=role,
                credential_hash=generate_opaque_credential_hash(),
            )
        )
    console.print(
        f"[green]✅ Invited {email} to '{tenant.slug}' as {account.role.value}[/green]"
    )


@accounts_app.command("grant-super-admin")
def grant_super_admin(
    tenant_slug: str = typer.Argument(..., help="Tenant of the account"),
    email: str = typer.Argument(..., help="Account email"),
    revoke: bool = typer.Option(False, "--revoke", help="Remove the flag instead"),
) -> None:
    """Mark an account as super-admin, allowed to sign in to any tenant."""
    with database_session() as db:
        tenant = TenantDirectory(db).find_by_slug(tenant_slug)
        if tenant is None:
            raise fail(f"Tenant '{tenant_slug}' not found")
        accounts = AccountRepository(db)
        account = accounts.get_by_tenant_email(tenant.id, normalize_email(email) or "")
        if account is None:
            raise fail(f"No account for '{email}' in '{tenant.slug}'")

        account.is_super_admin = not revoke
        if not revoke and not account.role.at_least(AccountRole.ADMIN):
            account.role = AccountRole.ADMIN
        accounts.update(account)

    action = "Revoked super-admin from" if revoke else "Granted super-admin to"
    console.print(f"[green]✅ {action} {email} in '{tenant.slug}'[/green]")


@identities_app.command("relink")
def relink_identity(
    provider: str = typer.Argument(..., help="Provider key, e.g. slack"),
    provider_user_id: str = typer.Argument(..., help="Subject of the external identity"),
    from_tenant: str = typer.Option(..., "--from-tenant", help="Tenant holding the link"),
    to_email: str = typer.Option(..., "--to-email", help="Email of the target account"),
    to_tenant: str | None = typer.Option(
        None, "--to-tenant", help="Tenant of the target account (defaults to --from-tenant)"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Move an identity link to another account.

    This is the explicit administrative merge; sign-in itself never
    re-points a link.
    """
    with database_session() as db:
        directory = TenantDirectory(db)
        source = directory.find_by_slug(from_tenant)
        target = directory.find_by_slug(to_tenant or from_tenant)
        if source is None or target is None:
            raise fail("Tenant not found")

        links = IdentityLinkRepository(db)
        link = links.get_for_tenant(provider, provider_user_id, source.id)
        if link is None:
            raise fail(f"No link for {provider}:{provider_user_id} in '{source.slug}'")

        account = AccountRepository(db).get_by_tenant_email(
            target.id, normalize_email(to_email) or ""
        )
        if account is None:
            raise fail(f"No account for '{to_email}' in '{target.slug}'")
        if link.account_id == account.id:
            console.print("[yellow]Link already points to that account[/yellow]")
            return
        if target.id != source.id and links.get_for_tenant(
            provider, provider_user_id, target.id
        ):
            raise fail(f"Identity is already linked in '{target.slug}'")

        if not force and not Confirm.ask(
            f"Re-point {provider}:{provider_user_id} to {to_email} in '{target.slug}'?"
        ):
            console.print("[yellow]Relink cancelled[/yellow]")
            return

        links.repoint(link.id, account.id, target.id)

    console.print(f"[green]✅ Linked {provider}:{provider_user_id} to {to_email}[/green]")


@maintenance_app.command("purge")
def purge_expired() -> None:
    """Remove expired state tokens and sessions."""

    async def _purge() -> tuple[int, int]:
        storage = await get_session_storage()
        states = await StateTokenManager(storage).purge_expired()
        sessions = await SessionManager(storage).purge_expired()
        return states, sessions

    states, sessions = asyncio.run(_purge())
    console.print(
        f"[green]✅ Purged {states} state tokens and {sessions} sessions[/green]"
    )
