import pytest

from src.signin.core.errors import SlugAllocationFailed
from src.signin.core.services import TenantDirectory
from src.signin.core.services.tenant.tenant_directory import slugify
from src.signin.entities.tenant import Tenant, TenantRepository


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Acme Corp.", "acme-corp"),
        ("  Ünïcödé Café ", "unicode-cafe"),
        ("--already-slugged--", "already-slugged"),
        ("!!!", ""),
        (None, ""),
        ("x" * 100, "x" * 48),
    ],
)
def test_slugify(value, expected):
    assert slugify(value) == expected


class TestLookup:
    def test_find_by_slug_is_case_insensitive(self, tenant_directory: TenantDirectory, acme_tenant):
        assert tenant_directory.find_by_slug(" ACME ").id == acme_tenant.id

    def test_alias_maps_to_real_slug(self, tenant_directory: TenantDirectory, session):
        default = TenantRepository(session).create(Tenant(name="Default", slug="default"))

        assert tenant_directory.find_by_slug("default-org").id == default.id

    def test_inactive_tenant_is_not_active(self, tenant_directory: TenantDirectory, session):
        TenantRepository(session).create(Tenant(name="Gone", slug="gone", is_active=False))

        assert tenant_directory.find_by_slug("gone") is not None
        assert tenant_directory.find_active_by_slug("gone") is None

    def test_new_tenant_hint(self, tenant_directory: TenantDirectory):
        assert tenant_directory.is_new_tenant_hint("NEW")
        assert not tenant_directory.is_new_tenant_hint("acme")
        assert not tenant_directory.is_new_tenant_hint(None)

    def test_list_tenants(self, tenant_directory: TenantDirectory, acme_tenant, beta_tenant, session):
        TenantRepository(session).create(Tenant(name="Gone", slug="gone", is_active=False))

        assert [t.slug for t in tenant_directory.list_tenants()] == ["acme", "beta"]
        assert len(tenant_directory.list_tenants(active_only=False)) == 3


class TestSlugAllocation:
    def test_base_slug_when_free(self, tenant_directory: TenantDirectory):
        tenant = tenant_directory.create_with_unique_slug("Startup Co", external_workspace_id="T_NEW")

        assert tenant.slug == "startup-co"
        assert tenant.name == "Startup Co"
        assert tenant.external_workspace_id == "T_NEW"

    def test_smallest_free_suffix(self, tenant_directory: TenantDirectory, acme_tenant, session):
        TenantRepository(session).create(Tenant(name="Acme 1", slug="acme-1"))

        assert tenant_directory.create_with_unique_slug("acme").slug == "acme-2"

    def test_reserved_slugs_are_skipped(self, tenant_directory: TenantDirectory):
        assert tenant_directory.create_with_unique_slug("Admin").slug == "admin-1"
        assert tenant_directory.create_with_unique_slug("default-org").slug == "default-org-1"

    def test_empty_name_falls_back(self, tenant_directory: TenantDirectory):
        assert tenant_directory.create_with_unique_slug("???").slug == "workspace"

    def test_stale_reads_still_yield_distinct_slugs(
        self, tenant_directory: TenantDirectory, monkeypatch
    ):
        # Every creator sees an empty directory, as concurrent requests would
        monkeypatch.setattr(
            tenant_directory._tenants, "list_slugs_with_prefix", lambda base: set()
        )

        slugs = [tenant_directory.create_with_unique_slug("acme").slug for _ in range(100)]

        assert len(set(slugs)) == 100
        assert slugs[0] == "acme"
        assert all(s.startswith("acme-") for s in slugs[1:])

    def test_allocation_gives_up(
        self, tenant_directory: TenantDirectory, acme_tenant, app_config, monkeypatch
    ):
        app_config.auth.slug_max_attempts = 3
        monkeypatch.setattr(
            tenant_directory._tenants, "list_slugs_with_prefix", lambda base: set()
        )

        with pytest.raises(SlugAllocationFailed):
            tenant_directory.create_with_unique_slug("acme")
