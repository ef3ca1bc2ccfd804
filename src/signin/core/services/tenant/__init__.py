from .tenant_directory import TenantDirectory, slugify

__all__ = ["TenantDirectory", "slugify"]
