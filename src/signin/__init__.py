"""Tenant-aware sign-in service.

Authenticates users through an external OpenID Connect provider and binds
each sign-in to exactly one account in exactly one tenant.
"""

__version__ = "0.1.0"
