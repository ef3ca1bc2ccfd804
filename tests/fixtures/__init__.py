"""Shared pytest fixtures for the sign-in tests."""

from .core import *  # noqa: F401,F403
from .oidc import *  # noqa: F401,F403
from .services import *  # noqa: F401,F403
