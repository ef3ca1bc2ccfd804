from .identity import ExternalIdentity, ResolvedAccount
from .session import PendingAuthState, UserSession

__all__ = [
    "ExternalIdentity",
    "PendingAuthState",
    "ResolvedAccount",
    "UserSession",
]
