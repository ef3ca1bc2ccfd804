from .session_manager import SessionHandle, SessionManager
from .state_tokens import StateTokenManager

__all__ = ["SessionHandle", "SessionManager", "StateTokenManager"]
