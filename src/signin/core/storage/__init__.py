from .session_storage import (
    InMemorySessionStorage,
    RedisSessionStorage,
    SessionStorage,
    StorageError,
    get_session_storage,
)

__all__ = [
    "InMemorySessionStorage",
    "RedisSessionStorage",
    "SessionStorage",
    "StorageError",
    "get_session_storage",
]
