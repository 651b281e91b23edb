"""
Repository Layer Package.

Provides data-access abstractions over Supabase (remote identity tables)
and SQLite (local users).  Identity backends reach the stores through
repositories; they never query ``db.supabase`` tables or ``db.sqlite``
directly.

Usage:
    from brewnet.repositories.local_user_repository import LocalUserRepository
    from brewnet.repositories.remote_user_repository import RemoteUserRepository
"""

from brewnet.repositories.base_repository import BaseRepository
from brewnet.repositories.local_user_repository import LocalUserRepository, StoredCredentials
from brewnet.repositories.remote_user_repository import RemoteUserRepository

__all__ = [
    "BaseRepository",
    "LocalUserRepository",
    "RemoteUserRepository",
    "StoredCredentials",
]
