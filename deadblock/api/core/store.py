"""Store backend lifecycle for the API process.

Backends:
  - postgres : asyncpg pool, RLS claims set per transaction
  - rest     : PostgREST over httpx with the caller's token
  - memory   : in-process tables, for local development and tests
"""

import logging

from deadblock.api.core.config import Settings
from deadblock.shared.database import DatabaseManager, PoolConfig
from deadblock.shared.store import MemoryStore, Store
from deadblock.shared.store.postgres import PostgresStore
from deadblock.shared.store.rest import RestStore

logger = logging.getLogger(__name__)

# Global store instance
_store: Store | None = None
_db_manager: DatabaseManager | None = None


def build_store(settings: Settings) -> tuple[Store, DatabaseManager | None]:
    """Create the configured backend. The pool is not connected yet."""
    if settings.store_backend == "postgres":
        db_manager = DatabaseManager(
            settings.database_url, PoolConfig.for_service("api", ssl=settings.database_ssl)
        )
        return PostgresStore(db_manager), db_manager
    if settings.store_backend == "rest":
        return RestStore(settings.supabase_url, settings.supabase_anon_key), None
    logger.warning("Using in-memory store: data is lost on restart")
    return MemoryStore(), None


def init_store(settings: Settings) -> Store:
    """Initialize the global store"""
    global _store, _db_manager
    _store, _db_manager = build_store(settings)
    logger.info(f"Store initialized (backend={settings.store_backend})")
    return _store


def set_store(store: Store | None) -> None:
    """Replace the global store (tests inject a MemoryStore here)"""
    global _store, _db_manager
    _store = store
    _db_manager = None


def get_store() -> Store:
    """Get the global store instance"""
    if _store is None:
        raise RuntimeError("Store not initialized")
    return _store


def get_database_manager() -> DatabaseManager | None:
    """The asyncpg pool owner, or None for non-postgres backends"""
    return _db_manager
