"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from deadblock import __version__
from deadblock.api.core.config import Settings, get_settings
from deadblock.api.core.errors import register_error_handlers
from deadblock.api.core.logging import setup_logging
from deadblock.api.core.store import get_database_manager, get_store, init_store, set_store
from deadblock.api.routers import matchmaking_router, rematch_router
from deadblock.shared.database import DatabaseManager
from deadblock.shared.errors import MatchError
from deadblock.shared.services import QueueManager
from deadblock.shared.store import Credential, Store

logger = logging.getLogger(__name__)

# Track server start time
_start_time: float = 0.0
_pool_heartbeat_task: asyncio.Task | None = None
_db_retry_task: asyncio.Task | None = None
_purge_task: asyncio.Task | None = None


async def _pool_heartbeat_loop(db_manager: DatabaseManager) -> None:
    """Periodically ping the DB pool to keep idle connections alive.

    Constraint chain: heartbeat(15s) < max_inactive(30s) < Supavisor(~30-60s).
    On failure, backs off to avoid flooding logs and wasting connections.
    """
    interval = 15
    fail_count = 0
    while True:
        await asyncio.sleep(interval)
        if not db_manager.is_connected:
            continue
        try:
            async with db_manager.pool.acquire(timeout=30.0) as conn:
                await conn.fetchval("SELECT 1")
            if fail_count > 0:
                logger.info(f"Pool heartbeat recovered after {fail_count} failures")
            fail_count = 0
            interval = 15
        except asyncio.CancelledError:
            break
        except Exception as e:
            fail_count += 1
            if fail_count <= 3:
                logger.warning(f"Pool heartbeat failed ({fail_count}): {type(e).__name__}: {e}")
            elif fail_count == 4:
                logger.warning(
                    f"Pool heartbeat still failing ({fail_count}x), suppressing until recovery"
                )
            # Backoff: 15s → 30s → 60s → 120s max
            interval = min(15 * (2 ** min(fail_count - 1, 3)), 120)


async def _db_retry_loop(db_manager: DatabaseManager) -> None:
    """Background loop to retry DB connection after startup timeout."""
    delay = 5
    max_delay = 60
    while True:
        await asyncio.sleep(delay)
        if db_manager.is_connected:
            logger.info("DB retry loop: pool already connected, stopping")
            return
        try:
            await db_manager.connect()
            logger.info("Database connected (background retry)")
            return
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.warning(
                f"DB background retry failed: {type(e).__name__}: {e}, next retry in {min(delay * 2, max_delay)}s"
            )
            delay = min(delay * 2, max_delay)


async def _stale_purge_loop(store: Store, settings: Settings) -> None:
    """Delete queue entries nobody has refreshed within queue_stale_after."""
    queue = QueueManager(store, stale_after=settings.queue_stale_after)
    credential = Credential(access_token=settings.supabase_service_key)
    while True:
        await asyncio.sleep(settings.stale_purge_interval)
        try:
            await queue.purge_stale(credential)
        except asyncio.CancelledError:
            break
        except MatchError as e:
            logger.warning(f"Stale queue purge failed: {type(e).__name__}: {e}")


async def _connect_database(db_manager: DatabaseManager) -> None:
    """Wait up to 30s for the pool; on timeout keep retrying in the background."""
    global _db_retry_task
    try:
        await asyncio.wait_for(db_manager.connect(), timeout=30)
        logger.info("Database connected")
    except TimeoutError:
        logger.warning("DB connection timed out during startup, retrying in background")
        _db_retry_task = asyncio.create_task(_db_retry_loop(db_manager))
    except Exception as e:
        logger.error(
            f"DB connection failed during startup: {type(e).__name__}: {e}, retrying in background"
        )
        _db_retry_task = asyncio.create_task(_db_retry_loop(db_manager))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time, _pool_heartbeat_task, _db_retry_task, _purge_task
    _start_time = time.time()

    settings = get_settings()

    # Startup
    logger.info("Starting Deadblock API server")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Frontend URL: {settings.frontend_url}")

    try:
        store = get_store()
        logger.info("Using pre-configured store")
    except RuntimeError:
        store = init_store(settings)

    db_manager = get_database_manager()
    if db_manager is not None:
        await _connect_database(db_manager)
        # Pool heartbeat to prevent Supavisor idle kills
        _pool_heartbeat_task = asyncio.create_task(_pool_heartbeat_loop(db_manager))

    if settings.enable_stale_purge and settings.supabase_service_key:
        _purge_task = asyncio.create_task(_stale_purge_loop(store, settings))
        logger.info(f"Stale queue purge started (interval={settings.stale_purge_interval}s)")
    elif settings.enable_stale_purge:
        logger.info("Stale queue purge disabled: SUPABASE_SERVICE_KEY not set")

    yield

    # Shutdown
    logger.info("Shutting down Deadblock API server")
    for task in (_purge_task, _db_retry_task, _pool_heartbeat_task):
        if task:
            task.cancel()
    _purge_task = _db_retry_task = _pool_heartbeat_task = None
    try:
        await store.close()
        logger.info("Store closed")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")
    finally:
        set_store(None)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings)

    app = FastAPI(
        title="Deadblock API",
        description="Matchmaking and rematch coordination for Deadblock online games",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(matchmaking_router.router)
    app.include_router(rematch_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": "deadblock-api", "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no store dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time),
        }

    @app.get("/status")
    async def status():
        """Readiness / status endpoint, includes DB health for the postgres store"""
        db_manager = get_database_manager()
        db_ok = None
        if db_manager is not None:
            db_ok = db_manager.is_connected and await db_manager.check_health()
        return {
            "service": "deadblock-api",
            "version": __version__,
            "uptime_seconds": int(time.time() - _start_time),
            "store_backend": settings.store_backend,
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
