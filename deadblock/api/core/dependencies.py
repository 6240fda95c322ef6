"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from deadblock.api.core.config import get_settings
from deadblock.api.core.store import get_store
from deadblock.api.services import AuthService
from deadblock.shared.cache import AsyncTTLCache
from deadblock.shared.repositories import ProfileRepository
from deadblock.shared.services import MatchPairer, QueueManager, RematchNegotiator
from deadblock.shared.store import Credential, Store

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


# ============================================
# Service Dependencies
# ============================================


def get_auth_service() -> AuthService:
    """Get AuthService instance (dependency injection)"""
    settings = get_settings()
    return AuthService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        audience=settings.jwt_audience or None,
    )


def get_store_or_503() -> Store:
    try:
        return get_store()
    except RuntimeError:
        raise HTTPException(status_code=503, detail="Store not ready") from None


_profiles: ProfileRepository | None = None


def get_profile_repository(store: Store = Depends(get_store_or_503)) -> ProfileRepository:
    """Shared ProfileRepository so the profile cache outlives a single request."""
    global _profiles
    if _profiles is None or _profiles.store is not store:
        settings = get_settings()
        _profiles = ProfileRepository(
            store, AsyncTTLCache(maxsize=512, ttl=settings.profile_cache_ttl)
        )
    return _profiles


def get_queue_manager(store: Store = Depends(get_store_or_503)) -> QueueManager:
    return QueueManager(store, stale_after=get_settings().queue_stale_after)


def get_match_pairer(
    store: Store = Depends(get_store_or_503),
    queue: QueueManager = Depends(get_queue_manager),
) -> MatchPairer:
    return MatchPairer(store, queue, max_rating_gap=get_settings().max_rating_gap)


def get_rematch_negotiator(
    store: Store = Depends(get_store_or_503),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> RematchNegotiator:
    return RematchNegotiator(store, ttl=get_settings().rematch_ttl, profiles=profiles)


# ============================================
# Authentication Dependencies
# ============================================


async def get_credential(
    bearer: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Credential:
    """Verify the bearer token and pass it on as the caller's store credential"""
    if bearer is None or not bearer.credentials:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not logged in")

    payload = get_auth_service().verify_token(bearer.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return Credential(access_token=bearer.credentials, user_id=str(payload["sub"]))
