"""Read-only repository for the profiles table."""

from __future__ import annotations

import logging

from deadblock.shared.cache import AsyncTTLCache, cached
from deadblock.shared.models.profile import DEFAULT_RATING, ProfileSummary
from deadblock.shared.store import Credential, Store, Table, eq

logger = logging.getLogger(__name__)

PROFILE_CACHE_TTL = 60.0


class ProfileRepository:
    """Opponent display metadata and ratings. Never mutated here."""

    def __init__(self, store: Store, cache: AsyncTTLCache | None = None) -> None:
        self.store = store
        # Profiles are readable by every authenticated user, so entries are shared across credentials
        self.cache = cache or AsyncTTLCache(maxsize=512, ttl=PROFILE_CACHE_TTL)
        self.get_summary = cached(  # type: ignore[method-assign]
            cache=self.cache,
            key_func=lambda credential, user_id: f"profile:{user_id}",
        )(self._load_summary)

    async def _load_summary(self, credential: Credential, user_id: str) -> ProfileSummary | None:
        rows = await self.store.select(
            Table.PROFILES, [eq("id", user_id)], credential=credential, limit=1
        )
        return ProfileSummary.from_row(rows[0]) if rows else None

    async def get_summaries(
        self, credential: Credential, user_ids: list[str]
    ) -> dict[str, ProfileSummary]:
        summaries: dict[str, ProfileSummary] = {}
        for user_id in dict.fromkeys(user_ids):
            summary = await self.get_summary(credential, user_id)
            if summary is not None:
                summaries[user_id] = summary
        return summaries

    async def get_rating(self, credential: Credential, user_id: str) -> int:
        summary = await self.get_summary(credential, user_id)
        return summary.rating if summary else DEFAULT_RATING
