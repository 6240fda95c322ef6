"""Matchmaking search loop for one player.

Each tick (``queue_poll_interval``):
  1. a new active game listing the player ends the search (an opponent
     paired with us);
  2. if the player is no longer queued and no game exists on two
     consecutive ticks, re-join (a pairing attempt died half way);
  3. otherwise attempt a pairing.

The search gives up after ``search_timeout`` seconds with
``SearchTimeoutError``. Lost races only count towards the log.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from deadblock.shared.errors import MatchError, SearchTimeoutError, UnauthenticatedError
from deadblock.shared.models.game import Game
from deadblock.shared.polling import PollingObserver
from deadblock.shared.repositories.game import GameRepository
from deadblock.shared.services.match_pairer import MatchPairer, PairingStatus
from deadblock.shared.services.queue_manager import QueueManager
from deadblock.shared.store import Credential, Store

if TYPE_CHECKING:
    from deadblock.api.core.config import Settings

logger = logging.getLogger(__name__)

# Missing-from-queue observations needed before re-joining
ORPHAN_TICKS = 2


class MatchmakingSearch:
    """Join the queue and poll until paired, cancelled or timed out."""

    def __init__(
        self,
        store: Store,
        credential: Credential,
        user_id: str,
        rating: int,
        *,
        queue: QueueManager | None = None,
        pairer: MatchPairer | None = None,
        poll_interval: float = 2.0,
        status_interval: float = 5.0,
        max_interval: float | None = 30.0,
        search_timeout: float | None = 300.0,
        on_queue_size: Callable[[int | None], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> None:
        self.credential = credential
        self.user_id = user_id
        self.rating = rating
        self.queue = queue or QueueManager(store)
        self.pairer = pairer or MatchPairer(store, self.queue)
        self.games = GameRepository(store)
        self.poll_interval = poll_interval
        self.status_interval = status_interval
        self.max_interval = max_interval
        self.search_timeout = search_timeout
        self.on_queue_size = on_queue_size
        self.on_error = on_error

        self.lost_races = 0
        self.rejoins = 0
        self._orphan_ticks = 0
        self._known_games: set[str] = set()
        self._observers: list[PollingObserver] = []
        self._result: asyncio.Future[Game] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Store,
        credential: Credential,
        user_id: str,
        rating: int,
        **kwargs: Any,
    ) -> MatchmakingSearch:
        """Build a search with the configured cadence, timeout and rating window."""
        queue = kwargs.pop("queue", None) or QueueManager(
            store, stale_after=settings.queue_stale_after
        )
        kwargs.setdefault(
            "pairer", MatchPairer(store, queue, max_rating_gap=settings.max_rating_gap)
        )
        kwargs.setdefault("poll_interval", settings.queue_poll_interval)
        kwargs.setdefault("status_interval", settings.queue_status_interval)
        kwargs.setdefault("max_interval", settings.poll_max_interval)
        kwargs.setdefault("search_timeout", settings.search_timeout)
        return cls(store, credential, user_id, rating, queue=queue, **kwargs)

    async def run(self) -> Game:
        """Search until a game exists, then leave the queue however it ended.

        A re-join can race a slow pairing that still delivers its game, so
        the queue row is removed even after a match.
        """
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        try:
            self._known_games = {
                g.id for g in await self.games.find_active_for_player(self.credential, self.user_id)
            }
            await self.queue.join(self.credential, self.user_id, self.rating)
            self._start_observers()
            try:
                game = await asyncio.wait_for(asyncio.shield(self._result), self.search_timeout)
            except TimeoutError:
                logger.info(
                    f"{self.user_id} search timed out after {self.search_timeout}s "
                    f"(lost races={self.lost_races}, rejoins={self.rejoins})"
                )
                raise SearchTimeoutError(
                    f"No opponent found within {self.search_timeout:.0f} seconds"
                ) from None
            return game
        finally:
            self.stop()
            await self._leave()

    def stop(self) -> None:
        """Dispose the observers. ``run`` then raises ``CancelledError`` if still waiting."""
        for observer in self._observers:
            observer.dispose()
        self._observers.clear()
        if self._result is not None and not self._result.done():
            self._result.cancel()

    def _start_observers(self) -> None:
        search = PollingObserver(
            self._tick,
            self.poll_interval,
            key=lambda game: game.id if game else None,
            initial=None,
            on_error=self._on_tick_error,
            max_interval=self.max_interval,
            name=f"matchmaking:{self.user_id}",
        )
        self._observers.append(search)
        search.subscribe(self._on_game)

        if self.on_queue_size is not None:
            status = PollingObserver(
                lambda: self.queue.queue_size(self.credential),
                self.status_interval,
                initial=None,
                max_interval=self.max_interval,
                name=f"queue-size:{self.user_id}",
            )
            self._observers.append(status)
            status.subscribe(self.on_queue_size)

    async def _tick(self) -> Game | None:
        game = await self._find_new_game()
        if game is not None:
            return game

        if not await self.queue.is_queued(self.credential, self.user_id):
            self._orphan_ticks += 1
            if self._orphan_ticks < ORPHAN_TICKS:
                return None
            # Re-check: the game may have landed since the first read
            game = await self._find_new_game()
            if game is not None:
                return game
            logger.info(f"{self.user_id} fell out of the queue without a game, re-joining")
            await self.queue.join(self.credential, self.user_id, self.rating)
            self.rejoins += 1
            self._orphan_ticks = 0
            return None
        self._orphan_ticks = 0

        result = await self.pairer.attempt_pairing(self.credential, self.user_id, self.rating)
        if result.status == PairingStatus.MATCHED:
            return result.game
        if result.status == PairingStatus.REQUEUED:
            self.lost_races += 1
        elif result.status == PairingStatus.FAILED and result.error is not None:
            await self._on_tick_error(result.error)
        return None

    async def _find_new_game(self) -> Game | None:
        games = await self.games.find_active_for_player(self.credential, self.user_id)
        return next((g for g in games if g.id not in self._known_games), None)

    def _on_game(self, game: Game | None) -> None:
        if game is not None and self._result is not None and not self._result.done():
            logger.info(f"{self.user_id} matched into game {game.id}")
            self._result.set_result(game)

    async def _on_tick_error(self, error: Exception) -> None:
        if isinstance(error, UnauthenticatedError):
            if self._result is not None and not self._result.done():
                self._result.set_exception(error)
            return
        if self.on_error is not None:
            result = self.on_error(error)
            if asyncio.iscoroutine(result):
                await result

    async def _leave(self) -> None:
        try:
            await self.queue.leave(self.credential, self.user_id)
        except MatchError as e:
            # The stale-entry purge removes it eventually
            logger.warning(f"{self.user_id} could not leave the queue: {e}")
