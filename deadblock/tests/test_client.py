"""
Tests for the client poll loops: the matchmaking search and the rematch
watchers, run against a shared in-memory store.
"""
import asyncio

import pytest

from deadblock.api.core.config import Settings
from deadblock.client import (
    MatchmakingSearch,
    watch_options,
    watch_pending_rematch,
    watch_rematch_request,
)
from deadblock.shared.errors import SearchTimeoutError, UnauthenticatedError
from deadblock.shared.models import RematchStatus
from deadblock.shared.repositories import GameRepository
from deadblock.shared.services import PairingStatus
from deadblock.shared.store import Table


async def wait_until(predicate, timeout=2.0):
    async def _poll():
        while not await predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


def make_search(store, player, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("status_interval", 0.01)
    kwargs.setdefault("max_interval", 0.05)
    kwargs.setdefault("search_timeout", 3.0)
    return MatchmakingSearch(store, player.credential, player.id, player.rating, **kwargs)


class TestMatchmakingSearch:
    async def test_two_players_end_in_the_same_game(self, store, queue, alice, bob):
        alice_search = make_search(store, alice)
        alice_task = asyncio.create_task(alice_search.run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        bob_search = make_search(store, bob, poll_interval=0.023)
        alice_game, bob_game = await asyncio.gather(alice_task, bob_search.run())

        assert alice_game.id == bob_game.id
        assert set(alice_game.player_ids) == {alice.id, bob.id}
        assert store.rows(Table.QUEUE_ENTRIES) == []

    async def test_existing_games_are_not_mistaken_for_a_match(
        self, store, queue, alice, bob, make_player
    ):
        carol = make_player("carol")
        old = await GameRepository(store).create(alice.credential, alice.id, carol.id)

        task = asyncio.create_task(make_search(store, alice).run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))
        await asyncio.sleep(0.05)
        assert not task.done()

        bob_game = await make_search(store, bob, poll_interval=0.023).run()
        alice_game = await task

        assert alice_game.id == bob_game.id != old.id

    async def test_timeout_leaves_the_queue(self, store, queue, alice):
        search = make_search(store, alice, search_timeout=0.05)

        with pytest.raises(SearchTimeoutError):
            await search.run()

        assert not await queue.is_queued(alice.credential, alice.id)

    async def test_stop_cancels_and_leaves_the_queue(self, store, queue, alice):
        search = make_search(store, alice)
        task = asyncio.create_task(search.run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        search.stop()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not await queue.is_queued(alice.credential, alice.id)

    async def test_rejoins_after_falling_out_of_the_queue(self, store, queue, alice):
        search = make_search(store, alice)
        task = asyncio.create_task(search.run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        # a pairing attempt consumed the row and died before creating a game
        await queue.repo.remove_by_user(alice.credential, alice.id)

        async def rejoined():
            return search.rejoins == 1 and await queue.is_queued(alice.credential, alice.id)

        await wait_until(rejoined)
        search.stop()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_failed_game_creation_heals_on_both_sides(self, store, queue, alice, bob):
        store.fail_next("insert", Table.GAMES)
        alice_task = asyncio.create_task(make_search(store, alice).run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        bob_game = await make_search(store, bob, poll_interval=0.023).run()
        alice_game = await alice_task

        assert alice_game.id == bob_game.id
        assert len(store.rows(Table.GAMES)) == 1

    async def test_reports_queue_size(self, store, queue, alice, bob):
        sizes = []
        await queue.join(bob.credential, bob.id, 5000)
        search = make_search(
            store, alice, on_queue_size=sizes.append, search_timeout=0.2
        )
        search.pairer.max_rating_gap = 100

        with pytest.raises(SearchTimeoutError):
            await search.run()

        assert 2 in sizes

    async def test_unauthenticated_ends_the_search(self, store, queue, alice):
        search = make_search(store, alice)
        task = asyncio.create_task(search.run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        store.fail_next("select", Table.GAMES, UnauthenticatedError("session expired"))

        with pytest.raises(UnauthenticatedError):
            await task

    async def test_late_game_after_rejoin_leaves_the_queue(
        self, store, queue, pairer, alice, bob, make_player
    ):
        games = GameRepository(store)
        search = make_search(store, alice)
        task = asyncio.create_task(search.run())
        await wait_until(lambda: queue.is_queued(alice.credential, alice.id))

        # a slow pairing consumed the row; alice re-joins before its game lands
        await queue.repo.remove_by_user(alice.credential, alice.id)

        async def rejoined():
            return search.rejoins == 1 and await queue.is_queued(alice.credential, alice.id)

        await wait_until(rejoined)
        late = await games.create(bob.credential, bob.id, alice.id)

        assert (await task).id == late.id
        assert not await queue.is_queued(alice.credential, alice.id)

        carol = make_player("carol")
        await queue.join(carol.credential, carol.id, carol.rating)
        result = await pairer.attempt_pairing(carol.credential, carol.id, carol.rating)

        assert result.status == PairingStatus.SEARCHING
        assert [g.id for g in await games.find_active_for_player(alice.credential, alice.id)] == [
            late.id
        ]

    async def test_built_from_settings(self, store, alice):
        settings = Settings(
            _env_file=None,
            store_backend="memory",
            jwt_secret_key="secret",
            queue_poll_interval=0.5,
            queue_status_interval=4.0,
            poll_max_interval=20.0,
            search_timeout=90.0,
            max_rating_gap=150,
            queue_stale_after=120.0,
        )

        search = MatchmakingSearch.from_settings(
            settings, store, alice.credential, alice.id, alice.rating
        )

        assert search.poll_interval == 0.5
        assert search.status_interval == 4.0
        assert search.max_interval == 20.0
        assert search.search_timeout == 90.0
        assert search.pairer.max_rating_gap == 150
        assert search.queue.stale_after == 120.0
        assert search.pairer.queue is search.queue


class TestRematchWatchers:
    async def test_sender_sees_acceptance_once(self, negotiator, finished_game, alice, bob):
        request = await negotiator.request_rematch(
            alice.credential, finished_game.id, alice.id, bob.id
        )
        seen = []
        dispose = watch_rematch_request(
            negotiator, alice.credential, request.id, seen.append, interval=0.01, initial=request
        )

        await negotiator.accept_rematch(bob.credential, request.id, bob.id)

        async def notified():
            return len(seen) > 0

        await wait_until(notified)
        await asyncio.sleep(0.05)
        dispose()

        assert len(seen) == 1
        assert seen[0].status == RematchStatus.ACCEPTED
        assert seen[0].new_game_id is not None

    async def test_pending_watch_follows_request_lifecycle(
        self, negotiator, finished_game, alice, bob
    ):
        seen = []
        dispose = watch_pending_rematch(
            negotiator, bob.credential, finished_game.id, seen.append, interval=0.01
        )

        request = await negotiator.request_rematch(
            alice.credential, finished_game.id, alice.id, bob.id
        )

        async def appeared():
            return len(seen) == 1

        await wait_until(appeared)
        await negotiator.cancel_rematch(alice.credential, request.id, alice.id)

        async def gone():
            return len(seen) == 2

        await wait_until(gone)
        dispose()

        assert seen[0].id == request.id
        assert seen[1] is None

    async def test_watch_options_follow_settings(self, negotiator, finished_game, alice, bob):
        settings = Settings(
            _env_file=None,
            store_backend="memory",
            jwt_secret_key="secret",
            rematch_poll_interval=0.01,
            poll_max_interval=0.05,
        )
        assert watch_options(settings) == {"interval": 0.01, "max_interval": 0.05}

        seen = []
        dispose = watch_pending_rematch(
            negotiator, bob.credential, finished_game.id, seen.append, **watch_options(settings)
        )
        await negotiator.request_rematch(alice.credential, finished_game.id, alice.id, bob.id)

        async def appeared():
            return len(seen) == 1

        await wait_until(appeared)
        dispose()
