"""
Tests for the Match Pairer.

Tests the pairing protocol including:
- Opponent choice by rating distance and waiting time
- Committing a pair by consuming both queue rows
- Lost races and re-queueing
- Store failures in the middle of the protocol
- Many clients pairing at once against one store
"""
import asyncio
from datetime import UTC, datetime, timedelta

from deadblock.shared.errors import StoreUnavailableError
from deadblock.shared.services import MatchPairer, PairingStatus, choose_opponent
from deadblock.shared.store import Table

from .factories import QueueEntryFactory


class TestChooseOpponent:
    def test_closest_rating_wins(self):
        entries = [
            QueueEntryFactory(user_id="far", rating=1400),
            QueueEntryFactory(user_id="near", rating=1050),
            QueueEntryFactory(user_id="me", rating=1000),
        ]

        assert choose_opponent(entries, "me", 1000).user_id == "near"

    def test_ties_go_to_longest_waiting(self):
        now = datetime.now(UTC)
        entries = [
            QueueEntryFactory(user_id="late", rating=1050, joined_at=now),
            QueueEntryFactory(user_id="early", rating=950, joined_at=now - timedelta(seconds=30)),
        ]

        assert choose_opponent(entries, "me", 1000).user_id == "early"

    def test_never_chooses_self(self):
        entries = [QueueEntryFactory(user_id="me", rating=1000)]

        assert choose_opponent(entries, "me", 1000) is None

    def test_rating_gap_excludes_distant_players(self):
        entries = [QueueEntryFactory(user_id="far", rating=1400)]

        assert choose_opponent(entries, "me", 1000, max_rating_gap=300) is None
        assert choose_opponent(entries, "me", 1000, max_rating_gap=400).user_id == "far"


class TestAttemptPairing:
    async def test_two_waiting_players_are_paired(self, store, queue, pairer, alice, bob):
        await queue.join(alice.credential, alice.id, 1000)
        await queue.join(bob.credential, bob.id, 1020)

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.MATCHED
        assert result.game.player1_id == alice.id
        assert result.game.player2_id == bob.id
        assert result.game.current_player == 1
        assert store.rows(Table.QUEUE_ENTRIES) == []
        assert len(store.rows(Table.GAMES)) == 1

    async def test_alone_in_queue_keeps_searching(self, queue, pairer, alice):
        await queue.join(alice.credential, alice.id, 1000)

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.SEARCHING
        assert await queue.is_queued(alice.credential, alice.id)

    async def test_rating_gap_leaves_both_waiting(self, store, queue, alice, bob):
        pairer = MatchPairer(store, queue, max_rating_gap=10)
        await queue.join(alice.credential, alice.id, 1000)
        await queue.join(bob.credential, bob.id, 1020)

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.SEARCHING
        assert await queue.queue_size(alice.credential) == 2

    async def test_consumed_own_row_means_someone_paired_us(self, store, queue, pairer, alice, bob):
        await queue.join(bob.credential, bob.id, 1020)
        # alice's row is gone but bob is still listed

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.SEARCHING
        assert store.rows(Table.GAMES) == []
        assert await queue.is_queued(bob.credential, bob.id)

    async def test_lost_race_requeues_with_original_position(
        self, store, queue, pairer, make_player
    ):
        a = make_player(rating=1000)
        b = make_player(rating=1010)
        c = make_player(rating=1020)
        for p in (a, b, c):
            await queue.join(p.credential, p.id, p.rating)
        c_entry = await queue.get_entry(c.credential, c.id)

        results = await asyncio.gather(
            pairer.attempt_pairing(a.credential, a.id, a.rating),
            pairer.attempt_pairing(c.credential, c.id, c.rating),
        )

        statuses = sorted(r.status for r in results)
        assert statuses == [PairingStatus.MATCHED, PairingStatus.REQUEUED]
        assert len(store.rows(Table.GAMES)) == 1
        loser = c if results[1].status == PairingStatus.REQUEUED else a
        remaining = store.rows(Table.QUEUE_ENTRIES)
        assert [r["user_id"] for r in remaining] == [loser.id]
        if loser is c:
            assert remaining[0]["joined_at"] == c_entry.joined_at

    async def test_queue_read_failure_makes_no_progress(self, store, queue, pairer, alice, bob):
        await queue.join(alice.credential, alice.id, 1000)
        await queue.join(bob.credential, bob.id, 1020)
        store.fail_next("select", Table.QUEUE_ENTRIES)

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.FAILED
        assert isinstance(result.error, StoreUnavailableError)
        assert await queue.queue_size(alice.credential) == 2

    async def test_game_creation_failure_reports_failed(self, store, queue, pairer, alice, bob):
        await queue.join(alice.credential, alice.id, 1000)
        await queue.join(bob.credential, bob.id, 1020)
        store.fail_next("insert", Table.GAMES)

        result = await pairer.attempt_pairing(alice.credential, alice.id, 1000)

        assert result.status == PairingStatus.FAILED
        assert result.opponent_id == bob.id
        assert store.rows(Table.GAMES) == []


def _games_per_player(store):
    counts = {}
    for game in store.rows(Table.GAMES):
        for player_id in (game["player1_id"], game["player2_id"]):
            counts[player_id] = counts.get(player_id, 0) + 1
    return counts


class TestConcurrentPairing:
    async def test_no_player_ends_up_in_two_games_or_lost(self, store, queue, pairer, make_player):
        players = [make_player(rating=1000 + 10 * i) for i in range(6)]
        for p in players:
            await queue.join(p.credential, p.id, p.rating)

        for _ in range(4):
            waiting = {r["user_id"] for r in store.rows(Table.QUEUE_ENTRIES)}
            await asyncio.gather(
                *(
                    pairer.attempt_pairing(p.credential, p.id, p.rating)
                    for p in players
                    if p.id in waiting
                )
            )

            games = _games_per_player(store)
            queued = [r["user_id"] for r in store.rows(Table.QUEUE_ENTRIES)]
            assert all(count == 1 for count in games.values())
            assert len(queued) == len(set(queued))
            for p in players:
                # every player is either in exactly one game or still waiting
                assert (p.id in games) != (p.id in queued)

    async def test_staggered_clients_pair_everyone(self, store, queue, pairer, make_player):
        players = [make_player(rating=1000 + 10 * i) for i in range(4)]
        for p in players:
            await queue.join(p.credential, p.id, p.rating)

        for p in players:
            if await queue.is_queued(p.credential, p.id):
                await pairer.attempt_pairing(p.credential, p.id, p.rating)

        assert store.rows(Table.QUEUE_ENTRIES) == []
        assert _games_per_player(store) == {p.id: 1 for p in players}
