"""
Pytest configuration and shared fixtures.

This module provides fixtures for:
- An in-memory store shared by several simulated clients
- Player profiles and their credentials
- Service instances wired to the memory store
- A finished game to negotiate rematches for
"""
from dataclasses import dataclass

import pytest

from deadblock.shared.models import GameStatus
from deadblock.shared.repositories import GameRepository, ProfileRepository
from deadblock.shared.services import MatchPairer, QueueManager, RematchNegotiator
from deadblock.shared.store import Credential, MemoryStore, Table, eq

from .factories import ProfileRowFactory, make_token


@dataclass
class Player:
    id: str
    username: str
    rating: int
    credential: Credential


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return MemoryStore()


@pytest.fixture
def make_player(store):
    """Seed a profile and return the player with a signed credential."""

    def _make(username=None, rating=1000):
        kwargs = {"rating": rating}
        if username:
            kwargs["username"] = username
        row = store.seed(Table.PROFILES, ProfileRowFactory(**kwargs))
        return Player(
            id=row["id"],
            username=row["username"],
            rating=rating,
            credential=Credential(access_token=make_token(row["id"]), user_id=row["id"]),
        )

    return _make


@pytest.fixture
def alice(make_player):
    return make_player("alice", rating=1000)


@pytest.fixture
def bob(make_player):
    return make_player("bob", rating=1020)


@pytest.fixture
def queue(store):
    return QueueManager(store)


@pytest.fixture
def pairer(store, queue):
    return MatchPairer(store, queue)


@pytest.fixture
def negotiator(store):
    return RematchNegotiator(store, profiles=ProfileRepository(store))


@pytest.fixture
async def finished_game(store, alice, bob):
    """A completed game between alice and bob."""
    game = await GameRepository(store).create(alice.credential, alice.id, bob.id)
    await store.update(
        Table.GAMES,
        [eq("id", game.id)],
        {"status": GameStatus.COMPLETED.value, "winner_id": alice.id},
        credential=alice.credential,
    )
    game.status = GameStatus.COMPLETED
    return game
