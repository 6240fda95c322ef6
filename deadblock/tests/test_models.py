"""
Tests for the coordination records.

Covers row parsing from both store flavours (datetime objects from
asyncpg, ISO strings from PostgREST) and record validation.
"""
from datetime import UTC, datetime, timedelta

import pytest

from deadblock.shared.models import (
    BOARD_SIZE,
    DEFAULT_RATING,
    Game,
    GameStatus,
    ProfileSummary,
    QueueEntry,
    RematchRequest,
    RematchStatus,
    empty_board,
    new_game_row,
)

from .factories import GameFactory, RematchRequestFactory


class TestGame:
    def test_new_game_row_starts_empty_with_player_one(self):
        row = new_game_row("a", "b")

        assert row["board"] == empty_board()
        assert len(row["board"]) == BOARD_SIZE
        assert all(cell is None for r in row["board"] for cell in r)
        assert row["board_pieces"] == {}
        assert row["used_pieces"] == []
        assert row["current_player"] == 1
        assert row["status"] == "active"

    def test_new_game_row_rejects_same_player(self):
        with pytest.raises(ValueError):
            new_game_row("a", "a")

    def test_rejects_malformed_board(self):
        with pytest.raises(ValueError, match="board"):
            GameFactory(board=[[None] * 8] * 7)

    def test_rejects_invalid_current_player(self):
        with pytest.raises(ValueError, match="current_player"):
            GameFactory(current_player=3)

    def test_from_row_parses_iso_timestamps_and_ignores_extra_columns(self):
        row = {
            **new_game_row("a", "b"),
            "id": "g1",
            "created_at": "2024-05-01T12:00:00Z",
            "updated_at": "2024-05-01T12:00:00+00:00",
            "move_history": [],
        }

        game = Game.from_row(row)

        assert game.created_at == datetime(2024, 5, 1, 12, tzinfo=UTC)
        assert game.status == GameStatus.ACTIVE
        assert game.player_ids == ("a", "b")
        assert game.has_player("b")
        assert not game.has_player("c")


class TestQueueEntry:
    def test_from_row_coerces_rating(self):
        entry = QueueEntry.from_row({"user_id": "u", "rating": "1200", "joined_at": None})

        assert entry.rating == 1200
        assert entry.joined_at is None


class TestProfileSummary:
    def test_missing_rating_falls_back_to_default(self):
        summary = ProfileSummary.from_row({"id": "u", "username": "nia", "rating": None})

        assert summary.rating == DEFAULT_RATING
        assert summary.label == "nia"

    def test_label_prefers_display_name(self):
        summary = ProfileSummary(id="u", username="nia", display_name="Nia K.")

        assert summary.label == "Nia K."


class TestRematchRequest:
    def test_player_order_puts_first_player_in_seat_one(self):
        request = RematchRequestFactory(from_user_id="a", to_user_id="b", first_player_id="b")

        assert request.player_order() == ("b", "a")

    def test_opponent_of(self):
        request = RematchRequestFactory(from_user_id="a", to_user_id="b")

        assert request.opponent_of("a") == "b"
        assert request.opponent_of("b") == "a"
        assert request.involves("a")
        assert not request.involves("c")

    def test_expiry(self):
        now = datetime.now(UTC)
        request = RematchRequestFactory(expires_at=now + timedelta(seconds=5))

        assert request.is_live(now)
        assert request.is_expired(now + timedelta(seconds=5))
        assert not request.is_live(now + timedelta(seconds=6))

    def test_request_without_expiry_never_expires(self):
        request = RematchRequestFactory(expires_at=None)

        assert not request.is_expired(datetime.max.replace(tzinfo=UTC))

    def test_watch_key_tracks_status_and_new_game(self):
        request = RematchRequestFactory()
        accepted = RematchRequestFactory(status=RematchStatus.ACCEPTED, new_game_id="g2")

        assert request.watch_key == ("pending", None)
        assert accepted.watch_key == ("accepted", "g2")

    def test_from_row(self):
        request = RematchRequest.from_row(
            {
                "id": "r1",
                "game_id": "g1",
                "from_user_id": "a",
                "to_user_id": "b",
                "first_player_id": "a",
                "status": "declined",
                "new_game_id": None,
                "created_at": "2024-05-01T12:00:00+00:00",
                "updated_at": None,
                "expires_at": "2024-05-01T12:05:00+00:00",
            }
        )

        assert request.status == RematchStatus.DECLINED
        assert request.expires_at - request.created_at == timedelta(minutes=5)
