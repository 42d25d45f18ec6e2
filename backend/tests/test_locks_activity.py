"""Item locks, activity log and room document upgrades."""
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import AuthorizationError, InputValidationError, PreconditionError
from models import Lock, Player, Room, TrifftGame, Item
from activity import add_activity, visible_entries
import config
import locks
import models


def make_room():
    room = Room(code="ABCDE", host_id="host", players=[
        Player(id="host", name="Hosti", joined_at=1),
        Player(id="p1", name="Alice", joined_at=2),
        Player(id="p2", name="Bob", joined_at=3),
    ])
    room.game = TrifftGame(
        items=[Item(id="it_0", name="Pikachu"), Item(id="it_1", name="Evoli")],
        placements={"it_0": "pool", "it_1": "pool"},
        statuses={"it_0": "neutral", "it_1": "neutral"},
        locks={"it_0": None, "it_1": None},
    )
    return room


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

class TestReserve:
    def test_grant(self):
        room = make_room()
        lock = locks.reserve(room.game, "it_0", "p1", now=1000)
        assert lock.by == "p1"
        assert lock.expires_at == 1000 + config.LOCK_TTL_MS

    def test_other_player_is_refused(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        with pytest.raises(PreconditionError) as exc:
            locks.reserve(room.game, "it_0", "p2", now=2000)
        assert exc.value.code == "already_locked"
        assert room.game.locks["it_0"].by == "p1"

    def test_holder_refreshes(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        lock = locks.reserve(room.game, "it_0", "p1", now=5000)
        assert lock.expires_at == 5000 + config.LOCK_TTL_MS

    def test_expired_lock_is_taken_over(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        lock = locks.reserve(room.game, "it_0", "p2", now=1000 + config.LOCK_TTL_MS)
        assert lock.by == "p2"

    def test_unknown_item(self):
        room = make_room()
        with pytest.raises(InputValidationError) as exc:
            locks.reserve(room.game, "nope", "p1", now=1000)
        assert exc.value.code == "bad_item"

    def test_sweep_clears_every_expired_lock(self):
        room = make_room()
        room.game.locks["it_0"] = Lock(by="p1", expires_at=500)
        room.game.locks["it_1"] = Lock(by="p2", expires_at=5000)
        assert locks.clear_expired_locks(room.game, now=1000) is True
        assert room.game.locks["it_0"] is None
        assert room.game.locks["it_1"].by == "p2"
        assert locks.clear_expired_locks(room.game, now=1000) is False

    def test_uses_clock_by_default(self, monkeypatch):
        monkeypatch.setattr(models, "now_ms", lambda: 42)
        room = make_room()
        assert locks.reserve(room.game, "it_0", "p1").expires_at == 42 + config.LOCK_TTL_MS


class TestRelease:
    def test_holder_releases(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        assert locks.release(room, room.game, "it_0", "p1") is True
        assert room.game.locks["it_0"] is None

    def test_host_overrides(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        assert locks.release(room, room.game, "it_0", "host") is True

    def test_other_player_is_noop(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        assert locks.release(room, room.game, "it_0", "p2") is False
        assert room.game.locks["it_0"].by == "p1"

    def test_owner_check(self):
        room = make_room()
        locks.reserve(room.game, "it_0", "p1", now=1000)
        locks.require_owner_or_free(room.game, "it_0", "p1", now=2000)
        with pytest.raises(AuthorizationError) as exc:
            locks.require_owner_or_free(room.game, "it_0", "p2", now=2000)
        assert exc.value.code == "not_owner"
        locks.require_owner_or_free(room.game, "it_0", "p2", now=1000 + config.LOCK_TTL_MS)


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

class TestActivity:
    def test_newest_first_and_bounded(self):
        room = make_room()
        for i in range(config.MAX_ACTIVITY + 3):
            add_activity(room, f"event {i}")
        texts = [e.text for e in room.activity]
        assert len(texts) == config.MAX_ACTIVITY
        assert texts[0] == f"event {config.MAX_ACTIVITY + 2}"
        assert texts == sorted(texts, reverse=True)

    def test_entry_shape(self):
        room = make_room()
        entry = add_activity(room, "x" * 500)
        assert entry.id.startswith("a_")
        assert entry.ttl_ms == config.ACTIVITY_TTL_MS
        assert len(entry.text) == config.MAX_ACTIVITY_TEXT_LENGTH

    def test_ttl_counts_from_first_sight(self):
        room = make_room()
        entry = add_activity(room, "hello")
        entry.ts = 0  # writer's clock far in the past
        seen = {}
        assert visible_entries(room.activity, seen, now=100_000) == [entry]
        assert visible_entries(room.activity, seen, now=100_000 + entry.ttl_ms - 1) == [entry]
        assert visible_entries(room.activity, seen, now=100_000 + entry.ttl_ms) == []

    def test_forgets_entries_that_left_the_log(self):
        room = make_room()
        add_activity(room, "old")
        seen = {}
        visible_entries(room.activity, seen, now=0)
        room.activity = []
        visible_entries(room.activity, seen, now=1)
        assert seen == {}


# ---------------------------------------------------------------------------
# Document upgrade
# ---------------------------------------------------------------------------

class TestLegacyDocument:
    def test_legacy_host_and_player_rows(self):
        room = Room.model_validate({
            "code": "ABCDE",
            "hostPlayerId": "a",
            "players": [
                {"playerId": " a ", "name": "Ash", "role": "host"},
                {"playerId": "b", "name": "Brock"},
                {"playerId": "", "name": "Nobody"},
                {"playerId": "b", "name": "Brock 2"},
            ],
        })
        assert room.host_id == "a"
        assert [p.id for p in room.players] == ["a", "b"]
        assert room.player("b").name == "Brock 2"
        assert all(p.connected for p in room.players)
        assert room.player("a").is_host is True
        assert room.player("b").is_host is False

    def test_round_trip_uses_camel_case(self):
        room = make_room()
        doc = room.to_document()
        assert doc["hostId"] == "host"
        assert doc["players"][0]["joinedAt"] == 1
        assert doc["game"]["category"] == "trifft"
        assert Room.model_validate(doc).game.placements == {"it_0": "pool", "it_1": "pool"}

    def test_unknown_category_is_rejected(self):
        with pytest.raises(ValueError):
            Room.model_validate({"code": "ABCDE", "game": {"category": "bingo"}})

    def test_code_is_immutable(self):
        room = make_room()
        with pytest.raises(ValueError):
            room.code = "ZZZZZ"
