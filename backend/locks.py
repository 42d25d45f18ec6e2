"""Per-item reservation locks for the drag/drop games (Trifft, Sortieren).

Locks are advisory: they keep two players from dragging the same item at the
same time, and they always expire after ``config.LOCK_TTL_MS`` so a player who
disconnects mid-drag cannot block an item forever. Expired locks are swept
lazily whenever a mutator touches the lock table.

Host-only actions (mark, clear) do not consult locks.
"""
from typing import Optional

import config
import models
from errors import AuthorizationError, InputValidationError, PreconditionError
from models import Lock, Room

LOCKABLE_CATEGORIES = ("trifft", "sortieren")


def _now(now: Optional[int]) -> int:
    return models.now_ms() if now is None else now


def clear_expired_locks(game, now: Optional[int] = None) -> bool:
    """Null out every lock whose expiry has passed. Returns True if any were cleared."""
    if game is None or game.category not in LOCKABLE_CATEGORIES:
        return False
    now = _now(now)
    changed = False
    for item_id, lock in list(game.locks.items()):
        if lock is not None and lock.expires_at <= now:
            game.locks[item_id] = None
            changed = True
    return changed


def held_by_other(lock: Optional[Lock], player_id: str, now: int) -> bool:
    return lock is not None and lock.by != player_id and lock.expires_at > now


def reserve(game, item_id: str, player_id: str, now: Optional[int] = None) -> Lock:
    """Grant or refresh ``player_id``'s lock on ``item_id``."""
    now = _now(now)
    clear_expired_locks(game, now)
    if item_id not in game.locks:
        raise InputValidationError("bad_item")
    if held_by_other(game.locks[item_id], player_id, now):
        raise PreconditionError("already_locked")
    lock = Lock(by=player_id, expires_at=now + config.LOCK_TTL_MS)
    game.locks[item_id] = lock
    return lock


def require_owner_or_free(game, item_id: str, player_id: str, now: Optional[int] = None):
    if held_by_other(game.locks.get(item_id), player_id, _now(now)):
        raise AuthorizationError("not_owner")


def release(room: Room, game, item_id: str, player_id: str) -> bool:
    """Drop the lock if the caller holds it or is the host. False means nothing changed."""
    lock = game.locks.get(item_id)
    if lock is not None and (lock.by == player_id or room.is_host(player_id)):
        game.locks[item_id] = None
        return True
    return False
