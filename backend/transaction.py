"""Optimistic read-modify-write loop for room documents.

``run_transaction`` is the only way room state changes. Each attempt fetches
the current document and its version, builds an independent ``Room`` snapshot
from a deep copy, runs the mutator against it and then writes it back with a
conditional update keyed on the version it read. A version mismatch means
another writer committed in between, so the attempt is replayed against the
fresh document. Two transactions that start from the same version can never
both commit.

Mutator contract:
    - return True or None: write the snapshot
    - return False: explicit no-op, nothing is written
    - raise RoomError: abort immediately, nothing is written, no retry
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union
import copy
import inspect
import logging

import config
from errors import ConflictError, NotFoundError, RoomError
from models import Room
from notifier import Channel
from store import StoreError, StoredDocument, VersionedDocumentStore

logger = logging.getLogger(__name__)

Mutator = Callable[[Room], Union[Optional[bool], Awaitable[Optional[bool]]]]


@dataclass
class TransactionResult:
    ok: bool
    state: Optional[Room] = None
    error: Optional[str] = None
    skipped: bool = False
    attempts: int = 0
    exception: Optional[RoomError] = None

    def unwrap(self) -> Room:
        """Return the state or raise the error that ended the transaction."""
        if self.exception is not None:
            raise self.exception
        if not self.ok:
            raise RoomError(self.error or "error")
        return self.state

    def as_response(self) -> dict:
        if self.ok:
            return {"ok": True}
        return {"ok": False, "error": self.error}


def _failure(exc: RoomError, attempts: int) -> TransactionResult:
    return TransactionResult(ok=False, error=exc.code, attempts=attempts, exception=exc)


def _snapshot(stored: StoredDocument, room_code: str) -> Room:
    document = copy.deepcopy(stored.document)
    document.setdefault("code", room_code)
    return Room.model_validate(document)


async def run_transaction(store: VersionedDocumentStore, room_code: str, mutator: Mutator,
                          channel: Optional[Channel] = None,
                          max_attempts: int = config.MAX_TRANSACTION_ATTEMPTS) -> TransactionResult:
    for attempt in range(1, max_attempts + 1):
        try:
            stored = await store.fetch(room_code)
        except StoreError as e:
            logger.error("Fetch of room %s failed: %s", room_code, e)
            return _failure(RoomError("store_unavailable", str(e)), attempt)
        if stored is None:
            return _failure(NotFoundError("room_not_found", f"Room {room_code} not found"), attempt)

        room = _snapshot(stored, room_code)
        try:
            outcome = mutator(room)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except RoomError as e:
            logger.info("Room %s: mutation rejected (%s)", room_code, e.code)
            return _failure(e, attempt)

        if outcome is False:
            return TransactionResult(ok=True, state=_snapshot(stored, room_code),
                                     skipped=True, attempts=attempt)

        try:
            version = await store.conditional_update(room_code, stored.version, room.to_document())
        except StoreError as e:
            logger.error("Write of room %s failed: %s", room_code, e)
            return _failure(RoomError("store_unavailable", str(e)), attempt)

        if version is not None:
            if channel is not None:
                try:
                    await channel.publish()
                except Exception:
                    # the write is committed; receivers will catch up on the next ping
                    logger.exception("Change notification for room %s failed", room_code)
            return TransactionResult(ok=True, state=room, attempts=attempt)

        logger.info("Room %s: version conflict (attempt %d/%d)", room_code, attempt, max_attempts)

    logger.warning("Room %s: giving up after %d version conflicts", room_code, max_attempts)
    return _failure(ConflictError(max_attempts), max_attempts)
