"""Room creation, join/leave/rejoin and host election."""
from dataclasses import dataclass
from typing import Callable, Optional
import asyncio
import logging
import random

import config
import models
from errors import InputValidationError, NotFoundError, RoomCodeExhausted, RoomError
from models import Player, Room, sanitize_name
from notifier import ChangeNotifier, Subscription
from store import VersionedDocumentStore
from transaction import Mutator, TransactionResult, run_transaction

logger = logging.getLogger(__name__)


def generate_room_code() -> str:
    return "".join(random.choices(config.ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def new_player_id() -> str:
    return models.new_id("p")


def ensure_host(room: Room):
    """Keep a connected host; otherwise promote the longest-joined connected player.

    With nobody connected the previous host id is kept, so the room stays
    ownerless until someone comes back. ``is_host`` flags are refreshed so
    at most one connected player carries it.
    """
    host = room.player(room.host_id)
    if not (host and host.connected):
        connected = sorted((p for p in room.players if p.connected), key=lambda p: p.joined_at)
        if connected:
            if connected[0].id != room.host_id:
                logger.info("Room %s: host moves from %s to %s", room.code, room.host_id or "-", connected[0].id)
            room.host_id = connected[0].id
    for p in room.players:
        p.is_host = p.connected and p.id == room.host_id


@dataclass
class LocalIdentity:
    """What a device remembers between visits (persistence is up to the client)."""
    player_id: str
    name: str = ""
    code: str = ""


class RoomHandle:
    """A client's live attachment to one room.

    Owns the notifier subscription; every transaction issued through the
    handle pings the room's other subscribers on commit. Close it when the
    client leaves the room view.
    """

    def __init__(self, session: "SessionLifecycle", code: str, subscription: Subscription):
        self.session = session
        self.code = code
        self.subscription = subscription

    @property
    def closed(self) -> bool:
        return self.subscription.closed

    async def transact(self, mutator: Mutator) -> TransactionResult:
        return await run_transaction(self.session.store, self.code, mutator, channel=self.subscription)

    async def fetch(self) -> Optional[Room]:
        return await self.session.fetch(self.code)

    async def wait_for_change(self, timeout: Optional[float] = None) -> Optional[Room]:
        """Block until the next ping, then re-fetch the full state."""
        await self.subscription.receive(timeout)
        return await self.fetch()

    def close(self):
        self.session.unsubscribe(self)


class SessionLifecycle:
    def __init__(self, store: VersionedDocumentStore, notifier: ChangeNotifier,
                 code_factory: Callable[[], str] = generate_room_code):
        self.store = store
        self.notifier = notifier
        self.code_factory = code_factory

    def subscribe(self, code: str) -> RoomHandle:
        code = normalize_code(code)
        return RoomHandle(self, code, self.notifier.subscribe(code))

    def unsubscribe(self, handle: RoomHandle):
        handle.subscription.close()

    async def fetch(self, code: str) -> Optional[Room]:
        stored = await self.store.fetch(normalize_code(code))
        if stored is None:
            return None
        document = dict(stored.document)
        document.setdefault("code", normalize_code(code))
        return Room.model_validate(document)

    async def create(self, name, player_id: Optional[str] = None) -> Room:
        name = sanitize_name(name)
        player_id = player_id or new_player_id()
        for attempt in range(1, config.MAX_ROOM_CODE_ATTEMPTS + 1):
            code = self.code_factory()
            room = Room(
                code=code,
                host_id=player_id,
                players=[Player(id=player_id, name=name, connected=True, joined_at=models.now_ms())],
            )
            ensure_host(room)
            if await self.store.insert(code, room.to_document()) is not None:
                logger.info("Room %s created by %s", code, player_id)
                return room
            logger.warning("Room code collision on %s (attempt %d/%d)",
                           code, attempt, config.MAX_ROOM_CODE_ATTEMPTS)
        raise RoomCodeExhausted(config.MAX_ROOM_CODE_ATTEMPTS)

    async def join(self, code, player_id: str, name, channel=None) -> TransactionResult:
        code = normalize_code(code)
        if not code:
            raise NotFoundError("no_code")
        player_id = str(player_id or "").strip()
        if not player_id:
            raise InputValidationError("bad_player")
        name = sanitize_name(name)

        def mutate(room: Room):
            existing = room.player(player_id)
            if existing:
                existing.name = name
                existing.connected = True
            else:
                room.players.append(Player(id=player_id, name=name, connected=True,
                                           joined_at=models.now_ms()))
            ensure_host(room)

        result = await run_transaction(self.store, code, mutate, channel=channel or self.notifier.channel(code))
        if result.ok:
            logger.info("Player %s joined room %s", player_id, code)
        return result

    async def leave(self, code, player_id: str, channel=None) -> TransactionResult:
        code = normalize_code(code)
        if not code:
            raise NotFoundError("no_code")

        def mutate(room: Room):
            player = room.player(player_id)
            if player is None:
                return False
            player.connected = False
            ensure_host(room)

        result = await run_transaction(self.store, code, mutate, channel=channel or self.notifier.channel(code))
        if result.ok and not result.skipped:
            logger.info("Player %s left room %s", player_id, code)
        return result

    async def rejoin(self, identity: LocalIdentity,
                     timeout: float = config.REJOIN_TIMEOUT_SECONDS) -> Optional[RoomHandle]:
        """Re-attach a returning device to its last room.

        If the room does not materialize within ``timeout`` the identity's
        room code is cleared and None is returned.
        """
        code = normalize_code(identity.code)
        name = (identity.name or "").strip()
        if not code or not name:
            return None
        try:
            result = await asyncio.wait_for(self.join(code, identity.player_id, name), timeout)
        except (asyncio.TimeoutError, RoomError):
            result = None
        if result is None or not result.ok:
            logger.info("Rejoin of room %s failed (%s), clearing local session",
                        code, result.error if result else "timeout")
            identity.code = ""
            return None
        identity.code = code
        return self.subscribe(code)
