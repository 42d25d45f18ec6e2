"""Closed set of client commands and their dispatch into transactions.

A command is a JSON object tagged by ``type`` (``"trifft:place"``, ...) that
always carries ``roomCode`` and ``playerId``. Anything that does not parse
into one of the variants below is rejected as ``bad_command``.
"""
from pydantic import Field, TypeAdapter, ValidationError, field_validator
from typing import Annotated, Literal, Optional, Union
import logging

import game_engine
import games
from errors import InputValidationError, NotFoundError
from models import Document
from rounds import RoundSource
from session import ensure_host, normalize_code
from store import VersionedDocumentStore
from transaction import TransactionResult, run_transaction

logger = logging.getLogger(__name__)


class Command(Document):
    room_code: str = ""
    player_id: str = ""

    @field_validator("room_code", mode="before")
    @classmethod
    def normalize_room_code(cls, v) -> str:
        return normalize_code(v)

    @field_validator("player_id", mode="before")
    @classmethod
    def strip_player_id(cls, v) -> str:
        return str(v or "").strip()

    def mutator(self):
        raise NotImplementedError


# --- host ---

class StartRound(Command):
    type: Literal["host:startRound"]
    category: str
    round_id: str

    def mutator(self):
        raise NotImplementedError("host:startRound loads its round before the transaction; use execute_command")


class HostLock(Command):
    type: Literal["host:lock"]

    def mutator(self):
        return game_engine.set_locked_mutator(self.player_id, True)


class HostUnlock(Command):
    type: Literal["host:unlock"]

    def mutator(self):
        return game_engine.set_locked_mutator(self.player_id, False)


class HostReveal(Command):
    type: Literal["host:reveal"]

    def mutator(self):
        return game_engine.reveal_mutator(self.player_id)


class HostHub(Command):
    type: Literal["host:hub"]

    def mutator(self):
        return game_engine.hub_mutator(self.player_id)


# --- aufzaehlen ---

class AufzaehlenAdd(Command):
    type: Literal["aufzaehlen:add"]
    text: Optional[str] = None

    def mutator(self):
        return lambda room: games.aufzaehlen_add(room, self.player_id, self.text)


class AufzaehlenDelete(Command):
    type: Literal["aufzaehlen:delete"]
    index: int

    def mutator(self):
        return lambda room: games.aufzaehlen_delete(room, self.player_id, self.index)


class AufzaehlenClearAll(Command):
    type: Literal["aufzaehlen:clearAll"]

    def mutator(self):
        return lambda room: games.aufzaehlen_clear_all(room, self.player_id)


class AufzaehlenMark(Command):
    type: Literal["aufzaehlen:mark"]
    index: int
    status: str = "neutral"

    def mutator(self):
        return lambda room: games.aufzaehlen_mark(room, self.player_id, self.index, self.status)


# --- trifft / sort ---

class TrifftReserve(Command):
    type: Literal["trifft:reserve"]
    item_id: str

    def mutator(self):
        return lambda room: games.reserve_item(room, "trifft", self.player_id, self.item_id)


class TrifftRelease(Command):
    type: Literal["trifft:release"]
    item_id: str

    def mutator(self):
        return lambda room: games.release_item(room, "trifft", self.player_id, self.item_id)


class TrifftPlace(Command):
    type: Literal["trifft:place"]
    item_id: str
    zone: str = "pool"

    def mutator(self):
        return lambda room: games.trifft_place(room, self.player_id, self.item_id, self.zone)


class TrifftMark(Command):
    type: Literal["trifft:mark"]
    item_id: str
    status: str = "neutral"

    def mutator(self):
        return lambda room: games.trifft_mark(room, self.player_id, self.item_id, self.status)


class SortReserve(Command):
    type: Literal["sort:reserve"]
    item_id: str

    def mutator(self):
        return lambda room: games.reserve_item(room, "sortieren", self.player_id, self.item_id)


class SortRelease(Command):
    type: Literal["sort:release"]
    item_id: str

    def mutator(self):
        return lambda room: games.release_item(room, "sortieren", self.player_id, self.item_id)


class SortPlace(Command):
    type: Literal["sort:place"]
    item_id: str
    slot_index: Optional[int] = None

    def mutator(self):
        return lambda room: games.sort_place(room, self.player_id, self.item_id, self.slot_index)


# --- fakten ---

class FaktenSelectSaboteur(Command):
    type: Literal["fakten:selectSaboteur"]
    saboteur_id: str

    def mutator(self):
        def mutate(room):
            ensure_host(room)
            games.fakten_select_saboteur(room, self.player_id, self.saboteur_id)
        return mutate


class FaktenSabotage(Command):
    type: Literal["fakten:sabotage"]
    action_type: str
    target_fact_id: Optional[str] = None
    text: Optional[str] = None

    def mutator(self):
        return lambda room: games.fakten_sabotage(room, self.player_id, self.action_type,
                                                  self.target_fact_id, self.text)


class FaktenUndo(Command):
    type: Literal["fakten:undo"]

    def mutator(self):
        return lambda room: games.fakten_undo(room, self.player_id)


class FaktenHostUndo(Command):
    type: Literal["fakten:hostUndo"]

    def mutator(self):
        def mutate(room):
            ensure_host(room)
            games.fakten_host_undo(room, self.player_id)
        return mutate


class FaktenReady(Command):
    type: Literal["fakten:ready"]

    def mutator(self):
        return lambda room: games.fakten_ready(room, self.player_id)


class FaktenRelease(Command):
    type: Literal["fakten:release"]

    def mutator(self):
        def mutate(room):
            ensure_host(room)
            games.fakten_release(room, self.player_id)
        return mutate


class FaktenPick(Command):
    type: Literal["fakten:pick"]
    pokemon_id: str

    def mutator(self):
        return lambda room: games.fakten_pick(room, self.player_id, self.pokemon_id)


# --- fehler ---

class FehlerSetImageSize(Command):
    type: Literal["fehler:setImageSize"]
    w: float
    h: float

    def mutator(self):
        return lambda room: games.fehler_set_image_size(room, self.w, self.h)


class FehlerSetMarker(Command):
    type: Literal["fehler:setMarker"]
    x: float
    y: float

    def mutator(self):
        return lambda room: games.fehler_set_marker(room, self.player_id, self.x, self.y)


AnyCommand = Annotated[
    Union[
        StartRound, HostLock, HostUnlock, HostReveal, HostHub,
        AufzaehlenAdd, AufzaehlenDelete, AufzaehlenClearAll, AufzaehlenMark,
        TrifftReserve, TrifftRelease, TrifftPlace, TrifftMark,
        SortReserve, SortRelease, SortPlace,
        FaktenSelectSaboteur, FaktenSabotage, FaktenUndo, FaktenHostUndo,
        FaktenReady, FaktenRelease, FaktenPick,
        FehlerSetImageSize, FehlerSetMarker,
    ],
    Field(discriminator="type"),
]

_command_adapter = TypeAdapter(AnyCommand)

COMMAND_TYPES = tuple(
    cls.model_fields["type"].annotation.__args__[0]
    for cls in Command.__subclasses__()
)


def parse_command(payload) -> Command:
    try:
        return _command_adapter.validate_python(payload)
    except ValidationError as e:
        logger.info("Rejected command %r: %d validation error(s)",
                    payload.get("type") if isinstance(payload, dict) else None, e.error_count())
        raise InputValidationError("bad_command") from e


async def execute_command(command: Command, store: VersionedDocumentStore, rounds: RoundSource,
                          channel=None) -> TransactionResult:
    """Run one command as one transaction. Failures come back as ``ok=False``."""
    if not command.room_code:
        exc = NotFoundError("no_code")
        return TransactionResult(ok=False, error=exc.code, exception=exc)
    if isinstance(command, StartRound):
        return await game_engine.start_round(store, rounds, command.room_code, command.player_id,
                                             command.category, command.round_id, channel)
    return await run_transaction(store, command.room_code, command.mutator(), channel)
