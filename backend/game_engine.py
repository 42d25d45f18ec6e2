"""Room phase machine: HUB -> IN_ROUND -> REVEAL -> HUB (and REVEAL -> IN_ROUND).

Every host transition runs as one transaction. The host is re-derived first,
so a host who dropped out is replaced before the permission check.
"""
import logging

import games
from errors import NotFoundError, PreconditionError
from models import ActiveRound, Room
from rounds import RoundSource
from session import ensure_host
from store import VersionedDocumentStore
from transaction import TransactionResult, run_transaction

logger = logging.getLogger(__name__)


def _host_turn(room: Room, player_id: str):
    ensure_host(room)
    games.require_host(room, player_id)


def _require_lockable(room: Room):
    games.require_in_round(room)
    if room.game is not None and room.game.category == "fakten" and room.game.stage != "LIVE":
        raise PreconditionError("bad_stage")


def start_round_mutator(player_id: str, category: str, round_def):
    def mutate(room: Room):
        _host_turn(room, player_id)
        if room.phase not in ("HUB", "REVEAL"):
            raise PreconditionError("bad_state")
        if round_def.category and round_def.category != category:
            raise PreconditionError("bad_game")
        room.game = games.init_game(category, round_def)
        room.phase = "IN_ROUND"
        room.locked = False
        room.activity = []
        room.active_round = ActiveRound(category=category, round_id=round_def.id,
                                        round_name=round_def.name)
    return mutate


def set_locked_mutator(player_id: str, locked: bool):
    def mutate(room: Room):
        _host_turn(room, player_id)
        _require_lockable(room)
        room.locked = locked
    return mutate


def reveal_mutator(player_id: str):
    def mutate(room: Room):
        _host_turn(room, player_id)
        _require_lockable(room)
        room.phase = "REVEAL"
        if room.game is not None and room.game.category == "sortieren":
            room.game.reveal = games.compute_sort_reveal(room.game)
        elif room.game is not None and room.game.category == "fehler":
            room.game.result = games.compute_fehler_result(room.game)
    return mutate


def hub_mutator(player_id: str):
    def mutate(room: Room):
        _host_turn(room, player_id)
        room.phase = "HUB"
        room.locked = False
        room.active_round = None
        room.game = None
        room.activity = []
    return mutate


async def start_round(store: VersionedDocumentStore, rounds: RoundSource, code: str, player_id: str,
                      category: str, round_id: str, channel=None) -> TransactionResult:
    """Load the round, then install its fresh game in one transaction."""
    round_def = await rounds.get(round_id)
    if round_def is None:
        logger.info("Room %s: round %s not found", code, round_id)
        exc = NotFoundError("round_not_found")
        return TransactionResult(ok=False, error=exc.code, exception=exc)
    result = await run_transaction(store, code, start_round_mutator(player_id, category, round_def), channel)
    if result.ok:
        logger.info("Room %s: round %s (%s) started", code, round_id, category)
    return result
