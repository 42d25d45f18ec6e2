"""Per-category game state: initializers, player/host mutators and reveal scoring.

Every mutator takes the transaction's ``Room`` snapshot, validates against it
and either changes it in place or raises a ``RoomError``. ``False`` is
returned for the few operations that are explicit no-ops.
"""
from typing import List, Optional
import copy
import logging
import math
import random

from pydantic import ValidationError

import config
import locks
import models
from activity import add_activity
from errors import AuthorizationError, InputValidationError, PreconditionError
from models import (
    AufzaehlenGame, Cell, FaktenGame, Fact, FehlerGame, FehlerResult, Item, Marker, Room,
    SabotageDetail, SabotageState, Solution, SortierenGame, SortReveal, TrifftGame,
)
from rounds import RoundDefinition

logger = logging.getLogger(__name__)

TRIFFT_ZONE_LABELS = {"zu": "Trifft zu", "nicht": "Trifft nicht zu"}
SABOTAGE_ACTIONS = ("delete", "edit", "add")


# ---------------------------------------------------------------------------
# Shared guards
# ---------------------------------------------------------------------------

def require_host(room: Room, player_id: str):
    if not room.is_host(player_id):
        raise AuthorizationError("not_host")


def require_game(room: Room, category: str):
    if room.game is None or room.game.category != category:
        raise PreconditionError("bad_game")
    return room.game


def require_open(room: Room):
    """Player input is accepted only while a round runs and the host has not locked it."""
    if room.phase != "IN_ROUND" or room.locked:
        raise PreconditionError("locked")


def require_in_round(room: Room):
    if room.phase != "IN_ROUND":
        raise PreconditionError("bad_state")


def require_status(status: str):
    if status not in models.STATUSES:
        raise InputValidationError("bad_status")


# ---------------------------------------------------------------------------
# Initializers
# ---------------------------------------------------------------------------

def _items(raw, prefix: str) -> List[Item]:
    if not isinstance(raw, list):
        return []
    return [
        Item(
            id=str(it.get("id") or f"{prefix}_{idx}"),
            name=str(it.get("name") or ""),
            img_url=models.resolve_asset(it.get("imgUrl")),
        )
        for idx, it in enumerate(raw) if isinstance(it, dict)
    ]


def _number(value, default: float) -> float:
    """Authoring data is hand-written JSON; anything non-numeric falls back to ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def empty_grid(rows: int, cols: int) -> List[Cell]:
    return [Cell() for _ in range(max(1, rows) * max(1, cols))]


def _init_aufzaehlen(data: dict) -> AufzaehlenGame:
    rows = max(1, int(_number(data.get("rows") or config.DEFAULT_GRID_ROWS, config.DEFAULT_GRID_ROWS)))
    cols = max(1, int(_number(data.get("cols") or config.DEFAULT_GRID_COLS, config.DEFAULT_GRID_COLS)))
    return AufzaehlenGame(question=str(data.get("question") or ""),
                          rows=rows, cols=cols, cells=empty_grid(rows, cols))


def _init_trifft(data: dict) -> TrifftGame:
    items = _items(data.get("items"), "it")
    return TrifftGame(
        thesis=str(data.get("thesis") or ""),
        items=items,
        placements={it.id: "pool" for it in items},
        statuses={it.id: "neutral" for it in items},
        locks={it.id: None for it in items},
    )


def _init_sortieren(data: dict) -> SortierenGame:
    items = _items(data.get("items"), "it")
    pool_order = [it.id for it in items]
    random.shuffle(pool_order)
    solution = data.get("solutionOrder")
    return SortierenGame(
        axis_left_label=str(data.get("axisLeftLabel") or ""),
        axis_right_label=str(data.get("axisRightLabel") or ""),
        items=items,
        locks={it.id: None for it in items},
        slots=[None] * len(items),
        pool_order=pool_order,
        solution_order=[str(s) for s in solution] if isinstance(solution, list) else [it.id for it in items],
    )


def _init_fakten(data: dict) -> FaktenGame:
    facts = []
    raw_facts = data.get("facts")
    for idx, f in enumerate(raw_facts if isinstance(raw_facts, list) else []):
        if not isinstance(f, dict):
            continue
        applies = f.get("appliesToPokemonIds")
        facts.append(Fact(
            id=str(f.get("id") or f"f_{idx}"),
            text=str(f.get("text") or ""),
            applies_to_pokemon_ids=[str(a) for a in applies] if isinstance(applies, list) else None,
        ))
    random.shuffle(facts)
    solution = data.get("solutionPokemonId")
    return FaktenGame(
        prompt=str(data.get("prompt") or ""),
        pokemon=_items(data.get("pokemon"), "p"),
        facts=facts,
        solution_pokemon_id=str(solution) if solution else None,
    )


def _solution(raw) -> Optional[Solution]:
    try:
        return Solution.model_validate(raw)
    except ValidationError:
        return None


def _init_fehler(data: dict) -> FehlerGame:
    return FehlerGame(
        error_image_url=models.resolve_asset(data.get("errorImageUrl")),
        correct_image_url=models.resolve_asset(data.get("correctImageUrl")),
        image_width=max(0.0, _number(data.get("imageWidth"), 0)),
        image_height=max(0.0, _number(data.get("imageHeight"), 0)),
        solution=_solution(data.get("solution")),
    )


INITIALIZERS = {
    "aufzaehlen": _init_aufzaehlen,
    "trifft": _init_trifft,
    "sortieren": _init_sortieren,
    "fakten": _init_fakten,
    "fehler": _init_fehler,
}


def init_game(category: str, round_def: Optional[RoundDefinition]):
    """Build the fresh GameState for ``category`` from the round's authoring data."""
    initializer = INITIALIZERS.get(category)
    if initializer is None or category not in config.ENABLED_CATEGORIES:
        raise PreconditionError("bad_game")
    data = round_def.data if round_def is not None else {}
    return initializer(data if isinstance(data, dict) else {})


# ---------------------------------------------------------------------------
# Aufzählen
# ---------------------------------------------------------------------------

def aufzaehlen_add(room: Room, player_id: str, text):
    require_open(room)
    game = require_game(room, "aufzaehlen")
    text = str(text or "").strip()
    if not text:
        raise InputValidationError("empty")
    index = next((i for i, c in enumerate(game.cells) if not c.text), None)
    if index is None:
        raise PreconditionError("full")
    text = text[:config.MAX_CELL_TEXT_LENGTH]
    game.cells[index] = Cell(text=text, owner_id=player_id)
    add_activity(room, f"{room.display_name(player_id)} gibt „{text}“ ein")


def _cell(game: AufzaehlenGame, index) -> Cell:
    if not isinstance(index, int) or not 0 <= index < len(game.cells):
        raise InputValidationError("bad_index")
    return game.cells[index]


def aufzaehlen_delete(room: Room, player_id: str, index: int):
    require_open(room)
    game = require_game(room, "aufzaehlen")
    cell = _cell(game, index)
    if not (room.is_host(player_id) or cell.owner_id == player_id):
        raise AuthorizationError("forbidden")
    game.cells[index] = Cell()


def aufzaehlen_clear_all(room: Room, player_id: str):
    require_in_round(room)
    require_host(room, player_id)
    game = require_game(room, "aufzaehlen")
    game.cells = empty_grid(game.rows, game.cols)


def aufzaehlen_mark(room: Room, player_id: str, index: int, status: str):
    require_host(room, player_id)
    if room.phase not in ("IN_ROUND", "REVEAL"):
        raise PreconditionError("bad_state")
    game = require_game(room, "aufzaehlen")
    require_status(status)
    cell = _cell(game, index)
    if not cell.text:
        raise InputValidationError("empty")
    cell.status = status


# ---------------------------------------------------------------------------
# Trifft zu / Trifft nicht zu, Sortieren: shared lock handling
# ---------------------------------------------------------------------------

def reserve_item(room: Room, category: str, player_id: str, item_id: str):
    require_open(room)
    game = require_game(room, category)
    locks.reserve(game, item_id, player_id)


def release_item(room: Room, category: str, player_id: str, item_id: str) -> bool:
    if room.game is None or room.game.category != category:
        return False
    return locks.release(room, room.game, item_id, player_id)


def trifft_place(room: Room, player_id: str, item_id: str, zone: str):
    locks.clear_expired_locks(room.game)
    require_open(room)
    game = require_game(room, "trifft")
    if zone not in models.ZONES:
        raise InputValidationError("bad_zone")
    if item_id not in game.placements:
        raise InputValidationError("bad_item")
    locks.require_owner_or_free(game, item_id, player_id)

    game.placements[item_id] = zone
    game.locks[item_id] = None
    item = next((it for it in game.items if it.id == item_id), None)
    if item and zone != "pool":
        add_activity(room, f"{room.display_name(player_id)} legt {item.name} zu „{TRIFFT_ZONE_LABELS[zone]}“")


def trifft_mark(room: Room, player_id: str, item_id: str, status: str):
    require_host(room, player_id)
    require_in_round(room)
    if not room.locked:
        raise PreconditionError("not_locked")
    game = require_game(room, "trifft")
    require_status(status)
    if item_id not in game.statuses:
        raise InputValidationError("bad_item")
    game.statuses[item_id] = status


def sort_place(room: Room, player_id: str, item_id: str, slot_index: Optional[int]):
    locks.clear_expired_locks(room.game)
    require_open(room)
    game = require_game(room, "sortieren")
    item = next((it for it in game.items if it.id == item_id), None)
    if item is None:
        raise InputValidationError("bad_item")
    locks.require_owner_or_free(game, item_id, player_id)

    slots = [None if s == item_id else s for s in game.slots]
    if slot_index is not None:
        if not 0 <= slot_index < len(slots):
            raise InputValidationError("bad_slot")
        # the previous occupant goes back to the pool
        slots[slot_index] = item_id
        add_activity(room, f"{room.display_name(player_id)} platziert {item.name} auf Slot #{slot_index + 1}")
    game.slots = slots
    game.locks[item_id] = None


def compute_sort_reveal(game: SortierenGame) -> SortReveal:
    solution = game.solution_order
    return SortReveal(correctness=[
        item_id is not None and i < len(solution) and item_id == solution[i]
        for i, item_id in enumerate(game.slots)
    ])


# ---------------------------------------------------------------------------
# Sabotierte Fakten
# ---------------------------------------------------------------------------

def _require_stage(game: FaktenGame, stage: str):
    if game.stage != stage:
        raise PreconditionError("bad_stage")


def _require_saboteur(game: FaktenGame, player_id: str):
    if not player_id or game.saboteur_id != player_id:
        raise AuthorizationError("not_saboteur")


def fakten_select_saboteur(room: Room, player_id: str, saboteur_id: str):
    require_host(room, player_id)
    require_in_round(room)
    game = require_game(room, "fakten")
    _require_stage(game, "PICK_SABOTEUR")
    if room.player(saboteur_id) is None:
        raise InputValidationError("bad_player")
    game.saboteur_id = saboteur_id
    game.stage = "SABOTAGE"
    game.saboteur_ready = False
    game.sabotage = SabotageState()
    game.team_pick_pokemon_id = None
    room.locked = False


def _fact_text(text) -> str:
    text = str(text or "").strip()[:config.MAX_FACT_TEXT_LENGTH]
    if not text:
        raise InputValidationError("empty")
    return text


def fakten_sabotage(room: Room, player_id: str, action_type: str,
                    target_fact_id: Optional[str] = None, text: Optional[str] = None):
    require_open(room)
    game = require_game(room, "fakten")
    _require_stage(game, "SABOTAGE")
    _require_saboteur(game, player_id)
    if game.sabotage.action_used:
        raise PreconditionError("already_used")
    if action_type not in SABOTAGE_ACTIONS:
        raise InputValidationError("bad_action")

    snapshot = copy.deepcopy(game.facts)
    snap_index = next((i for i, f in enumerate(snapshot) if f.id == target_fact_id), None)
    detail = SabotageDetail()

    if action_type == "delete":
        if not target_fact_id:
            raise InputValidationError("bad_target")
        if snap_index is not None:
            detail.index = snap_index + 1
            detail.old_text = snapshot[snap_index].text
        game.facts = [f for f in game.facts if f.id != target_fact_id]

    elif action_type == "edit":
        fact = next((f for f in game.facts if f.id == target_fact_id), None) if target_fact_id else None
        if fact is None:
            raise InputValidationError("bad_target")
        if snap_index is not None:
            detail.index = snap_index + 1
            detail.old_text = snapshot[snap_index].text
        fact.text = detail.new_text = _fact_text(text)
        fact.applies_to_pokemon_ids = None

    else:
        detail.new_text = _fact_text(text)
        detail.index = len(snapshot) + 1
        game.facts.append(Fact(id=models.new_id("fact"), text=detail.new_text))

    random.shuffle(game.facts)
    game.sabotage = SabotageState(action_used=True, action_type=action_type,
                                  detail=detail, snapshot_facts=snapshot)
    game.saboteur_ready = False
    logger.info("Room %s: saboteur used %s", room.code, action_type)


def _restore_snapshot(game: FaktenGame):
    if not game.sabotage.action_used:
        raise PreconditionError("no_action")
    if game.sabotage.snapshot_facts is None:
        raise PreconditionError("no_snapshot")
    game.facts = copy.deepcopy(game.sabotage.snapshot_facts)
    game.sabotage = SabotageState()
    game.saboteur_ready = False


def fakten_undo(room: Room, player_id: str):
    require_in_round(room)
    game = require_game(room, "fakten")
    _require_stage(game, "SABOTAGE")
    _require_saboteur(game, player_id)
    _restore_snapshot(game)


def fakten_host_undo(room: Room, player_id: str):
    require_host(room, player_id)
    require_in_round(room)
    game = require_game(room, "fakten")
    _require_stage(game, "SABOTAGE")
    _restore_snapshot(game)


def fakten_ready(room: Room, player_id: str):
    require_in_round(room)
    game = require_game(room, "fakten")
    _require_stage(game, "SABOTAGE")
    _require_saboteur(game, player_id)
    if not game.sabotage.action_used:
        raise PreconditionError("no_action")
    game.saboteur_ready = True


def fakten_release(room: Room, player_id: str):
    require_host(room, player_id)
    require_in_round(room)
    game = require_game(room, "fakten")
    _require_stage(game, "SABOTAGE")
    if not game.saboteur_ready:
        raise PreconditionError("not_ready")
    game.stage = "LIVE"
    game.facts_text = [f.text for f in game.facts]
    game.facts_revision = models.new_id("rev")
    game.team_pick_pokemon_id = None
    room.locked = False


def fakten_pick(room: Room, player_id: str, pokemon_id: str):
    require_open(room)
    game = require_game(room, "fakten")
    _require_stage(game, "LIVE")
    if not any(p.id == pokemon_id for p in game.pokemon):
        raise InputValidationError("bad_pokemon")
    game.team_pick_pokemon_id = None if game.team_pick_pokemon_id == pokemon_id else pokemon_id


# ---------------------------------------------------------------------------
# Fehler finden
# ---------------------------------------------------------------------------

def fehler_set_image_size(room: Room, width, height) -> bool:
    """Record the image's intrinsic size as reported by the first client that loads it."""
    game = room.game
    if game is None or game.category != "fehler":
        return False
    try:
        width, height = float(width), float(height)
    except (TypeError, ValueError):
        return False
    if not (width > 0 and height > 0):
        return False
    if (abs(game.image_width - width) < config.IMAGE_SIZE_EPSILON
            and abs(game.image_height - height) < config.IMAGE_SIZE_EPSILON):
        return False
    game.image_width = width
    game.image_height = height
    return True


def fehler_set_marker(room: Room, player_id: str, x, y):
    require_open(room)
    game = require_game(room, "fehler")
    try:
        x, y = float(x), float(y)
    except (TypeError, ValueError):
        raise InputValidationError("bad_target")
    if not (0 <= x <= 1 and 0 <= y <= 1):
        raise InputValidationError("bad_target")
    game.marker = Marker(x=x, y=y, by=player_id)


def compute_fehler_result(game: FehlerGame) -> Optional[FehlerResult]:
    """Hit test in image pixels, normalized by the shorter side."""
    if game.marker is None or game.solution is None:
        return None
    w, h = game.image_width, game.image_height
    if not (w > 0 and h > 0):
        w = h = 1.0
    dx = (game.marker.x - game.solution.x) * w
    dy = (game.marker.y - game.solution.y) * h
    distance = math.hypot(dx, dy) / min(w, h)
    return FehlerResult(win=distance < game.solution.r, distance=distance, radius=game.solution.r)
