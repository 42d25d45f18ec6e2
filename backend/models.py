"""Room document models.

The persisted room document is plain JSON with camelCase keys. Every
transaction attempt validates its own copy of that JSON into these models and
dumps the result back, so each attempt works on an independent snapshot.
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, Dict, List, Literal, Optional, Union
import time
import uuid

import config

Phase = Literal["HUB", "IN_ROUND", "REVEAL"]
Status = Literal["neutral", "correct", "wrong"]
Zone = Literal["pool", "zu", "nicht"]
FaktenStage = Literal["PICK_SABOTEUR", "SABOTAGE", "LIVE"]

STATUSES = ("neutral", "correct", "wrong")
ZONES = ("pool", "zu", "nicht")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str = "id") -> str:
    return f"{prefix}_{uuid.uuid4()}"


def sanitize_name(name) -> str:
    s = str(name or "").strip()
    if not s:
        return config.DEFAULT_PLAYER_NAME
    return s[:config.MAX_NAME_LENGTH]


def resolve_asset(url) -> str:
    """Old assets were referenced as /public/xyz.png."""
    url = str(url or "")
    if url.startswith("/public/"):
        return "/" + url[len("/public/"):]
    return url


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Lock(Document):
    by: str
    expires_at: int


class ActivityEntry(Document):
    id: str
    ts: int
    ttl_ms: int = config.ACTIVITY_TTL_MS
    text: str = ""


class Player(Document):
    id: str
    name: str = config.DEFAULT_PLAYER_NAME
    connected: bool = True
    joined_at: int = Field(default_factory=now_ms)
    is_host: bool = False


class ActiveRound(Document):
    category: str
    round_id: str
    round_name: str = ""


class Item(Document):
    id: str
    name: str = ""
    img_url: str = ""


# --- Aufzählen ---

class Cell(Document):
    text: str = ""
    owner_id: Optional[str] = None
    status: Status = "neutral"


class AufzaehlenGame(Document):
    category: Literal["aufzaehlen"] = "aufzaehlen"
    question: str = ""
    rows: int = config.DEFAULT_GRID_ROWS
    cols: int = config.DEFAULT_GRID_COLS
    cells: List[Cell] = Field(default_factory=list)


# --- Trifft zu / Trifft nicht zu ---

class TrifftGame(Document):
    category: Literal["trifft"] = "trifft"
    thesis: str = ""
    items: List[Item] = Field(default_factory=list)
    placements: Dict[str, Zone] = Field(default_factory=dict)
    statuses: Dict[str, Status] = Field(default_factory=dict)
    locks: Dict[str, Optional[Lock]] = Field(default_factory=dict)


# --- Sortieren ---

class SortReveal(Document):
    correctness: List[bool] = Field(default_factory=list)


class SortierenGame(Document):
    category: Literal["sortieren"] = "sortieren"
    axis_left_label: str = ""
    axis_right_label: str = ""
    items: List[Item] = Field(default_factory=list)
    locks: Dict[str, Optional[Lock]] = Field(default_factory=dict)
    slots: List[Optional[str]] = Field(default_factory=list)
    pool_order: List[str] = Field(default_factory=list)
    solution_order: List[str] = Field(default_factory=list)
    reveal: Optional[SortReveal] = None


# --- Sabotierte Fakten ---

class Fact(Document):
    id: str
    text: str = ""
    applies_to_pokemon_ids: Optional[List[str]] = None


class SabotageDetail(Document):
    index: Optional[int] = None  # 1-based, relative to the snapshot
    old_text: Optional[str] = None
    new_text: Optional[str] = None


class SabotageState(Document):
    action_used: bool = False
    action_type: Optional[str] = None
    detail: Optional[SabotageDetail] = None
    snapshot_facts: Optional[List[Fact]] = None


class FaktenGame(Document):
    category: Literal["fakten"] = "fakten"
    stage: FaktenStage = "PICK_SABOTEUR"
    prompt: str = ""
    pokemon: List[Item] = Field(default_factory=list)
    facts: List[Fact] = Field(default_factory=list)
    solution_pokemon_id: Optional[str] = None
    saboteur_id: Optional[str] = None
    saboteur_ready: bool = False
    sabotage: SabotageState = Field(default_factory=SabotageState)
    facts_text: Optional[List[str]] = None
    facts_revision: Optional[str] = None
    team_pick_pokemon_id: Optional[str] = None


# --- Fehler finden ---

class Solution(Document):
    x: float
    y: float
    r: float = config.DEFAULT_MARKER_RADIUS  # fraction of min(imageWidth, imageHeight)


class Marker(Document):
    x: float
    y: float
    by: str


class FehlerResult(Document):
    win: bool
    distance: float
    radius: float


class FehlerGame(Document):
    category: Literal["fehler"] = "fehler"
    error_image_url: str = ""
    correct_image_url: str = ""
    image_width: float = 0
    image_height: float = 0
    solution: Optional[Solution] = None
    marker: Optional[Marker] = None
    result: Optional[FehlerResult] = None


GameState = Annotated[
    Union[AufzaehlenGame, TrifftGame, SortierenGame, FaktenGame, FehlerGame],
    Field(discriminator="category"),
]


def _normalize_players(players, host_id: str) -> list[dict]:
    """Accept legacy rows {playerId, name, role} and de-dupe by id (last wins)."""
    by_id: Dict[str, dict] = {}
    for p in players if isinstance(players, list) else []:
        if isinstance(p, Player):
            p = p.model_dump(by_alias=True)
        if not isinstance(p, dict):
            continue
        pid = str(p.get("id") or p.get("playerId") or "").strip()
        if not pid:
            continue
        joined_at = p.get("joinedAt", p.get("joined_at"))
        connected = p.get("connected") is not False
        by_id[pid] = {
            "id": pid,
            "name": sanitize_name(p.get("name")),
            "connected": connected,
            "joinedAt": int(joined_at) if isinstance(joined_at, (int, float)) else now_ms(),
            "isHost": connected and pid == host_id,
        }
    return list(by_id.values())


class Room(Document):
    code: str = Field(frozen=True)
    host_id: str = ""
    phase: Phase = "HUB"
    locked: bool = False
    active_round: Optional[ActiveRound] = None
    game: Optional[GameState] = None
    activity: List[ActivityEntry] = Field(default_factory=list)
    players: List[Player] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        candidates = [data.pop(k, None) for k in ("hostId", "host_id", "hostPlayerId")]
        host_id = str(next((c for c in candidates if c), ""))
        data["hostId"] = host_id
        data["players"] = _normalize_players(data.get("players"), host_id)
        return data

    def player(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id == player_id), None)

    def display_name(self, player_id: str) -> str:
        p = self.player(player_id)
        return p.name if p else config.DEFAULT_PLAYER_NAME

    def is_host(self, player_id: str) -> bool:
        return bool(player_id) and self.host_id == player_id

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
