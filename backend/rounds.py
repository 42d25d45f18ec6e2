"""Read-only round content.

A round is ``{id, category, name, data}``; ``data`` is the category-specific
authoring payload consumed once by the game initializer when a round starts.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Dict, Iterable, List, Optional
import asyncio
import json
import logging
import re

import requests

import config

logger = logging.getLogger(__name__)


class RoundDefinition(BaseModel):
    id: str
    category: str
    name: str = ""
    data: dict = Field(default_factory=dict)

    @field_validator("id", "category", "name", mode="before")
    @classmethod
    def coerce_str(cls, v) -> str:
        return "" if v is None else str(v)


def group_by_category(rounds: Iterable[RoundDefinition]) -> Dict[str, List[dict]]:
    """Round index for the host's picker: {category: [{id, name}, ...]} sorted by name."""
    grouped: Dict[str, List[dict]] = {}
    for r in rounds:
        grouped.setdefault(r.category, []).append({"id": r.id, "name": r.name or r.id})
    for entries in grouped.values():
        entries.sort(key=lambda e: e["name"].casefold())
    return grouped


def _slug(s) -> str:
    s = re.sub(r"\s+", "-", str(s or "").lower().strip())
    return re.sub(r"[^a-z0-9\-]", "", s)[:50]


def normalize_rounds(raw) -> List[RoundDefinition]:
    """Accept a list of rounds, ``{"rounds": [...]}``, or ``{category: [...]}``."""
    if isinstance(raw, dict) and isinstance(raw.get("rounds"), list):
        entries = [(None, r) for r in raw["rounds"]]
    elif isinstance(raw, dict):
        entries = [(cat, r) for cat, rs in raw.items() if isinstance(rs, list) for r in rs]
    elif isinstance(raw, list):
        entries = [(None, r) for r in raw]
    else:
        entries = []

    out = []
    for i, (key_category, r) in enumerate(entries):
        if not isinstance(r, dict):
            continue
        category = r.get("category") or r.get("gameType") or r.get("type") or key_category or "unknown"
        name = r.get("name") or r.get("title") or r.get("roundName") or r.get("id") or f"{category} #{i + 1}"
        round_id = r.get("id") or f"{_slug(category)}-{_slug(name)}-{i + 1}"
        data = r.get("data") if isinstance(r.get("data"), dict) else dict(r)
        out.append(RoundDefinition(id=round_id, category=category, name=name, data=data))
    return out


class RoundSource:
    async def get(self, round_id: str) -> Optional[RoundDefinition]:
        raise NotImplementedError

    async def list_grouped(self) -> Dict[str, List[dict]]:
        raise NotImplementedError


class InMemoryRoundSource(RoundSource):
    def __init__(self, rounds: Iterable[RoundDefinition] = ()):
        self.rounds: Dict[str, RoundDefinition] = {r.id: r for r in rounds}

    @classmethod
    def from_file(cls, path: str) -> "InMemoryRoundSource":
        with open(path, encoding="utf-8") as f:
            rounds = normalize_rounds(json.load(f))
        logger.info("Loaded %d rounds from %s", len(rounds), path)
        return cls(rounds)

    def add(self, round_def: RoundDefinition):
        self.rounds[round_def.id] = round_def

    def clear(self):
        self.rounds.clear()

    async def get(self, round_id: str) -> Optional[RoundDefinition]:
        return self.rounds.get(round_id)

    async def list_grouped(self) -> Dict[str, List[dict]]:
        return group_by_category(self.rounds.values())


class RestRoundSource(RoundSource):
    """Rounds served by a PostgREST-style ``/rounds`` endpoint."""

    def __init__(self, base_url: str, api_key: str = "", timeout: int = config.ROUNDS_API_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"} if api_key else {}

    def _query(self, params: dict) -> list:
        response = requests.get(f"{self.base_url}/rounds", params=params,
                                headers=self.headers, timeout=self.timeout)
        response.raise_for_status()
        rows = response.json()
        return rows if isinstance(rows, list) else []

    async def get(self, round_id: str) -> Optional[RoundDefinition]:
        try:
            rows = await asyncio.to_thread(
                self._query, {"select": "id,category,name,data", "id": f"eq.{round_id}"})
        except requests.Timeout:
            logger.warning("Round %s: request timed out after %ds", round_id, self.timeout)
            return None
        except (requests.RequestException, ValueError) as e:
            logger.error("Round %s: fetch failed: %s", round_id, e)
            return None
        if not rows:
            return None
        row = rows[0]
        return RoundDefinition(id=row.get("id"), category=row.get("category"),
                               name=row.get("name") or "", data=row.get("data") or {})

    async def list_grouped(self) -> Dict[str, List[dict]]:
        try:
            rows = await asyncio.to_thread(self._query, {"select": "id,category,name"})
        except (requests.RequestException, ValueError) as e:
            logger.error("Round index fetch failed: %s", e)
            return {}
        return group_by_category(
            RoundDefinition(id=r.get("id"), category=r.get("category"), name=r.get("name") or "")
            for r in rows
        )


def create_round_source() -> RoundSource:
    if config.ROUNDS_API_URL:
        logger.info("Using REST round source at %s", config.ROUNDS_API_URL)
        return RestRoundSource(config.ROUNDS_API_URL, config.ROUNDS_API_KEY)
    if config.ROUNDS_FILE:
        return InMemoryRoundSource.from_file(config.ROUNDS_FILE)
    logger.warning("No round source configured; starting with an empty round list")
    return InMemoryRoundSource()
