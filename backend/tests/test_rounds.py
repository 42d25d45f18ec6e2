"""Round sources: file loading, REST fetching and the grouped index."""
import sys
import os
import json

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from rounds import (
    InMemoryRoundSource, RestRoundSource, RoundDefinition, group_by_category, normalize_rounds,
)


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status}")

    def json(self):
        return self.payload


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestNormalize:
    def test_list_of_rounds(self):
        rounds = normalize_rounds([{"id": "r1", "category": "trifft", "name": "A", "data": {"thesis": "x"}}])
        assert rounds == [RoundDefinition(id="r1", category="trifft", name="A", data={"thesis": "x"})]

    def test_wrapped_rounds(self):
        rounds = normalize_rounds({"rounds": [{"id": "r1", "gameType": "sortieren", "title": "B"}]})
        assert (rounds[0].category, rounds[0].name) == ("sortieren", "B")

    def test_grouped_by_category(self):
        rounds = normalize_rounds({"fakten": [{"name": "Pikachu Runde", "prompt": "?"}]})
        r = rounds[0]
        assert r.category == "fakten"
        assert r.id == "fakten-pikachu-runde-1"
        assert r.data["prompt"] == "?"

    def test_garbage_is_ignored(self):
        assert normalize_rounds("nope") == []
        assert normalize_rounds([1, None]) == []


class TestGrouping:
    def test_sorted_by_name(self):
        grouped = group_by_category([
            RoundDefinition(id="b", category="trifft", name="beta"),
            RoundDefinition(id="a", category="trifft", name="Alpha"),
            RoundDefinition(id="c", category="fehler", name=""),
        ])
        assert grouped["trifft"] == [{"id": "a", "name": "Alpha"}, {"id": "b", "name": "beta"}]
        assert grouped["fehler"] == [{"id": "c", "name": "c"}]


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class TestFileSource:
    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path):
        path = tmp_path / "rounds.json"
        path.write_text(json.dumps({"aufzaehlen": [{"id": "auf-1", "name": "Starter", "rows": 2}]}),
                        encoding="utf-8")
        source = InMemoryRoundSource.from_file(str(path))
        r = await source.get("auf-1")
        assert r.category == "aufzaehlen"
        assert r.data["rows"] == 2
        assert await source.get("missing") is None
        assert (await source.list_grouped()) == {"aufzaehlen": [{"id": "auf-1", "name": "Starter"}]}


class TestRestSource:
    @pytest.mark.asyncio
    async def test_get(self, monkeypatch):
        calls = []

        def fake_get(url, params=None, headers=None, timeout=None):
            calls.append((url, params, headers))
            return FakeResponse([{"id": "r1", "category": "trifft", "name": "A", "data": {"thesis": "x"}}])

        monkeypatch.setattr(requests, "get", fake_get)
        source = RestRoundSource("https://db.example/rest/v1/", api_key="k")
        r = await source.get("r1")
        assert r.data == {"thesis": "x"}
        url, params, headers = calls[0]
        assert url == "https://db.example/rest/v1/rounds"
        assert params["id"] == "eq.r1"
        assert headers["apikey"] == "k"

    @pytest.mark.asyncio
    async def test_get_missing(self, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda *a, **kw: FakeResponse([]))
        assert await RestRoundSource("https://db.example").get("r1") is None

    @pytest.mark.asyncio
    async def test_failures_return_none(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("down")

        monkeypatch.setattr(requests, "get", boom)
        source = RestRoundSource("https://db.example")
        assert await source.get("r1") is None
        assert await source.list_grouped() == {}

    @pytest.mark.asyncio
    async def test_http_error(self, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda *a, **kw: FakeResponse({}, status=500))
        assert await RestRoundSource("https://db.example").get("r1") is None

    @pytest.mark.asyncio
    async def test_list_grouped(self, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda *a, **kw: FakeResponse([
            {"id": "r2", "category": "trifft", "name": "Zebra"},
            {"id": "r1", "category": "trifft", "name": "Affe"},
        ]))
        grouped = await RestRoundSource("https://db.example").list_grouped()
        assert [r["id"] for r in grouped["trifft"]] == ["r1", "r2"]
