from __future__ import annotations

import json
from datetime import timedelta

import pytest
from graph_builders import line_nodes, overpass_elements, walk

from core.exceptions import ConfigurationError, ExternalServiceException
from date_utils import get_current_utc_time
from street_coverage.graph_cache import (
    CachedGraph,
    InMemoryGraphCache,
    MongoGraphCache,
    cache_radius,
    center_key,
)
from street_coverage.graph_provider import (
    RoadGraphProvider,
    SnapshotGraphSource,
    parse_overpass_elements,
)
from street_coverage.models import CoverageSettings, RoadGraph
from street_coverage.preprocessing import preprocess_trace

CENTER = (30.0, -97.0)


class FakeOverpass:
    def __init__(self, responses: list[list[dict] | Exception]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[float, float, float]] = []

    async def query_around(self, lat: float, lng: float, radius_m: float) -> list[dict]:
        self.calls.append((lat, lng, radius_m))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingCatalog:
    def __init__(self) -> None:
        self.batches: list[list[int]] = []

    async def record(self, ways) -> int:
        self.batches.append(sorted(way.way_id for way in ways))
        return len(self.batches[-1])


def _elements(way_id: int = 1, lat: float = 30.0) -> list[dict]:
    nodes = line_nodes(way_id * 100, 5, lat, -97.0, 20.0)
    return overpass_elements(
        nodes,
        [(way_id, list(nodes), {"highway": "residential", "name": f"Street {way_id}"})],
    )


def _cached(graph: RoadGraph, radius_m: int, *, expired: bool = False) -> CachedGraph:
    now = get_current_utc_time()
    return CachedGraph(
        center_key=center_key(*CENTER),
        radius_m=radius_m,
        graph=graph,
        fetched_at=now - timedelta(days=40),
        expires_at=now - timedelta(days=10) if expired else now + timedelta(days=20),
        source="overpass",
    )


def test_center_key_and_radius_rounding(settings: CoverageSettings) -> None:
    assert center_key(30.123456, -97.987654) == "30.1235,-97.9877"
    assert cache_radius(250.0, settings) == 300
    assert cache_radius(300.0, settings) == 300
    assert cache_radius(10_000_000.0, settings) == settings.graph_max_radius_m


def test_parse_overpass_elements_keeps_only_street_ways() -> None:
    nodes = line_nodes(1, 3, 30.0, -97.0, 20.0)
    elements = overpass_elements(
        nodes,
        [
            (10, [1, 2, 3], {"highway": "residential", "name": "Elm Grove"}),
            (11, [1, 2], {"highway": "service", "service": "driveway"}),
            (12, [2, 3], {"highway": "pedestrian", "area": "yes"}),
            (13, [1, 3], {"highway": "proposed"}),
            (14, [1, 2], {"building": "yes"}),
        ],
    )

    graph = parse_overpass_elements(elements)

    assert set(graph.ways) == {10, 11}
    assert graph.ways[11].highway_type == "driveway"
    assert graph.ways[11].name is None


@pytest.mark.asyncio
async def test_miss_fetches_and_populates_cache() -> None:
    cache = InMemoryGraphCache()
    overpass = FakeOverpass([_elements()])
    provider = RoadGraphProvider(cache, overpass=overpass, skip_remote=False)

    first = await provider.get_graph(CENTER, 250)
    second = await provider.get_graph(CENTER, 250)

    assert set(first.ways) == {1}
    assert second is first
    assert overpass.calls == [(30.0, -97.0, 300)]
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_larger_cached_radius_is_reused() -> None:
    big = parse_overpass_elements(_elements(1) + _elements(2, lat=30.05))
    cache = InMemoryGraphCache()
    cache.seed(_cached(big, 10_000))
    overpass = FakeOverpass([])
    provider = RoadGraphProvider(cache, overpass=overpass, skip_remote=False)

    graph = await provider.get_graph(CENTER, 500)

    assert set(graph.ways) == {1}
    assert overpass.calls == []


@pytest.mark.asyncio
async def test_expired_entry_is_refetched() -> None:
    cache = InMemoryGraphCache()
    cache.seed(_cached(parse_overpass_elements(_elements(1)), 500, expired=True))
    overpass = FakeOverpass([_elements(2)])
    provider = RoadGraphProvider(cache, overpass=overpass, skip_remote=False)

    graph = await provider.get_graph(CENTER, 500)

    assert set(graph.ways) == {2}
    assert not (await cache.get(center_key(*CENTER), 500)).is_expired()


@pytest.mark.asyncio
async def test_stale_entry_is_used_when_fetch_fails() -> None:
    cache = InMemoryGraphCache()
    cache.seed(_cached(parse_overpass_elements(_elements(1)), 500, expired=True))
    overpass = FakeOverpass([ExternalServiceException("Overpass unavailable")])
    provider = RoadGraphProvider(cache, overpass=overpass, skip_remote=False)

    graph = await provider.get_graph(CENTER, 500)

    assert set(graph.ways) == {1}


@pytest.mark.asyncio
async def test_total_failure_returns_empty_graph() -> None:
    cache = InMemoryGraphCache()
    overpass = FakeOverpass([ExternalServiceException("Overpass unavailable")])
    provider = RoadGraphProvider(cache, overpass=overpass, skip_remote=False)

    graph = await provider.get_graph(CENTER, 500)

    assert graph.is_empty()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_skip_remote_uses_snapshot(tmp_path) -> None:
    snapshot_file = tmp_path / "extract.json"
    snapshot_file.write_text(json.dumps({"elements": _elements(1)}), encoding="utf-8")
    overpass = FakeOverpass([])
    provider = RoadGraphProvider(
        InMemoryGraphCache(),
        overpass=overpass,
        snapshot=SnapshotGraphSource(snapshot_file),
        skip_remote=True,
    )

    graph = await provider.get_graph(CENTER, 500)

    assert set(graph.ways) == {1}
    assert overpass.calls == []


@pytest.mark.asyncio
async def test_whole_snapshot_is_catalogued_once(tmp_path) -> None:
    snapshot_file = tmp_path / "extract.json"
    elements = _elements(1) + _elements(2, lat=30.05)
    snapshot_file.write_text(json.dumps({"elements": elements}), encoding="utf-8")
    catalog = RecordingCatalog()
    provider = RoadGraphProvider(
        InMemoryGraphCache(),
        snapshot=SnapshotGraphSource(snapshot_file),
        skip_remote=True,
        catalog=catalog,
    )

    near = await provider.get_graph(CENTER, 500)
    await provider.get_graph(CENTER, 1000)

    assert set(near.ways) == {1}
    assert catalog.batches == [[1, 2]]


@pytest.mark.asyncio
async def test_fetched_ways_are_catalogued() -> None:
    catalog = RecordingCatalog()
    provider = RoadGraphProvider(
        InMemoryGraphCache(),
        overpass=FakeOverpass([_elements(3)]),
        skip_remote=False,
        catalog=catalog,
    )

    await provider.get_graph(CENTER, 500)
    await provider.get_graph(CENTER, 500)

    assert catalog.batches == [[3]]


@pytest.mark.asyncio
async def test_missing_snapshot_is_a_configuration_error(tmp_path) -> None:
    provider = RoadGraphProvider(
        InMemoryGraphCache(),
        snapshot=SnapshotGraphSource(tmp_path / "missing.json"),
        skip_remote=True,
    )

    with pytest.raises(ConfigurationError):
        await provider.get_graph(CENTER, 500)


@pytest.mark.asyncio
async def test_graph_for_trace_covers_trace_plus_buffer() -> None:
    overpass = FakeOverpass([_elements()])
    settings = CoverageSettings(graph_buffer_m=50.0)
    provider = RoadGraphProvider(
        InMemoryGraphCache(),
        overpass=overpass,
        settings=settings,
        skip_remote=False,
    )
    trace = preprocess_trace(walk([(30.0, -97.0), (30.0016, -97.0)]))

    await provider.graph_for_trace(trace.points)

    lat, lng, radius = overpass.calls[0]
    assert lat == pytest.approx(30.0008)
    assert lng == pytest.approx(-97.0)
    # ~89 m half-span + 50 m buffer, rounded up to the 100 m step
    assert radius == 200


@pytest.mark.asyncio
async def test_mongo_cache_round_trip(beanie_db) -> None:
    cache = MongoGraphCache()
    key = center_key(*CENTER)
    graph = parse_overpass_elements(_elements(1))

    await cache.put(key, 500, graph, expiry_days=30, source="overpass")
    await cache.put(key, 500, graph, expiry_days=30, source="snapshot")
    stored = await cache.get(key, 500)

    assert stored is not None
    assert stored.source == "snapshot"
    assert set(stored.graph.ways) == {1}
    assert not stored.is_expired()
    assert await cache.find_larger(key, 300) is not None
    assert await cache.find_larger(key, 500) is None


@pytest.mark.asyncio
async def test_mongo_cache_purges_expired_entries(beanie_db) -> None:
    cache = MongoGraphCache()
    key = center_key(*CENTER)
    graph = parse_overpass_elements(_elements(1))
    await cache.put(key, 500, graph, expiry_days=30)
    await cache.put(key, 1000, graph, expiry_days=0)

    purged = await cache.purge_expired()

    assert purged == 1
    assert await cache.get(key, 1000) is None
    assert await cache.get(key, 500) is not None
