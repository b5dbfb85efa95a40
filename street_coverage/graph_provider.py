"""
Road graph provider.

Lookup order for a (centre, radius) request:

1. Exact-radius cache entry that has not expired.
2. The smallest unexpired larger-radius entry for the same centre, filtered
   down to the requested radius.
3. The Overpass API (primary endpoint plus fallbacks), unless remote calls
   are skipped.
4. The offline snapshot, when one is configured.

Ways of every fetched graph (and the whole snapshot, once) are recorded in
the way catalogue when one is given.

Non-empty fetched graphs are written back to the cache. When everything
fails the provider returns an empty graph (or the stale entry, if any)
instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from config import GRAPH_SNAPSHOT_PATH, SKIP_OVERPASS
from core.exceptions import ConfigurationError, ExternalServiceException
from core.spatial import GeometryService
from street_coverage.graph_cache import cache_radius, center_key
from street_coverage.models import CoverageSettings, GraphNode, RoadGraph
from street_coverage.osm_filters import (
    effective_highway_type,
    is_graph_way,
    way_display_name,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from core.http.overpass import OverpassClient
    from street_coverage.graph_cache import GraphCache
    from street_coverage.models import PreprocessedPoint
    from street_coverage.way_catalog import WayCatalog

logger = logging.getLogger(__name__)


def parse_overpass_elements(elements: Iterable[dict[str, Any]]) -> RoadGraph:
    """Build a RoadGraph from Overpass JSON ``elements``."""
    nodes: dict[int, GraphNode] = {}
    raw_ways: list[dict[str, Any]] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        kind = element.get("type")
        if kind == "node":
            try:
                node_id = int(element["id"])
                lat = float(element["lat"])
                lng = float(element["lon"])
            except (KeyError, TypeError, ValueError):
                continue
            nodes[node_id] = GraphNode(node_id=node_id, lat=lat, lng=lng)
        elif kind == "way":
            tags = element.get("tags") or {}
            if not is_graph_way(tags):
                continue
            raw_ways.append(
                {
                    "way_id": element.get("id"),
                    "node_ids": element.get("nodes") or [],
                    "name": way_display_name(tags),
                    "highway_type": effective_highway_type(tags),
                },
            )
    return RoadGraph.build(nodes, raw_ways)


class SnapshotGraphSource:
    """
    Offline graph source backed by a pre-seeded Overpass-JSON extract.

    The file is parsed once on first use and then filtered per request.
    """

    def __init__(self, path: str | Path | None = None, graph: RoadGraph | None = None) -> None:
        self._path = Path(path) if path else None
        self._graph = graph
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls) -> SnapshotGraphSource | None:
        return cls(GRAPH_SNAPSHOT_PATH) if GRAPH_SNAPSHOT_PATH else None

    async def load(self) -> RoadGraph:
        """The whole snapshot graph, parsed on first use."""
        async with self._lock:
            if self._graph is not None:
                return self._graph
            if self._path is None or not self._path.is_file():
                msg = f"Graph snapshot not found: {self._path}"
                raise ConfigurationError(msg, {"path": str(self._path)})
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                msg = f"Graph snapshot is not valid JSON: {self._path}"
                raise ConfigurationError(msg, {"path": str(self._path)}) from exc
            elements = data.get("elements", []) if isinstance(data, dict) else data
            self._graph = parse_overpass_elements(elements or [])
            logger.info(
                "Loaded graph snapshot %s (%d ways, %d nodes)",
                self._path,
                len(self._graph.ways),
                len(self._graph.nodes),
            )
            return self._graph


class RoadGraphProvider:
    def __init__(
        self,
        cache: GraphCache,
        *,
        overpass: OverpassClient | None = None,
        snapshot: SnapshotGraphSource | None = None,
        settings: CoverageSettings | None = None,
        skip_remote: bool | None = None,
        catalog: WayCatalog | None = None,
    ) -> None:
        self._cache = cache
        self._catalog = catalog
        self._snapshot_cataloged = False
        self._overpass = overpass
        self._snapshot = snapshot
        self._settings = settings or CoverageSettings()
        self._skip_remote = SKIP_OVERPASS if skip_remote is None else skip_remote

    @property
    def cache(self) -> GraphCache:
        return self._cache

    async def get_graph(self, center: tuple[float, float], radius_m: float) -> RoadGraph:
        """Return the road graph within ``radius_m`` of a ``(lat, lng)`` centre."""
        lat, lng = center
        key = center_key(lat, lng)
        radius = cache_radius(radius_m, self._settings)

        exact = await self._cache.get(key, radius)
        if exact is not None and not exact.is_expired():
            logger.debug("Graph cache hit %s r=%dm", key, radius)
            return exact.graph

        larger = await self._cache.find_larger(key, radius)
        if larger is not None:
            logger.debug(
                "Graph cache reuse %s r=%dm from r=%dm",
                key,
                radius,
                larger.radius_m,
            )
            return larger.graph.filter_to_radius(lat, lng, radius)

        graph, source = await self._fetch(lat, lng, radius)
        if not graph.is_empty():
            await self._cache.put(
                key,
                radius,
                graph,
                expiry_days=self._settings.cache_expiry_days,
                source=source,
            )
            return graph

        if exact is not None:
            logger.warning("Using stale graph cache entry %s r=%dm", key, radius)
            return exact.graph
        logger.warning("No road graph available for %s r=%dm", key, radius)
        return graph

    async def graph_for_trace(self, points: list[PreprocessedPoint]) -> RoadGraph:
        """Graph covering every point of a trace plus the configured buffer."""
        bbox = GeometryService.bounding_box((p.lat, p.lng) for p in points)
        if bbox is None:
            return RoadGraph()
        min_lat, min_lng, max_lat, max_lng = bbox
        lat = (min_lat + max_lat) / 2.0
        lng = (min_lng + max_lng) / 2.0
        reach = max(
            GeometryService.haversine_distance(lng, lat, p.lng, p.lat) for p in points
        )
        return await self.get_graph((lat, lng), reach + self._settings.graph_buffer_m)

    async def _fetch(self, lat: float, lng: float, radius: int) -> tuple[RoadGraph, str | None]:
        if not self._skip_remote and self._overpass is not None:
            try:
                elements = await self._overpass.query_around(lat, lng, radius)
            except ExternalServiceException as exc:
                logger.warning("Overpass query failed, degrading: %s", exc.message)
            else:
                graph = parse_overpass_elements(elements)
                await self._record_ways(graph)
                return graph, "overpass"

        if self._snapshot is not None:
            snapshot = await self._snapshot.load()
            if not self._snapshot_cataloged:
                await self._record_ways(snapshot)
                self._snapshot_cataloged = True
            return snapshot.filter_to_radius(lat, lng, radius), "snapshot"

        return RoadGraph(), None

    async def _record_ways(self, graph: RoadGraph) -> None:
        if self._catalog is not None and graph.ways:
            await self._catalog.record(graph.ways.values())
