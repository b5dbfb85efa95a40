"""
In-memory data model for the coverage core.

Reference data (nodes, edges, ways) is immutable and shared read-only
between users. Persisted per-user state lives in ``db.models``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from functools import cached_property
from typing import Any

import networkx as nx

from core.exceptions import ConfigurationError
from core.spatial import GeometryService
from street_coverage import constants as c


@dataclass(frozen=True)
class CoverageSettings:
    """Complete configuration surface of the coverage pipeline."""

    snap_radius_m: float = c.SNAP_RADIUS_METERS
    short_way_node_threshold: int = c.SHORT_WAY_NODE_THRESHOLD
    standard_completion_threshold: float = c.STANDARD_COMPLETION_THRESHOLD
    min_edge_length_m: float = c.MIN_EDGE_LENGTH_METERS
    max_speed_mps: float = c.MAX_SPEED_MPS
    excluded_highway_types: frozenset[str] = c.EXCLUDED_HIGHWAY_TYPES
    jump_distance_m: float = c.JUMP_DISTANCE_METERS
    jump_resume_points: int = c.JUMP_RESUME_POINTS
    stopped_speed_mps: float = c.STOPPED_SPEED_MPS
    min_time_delta_s: float = c.MIN_TIME_DELTA_SECONDS
    connector_max_length_m: float = c.CONNECTOR_MAX_LENGTH_METERS
    connector_weight: float = c.CONNECTOR_WEIGHT
    street_completion_threshold: float = c.STREET_COMPLETION_THRESHOLD
    cache_expiry_days: int = c.CACHE_EXPIRY_DAYS
    graph_radius_step_m: int = c.GRAPH_RADIUS_STEP_METERS
    graph_buffer_m: float = c.GRAPH_BUFFER_METERS
    graph_max_radius_m: int = c.GRAPH_MAX_RADIUS_METERS
    overpass_max_retries: int = c.OVERPASS_MAX_RETRIES
    overpass_timeout_s: float = c.OVERPASS_TIMEOUT_SECONDS
    osrm_max_coordinates: int = c.OSRM_MAX_COORDINATES
    osrm_max_retries: int = c.OSRM_MAX_RETRIES
    osrm_timeout_s: float = c.OSRM_TIMEOUT_SECONDS
    retry_delay_s: float = c.RETRY_BASE_DELAY_SECONDS

    def __post_init__(self) -> None:
        for name in (
            "standard_completion_threshold",
            "street_completion_threshold",
            "connector_weight",
        ):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                msg = f"{name} must be within (0, 1], got {value}"
                raise ConfigurationError(msg, {"setting": name, "value": value})
        if self.osrm_max_coordinates < 2:
            msg = "osrm_max_coordinates must allow at least two coordinates"
            raise ConfigurationError(msg, {"value": self.osrm_max_coordinates})
        if self.graph_radius_step_m <= 0:
            msg = "graph_radius_step_m must be positive"
            raise ConfigurationError(msg, {"value": self.graph_radius_step_m})
        # Accept any iterable of highway types from callers.
        object.__setattr__(
            self,
            "excluded_highway_types",
            frozenset(t.lower() for t in self.excluded_highway_types),
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> CoverageSettings:
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            msg = f"Unknown coverage settings: {sorted(unknown)}"
            raise ConfigurationError(msg)
        return cls(**overrides)


# =============================================================================
# GPS trace
# =============================================================================


@dataclass(frozen=True)
class TrackPoint:
    lat: float
    lng: float
    timestamp: datetime | None = None


@dataclass(frozen=True)
class PreprocessedPoint:
    lat: float
    lng: float
    timestamp: datetime | None
    stationary: bool = False
    # Points separated by a preserved GPS break carry different indexes.
    segment_index: int = 0


@dataclass
class PreprocessedTrace:
    points: list[PreprocessedPoint] = field(default_factory=list)
    dropped_count: int = 0

    def __len__(self) -> int:
        return len(self.points)

    def segments(self) -> list[list[PreprocessedPoint]]:
        """Continuous runs of points; breaks are never bridged."""
        runs: list[list[PreprocessedPoint]] = []
        current_index: int | None = None
        for point in self.points:
            if point.segment_index != current_index:
                runs.append([])
                current_index = point.segment_index
            runs[-1].append(point)
        return runs


# =============================================================================
# Road graph reference data
# =============================================================================


def make_edge_id(node_a: int, node_b: int, way_id: int) -> str:
    """Stable id per (nodeA, nodeB, way) triple, independent of direction."""
    lo, hi = sorted((int(node_a), int(node_b)))
    return f"{way_id}:{lo}-{hi}"


@dataclass(frozen=True)
class GraphNode:
    node_id: int
    lat: float
    lng: float


@dataclass(frozen=True)
class GraphEdge:
    edge_id: str
    node_a: int
    node_b: int
    way_id: int
    way_name: str | None
    highway_type: str
    length_m: float


@dataclass(frozen=True)
class Way:
    way_id: int
    name: str | None
    highway_type: str
    node_ids: tuple[int, ...]
    total_node_count: int
    total_edge_length_m: float

    @property
    def osm_id(self) -> str:
        return f"way/{self.way_id}"


@dataclass
class RoadGraph:
    """Local street graph for an area: nodes, edges and ways by id."""

    nodes: dict[int, GraphNode] = field(default_factory=dict)
    edges: dict[str, GraphEdge] = field(default_factory=dict)
    ways: dict[int, Way] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        nodes: dict[int, GraphNode],
        raw_ways: list[dict[str, Any]],
    ) -> RoadGraph:
        """
        Build a graph from nodes and raw way records.

        Each raw way needs ``way_id``, ``node_ids``, ``name`` and
        ``highway_type``. Edges are created between consecutive nodes.
        """
        edges: dict[str, GraphEdge] = {}
        ways: dict[int, Way] = {}
        for raw in raw_ways:
            way_id = int(raw["way_id"])
            node_ids = tuple(int(n) for n in raw.get("node_ids") or ())
            name = raw.get("name") or None
            highway_type = raw.get("highway_type") or "unknown"
            way_edge_ids: set[str] = set()
            total_length = 0.0
            for a, b in zip(node_ids, node_ids[1:], strict=False):
                if a == b or a not in nodes or b not in nodes:
                    continue
                edge_id = make_edge_id(a, b, way_id)
                if edge_id in way_edge_ids:
                    continue
                na, nb = nodes[a], nodes[b]
                length = GeometryService.haversine_distance(na.lng, na.lat, nb.lng, nb.lat)
                lo, hi = sorted((a, b))
                edges[edge_id] = GraphEdge(
                    edge_id=edge_id,
                    node_a=lo,
                    node_b=hi,
                    way_id=way_id,
                    way_name=name,
                    highway_type=highway_type,
                    length_m=length,
                )
                way_edge_ids.add(edge_id)
                total_length += length
            present = [n for n in dict.fromkeys(node_ids) if n in nodes]
            if len(present) < 2:
                continue
            ways[way_id] = Way(
                way_id=way_id,
                name=name,
                highway_type=highway_type,
                node_ids=node_ids,
                total_node_count=len(present),
                total_edge_length_m=total_length,
            )
        used_nodes = {n for way in ways.values() for n in way.node_ids if n in nodes}
        return cls(
            nodes={n: nodes[n] for n in used_nodes},
            edges=edges,
            ways=ways,
        )

    def is_empty(self) -> bool:
        return not self.ways

    @cached_property
    def _adjacency(self) -> nx.MultiGraph:
        graph = nx.MultiGraph()
        for edge in self.edges.values():
            graph.add_edge(edge.node_a, edge.node_b, key=edge.edge_id)
        return graph

    def edges_between(self, node_a: int, node_b: int) -> list[GraphEdge]:
        """All edges directly joining two nodes (one per way sharing them)."""
        data = self._adjacency.get_edge_data(int(node_a), int(node_b))
        if not data:
            return []
        return [self.edges[edge_id] for edge_id in data]

    def way_edges(self, way_id: int) -> list[GraphEdge]:
        return [edge for edge in self.edges.values() if edge.way_id == way_id]

    def way_coordinates(self, way_id: int) -> list[list[float]]:
        """GeoJSON-ordered [lng, lat] coordinates of a way."""
        way = self.ways.get(way_id)
        if way is None:
            return []
        return [
            [self.nodes[n].lng, self.nodes[n].lat] for n in way.node_ids if n in self.nodes
        ]

    def filter_to_radius(self, lat: float, lng: float, radius_m: float) -> RoadGraph:
        """
        Keep ways with at least one node inside the circle.

        Kept ways retain all their nodes and edges so per-way totals stay
        identical to the unfiltered graph.
        """
        inside = {
            node_id
            for node_id, node in self.nodes.items()
            if GeometryService.haversine_distance(lng, lat, node.lng, node.lat) <= radius_m
        }
        ways = {
            way_id: way
            for way_id, way in self.ways.items()
            if any(n in inside for n in way.node_ids)
        }
        node_ids = {n for way in ways.values() for n in way.node_ids if n in self.nodes}
        return RoadGraph(
            nodes={n: self.nodes[n] for n in node_ids},
            edges={eid: e for eid, e in self.edges.items() if e.way_id in ways},
            ways=ways,
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for cache storage (JSON/BSON friendly)."""
        return {
            "nodes": [[n.node_id, n.lat, n.lng] for n in self.nodes.values()],
            "ways": [
                {
                    "way_id": w.way_id,
                    "name": w.name,
                    "highway_type": w.highway_type,
                    "node_ids": list(w.node_ids),
                }
                for w in self.ways.values()
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RoadGraph:
        nodes = {
            int(node_id): GraphNode(int(node_id), float(lat), float(lng))
            for node_id, lat, lng in payload.get("nodes") or []
        }
        return cls.build(nodes, list(payload.get("ways") or []))


# =============================================================================
# Matching and aggregation results
# =============================================================================


@dataclass(frozen=True)
class ValidatedEdge:
    """A matched edge that passed every validation gate."""

    edge: GraphEdge
    implied_speed_mps: float | None = None


@dataclass
class MatchResult:
    node_ids: set[int] = field(default_factory=set)
    edges: list[ValidatedEdge] = field(default_factory=list)
    rejection_reasons: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def units_hit(self) -> int:
        return len(self.node_ids) + len(self.edges)

    def merge(self, other: MatchResult) -> MatchResult:
        reasons = dict(self.rejection_reasons)
        for reason, count in other.rejection_reasons.items():
            reasons[reason] = reasons.get(reason, 0) + count
        return MatchResult(
            node_ids=self.node_ids | other.node_ids,
            edges=[*self.edges, *other.edges],
            rejection_reasons=reasons,
            warnings=[*self.warnings, *other.warnings],
        )


@dataclass(frozen=True)
class SegmentCoverage:
    """Coverage of one OSM way, the segment unit of a logical street."""

    way_id: int
    name: str | None
    highway_type: str
    length_m: float
    fraction: float
    complete: bool

    @property
    def osm_id(self) -> str:
        return f"way/{self.way_id}"


@dataclass
class StreetCoverage:
    """A logical (name-merged) street and its aggregated coverage."""

    street_key: str
    name: str | None
    segments: list[SegmentCoverage]
    weighted_ratio: float
    status: str  # "completed" | "partial"
    segment_status: dict[int, str] = field(default_factory=dict)

    @property
    def percentage(self) -> float:
        return round(min(1.0, max(0.0, self.weighted_ratio)) * 100.0, 2)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def total_length_m(self) -> float:
        return sum(s.length_m for s in self.segments)


@dataclass
class ActivityResult:
    """Outcome of processing one activity."""

    units_hit: int = 0
    nodes_hit: int = 0
    new_node_hits: int = 0
    edges_accepted: int = 0
    streets_updated: int = 0
    streets_completed: int = 0
    area_ids: list[str] = field(default_factory=list)
    activity_key: str | None = None
    already_processed: bool = False
    dropped_points: int = 0
    rejection_reasons: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# Area coverage read path
# =============================================================================


@dataclass(frozen=True)
class AreaSegment:
    way_id: int
    name: str | None
    highway_type: str
    length_m: float
    fraction: float
    status: str
    geometry: dict[str, Any]

    @property
    def osm_id(self) -> str:
        return f"way/{self.way_id}"

    def to_feature(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {
                "osm_id": self.osm_id,
                "name": self.name,
                "highway_type": self.highway_type,
                "length_m": round(self.length_m, 2),
                "coverage": round(self.fraction, 4),
                "status": self.status,
            },
        }


@dataclass
class AreaStreet:
    street_key: str
    name: str | None
    percentage: float
    status: str
    length_m: float
    run_count: int = 0
    completion_count: int = 0
    last_run_date: datetime | None = None
    segments: list[AreaSegment] = field(default_factory=list)

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [segment.to_feature() for segment in self.segments],
        }
