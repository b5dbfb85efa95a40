"""
Edge matching through OSRM map matching.

Each continuous trace segment is sent to OSRM in chunks no larger than the
per-request coordinate cap. Consecutive chunks overlap by one coordinate;
one edge of continuity may still be lost at a boundary. Matched node pairs
are resolved to local graph edges, and every edge then has to pass all
binary gates:

- length >= minimum edge length
- implied traversal speed <= maximum plausible speed (when defined)
- highway type not in the excluded set

Rejections are counted, never raised. If OSRM is unavailable the matcher
returns no edges and a warning.
"""

from __future__ import annotations

import logging
from itertools import pairwise
from typing import TYPE_CHECKING, Any

from core.exceptions import ExternalServiceException
from street_coverage.constants import OSRM_MIN_CHUNK_POINTS
from street_coverage.matching.base import (
    REJECT_EXCLUDED_HIGHWAY,
    REJECT_SPEED_TOO_HIGH,
    REJECT_TOO_SHORT,
    REJECT_UNRESOLVED,
)
from street_coverage.models import CoverageSettings, MatchResult, ValidatedEdge
from street_coverage.preprocessing import compute_speed_mps

if TYPE_CHECKING:
    from core.http.osrm import OsrmClient
    from street_coverage.models import (
        GraphEdge,
        PreprocessedPoint,
        PreprocessedTrace,
        RoadGraph,
    )

logger = logging.getLogger(__name__)


def validate_edge(
    edge: GraphEdge,
    implied_speed_mps: float | None,
    settings: CoverageSettings,
) -> str | None:
    """Return the first failed gate, or None when the edge is accepted."""
    if edge.length_m < settings.min_edge_length_m:
        return REJECT_TOO_SHORT
    if (edge.highway_type or "").lower() in settings.excluded_highway_types:
        return REJECT_EXCLUDED_HIGHWAY
    if implied_speed_mps is not None and implied_speed_mps > settings.max_speed_mps:
        return REJECT_SPEED_TOO_HIGH
    return None


def chunk_points(
    points: list[PreprocessedPoint],
    max_coordinates: int,
    min_chunk: int = OSRM_MIN_CHUNK_POINTS,
) -> list[list[PreprocessedPoint]]:
    """
    Split points into overlapping chunks of at most ``max_coordinates``.

    A short final chunk is extended backwards to ``min_chunk`` points.
    """
    if len(points) <= max_coordinates:
        return [points]
    step = max_coordinates - 1
    chunks: list[list[PreprocessedPoint]] = []
    start = 0
    while True:
        chunks.append(points[start : start + max_coordinates])
        if start + max_coordinates >= len(points):
            break
        start += step

    if len(chunks[-1]) < min_chunk:
        chunks[-1] = points[-min(min_chunk, max_coordinates) :]
    return chunks


def _timestamps_for(chunk: list[PreprocessedPoint]) -> list[int] | None:
    """Unix timestamps, only when every point has one and they never decrease."""
    if any(p.timestamp is None for p in chunk):
        return None
    values = [int(p.timestamp.timestamp()) for p in chunk]
    if any(b < a for a, b in pairwise(values)):
        return None
    return values


class EdgeMatcher:
    name = "edge"

    def __init__(self, client: OsrmClient, settings: CoverageSettings | None = None) -> None:
        self.client = client
        self.settings = settings or CoverageSettings()

    async def match(self, trace: PreprocessedTrace, graph: RoadGraph) -> MatchResult:
        result = MatchResult()
        if graph.is_empty():
            return result
        accepted: set[str] = set()

        for segment in trace.segments():
            if len(segment) < 2:
                continue
            chunks = chunk_points(segment, self.settings.osrm_max_coordinates)
            for index, chunk in enumerate(chunks, start=1):
                if len(chunk) < 2:
                    continue
                try:
                    data = await self.client.match(
                        [(p.lng, p.lat) for p in chunk],
                        timestamps=_timestamps_for(chunk),
                    )
                except ExternalServiceException as exc:
                    warning = (
                        f"Chunk {index}/{len(chunks)} ({len(chunk)} points) failed: "
                        f"{exc.message}. Skipping this chunk."
                    )
                    logger.warning("OSRM %s", warning)
                    result.warnings.append(warning)
                    continue
                self._collect(data, chunk, graph, result, accepted)

        logger.debug(
            "Edge matching: %d accepted, rejections=%s",
            len(result.edges),
            result.rejection_reasons,
        )
        return result

    def _collect(
        self,
        data: dict[str, Any],
        chunk: list[PreprocessedPoint],
        graph: RoadGraph,
        result: MatchResult,
        accepted: set[str],
    ) -> None:
        waypoints_by_matching: dict[int, list[tuple[int, int]]] = {}
        for input_index, tracepoint in enumerate(data.get("tracepoints") or []):
            if not tracepoint:
                continue
            matching_index = tracepoint.get("matchings_index")
            waypoint_index = tracepoint.get("waypoint_index")
            if matching_index is None or waypoint_index is None:
                continue
            waypoints_by_matching.setdefault(int(matching_index), []).append(
                (int(waypoint_index), input_index),
            )

        for matching_index, matching in enumerate(data.get("matchings") or []):
            waypoints = [
                input_index
                for _, input_index in sorted(waypoints_by_matching.get(matching_index, []))
            ]
            for leg_index, leg in enumerate(matching.get("legs") or []):
                speed = self._leg_speed(leg, leg_index, waypoints, chunk)
                nodes = (leg.get("annotation") or {}).get("nodes") or []
                for node_a, node_b in pairwise(nodes):
                    if node_a == node_b:
                        continue
                    candidates = graph.edges_between(node_a, node_b)
                    if not candidates:
                        self._reject(result, REJECT_UNRESOLVED)
                        continue
                    for edge in candidates:
                        if edge.edge_id in accepted:
                            continue
                        reason = validate_edge(edge, speed, self.settings)
                        if reason is not None:
                            self._reject(result, reason)
                            continue
                        accepted.add(edge.edge_id)
                        result.edges.append(ValidatedEdge(edge=edge, implied_speed_mps=speed))

    def _leg_speed(
        self,
        leg: dict[str, Any],
        leg_index: int,
        waypoints: list[int],
        chunk: list[PreprocessedPoint],
    ) -> float | None:
        """Average speed over a leg; undefined across stationary endpoints."""
        if leg_index + 1 >= len(waypoints):
            return None
        start = chunk[waypoints[leg_index]]
        end = chunk[waypoints[leg_index + 1]]
        if start.stationary or end.stationary:
            return None
        try:
            distance = float(leg.get("distance") or 0.0)
        except (TypeError, ValueError):
            return None
        return compute_speed_mps(
            distance,
            start.timestamp,
            end.timestamp,
            self.settings.min_time_delta_s,
        )

    @staticmethod
    def _reject(result: MatchResult, reason: str) -> None:
        result.rejection_reasons[reason] = result.rejection_reasons.get(reason, 0) + 1
