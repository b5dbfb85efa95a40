"""
Node-proximity matching.

Every graph node within the snap radius of any trace point is hit. There
is no map matching or graph traversal: a pure proximity test that
tolerates GPS noise but may over-credit dense node clusters such as
intersections. Stationary points count like any other point.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import shapely
from shapely.strtree import STRtree

from core.spatial import get_local_projection
from street_coverage.models import CoverageSettings, MatchResult

if TYPE_CHECKING:
    from street_coverage.models import PreprocessedTrace, RoadGraph

logger = logging.getLogger(__name__)


class NodeProximityMatcher:
    name = "node_proximity"

    def __init__(self, settings: CoverageSettings | None = None) -> None:
        self.settings = settings or CoverageSettings()

    def hit_nodes(self, trace: PreprocessedTrace, graph: RoadGraph) -> set[int]:
        if not trace.points or not graph.nodes:
            return set()

        center_lat = float(np.mean([p.lat for p in trace.points]))
        center_lng = float(np.mean([p.lng for p in trace.points]))
        to_meters = get_local_projection(center_lat, center_lng)

        node_ids = np.fromiter(graph.nodes.keys(), dtype=np.int64, count=len(graph.nodes))
        node_x, node_y = to_meters(
            np.array([graph.nodes[n].lng for n in node_ids]),
            np.array([graph.nodes[n].lat for n in node_ids]),
        )
        point_x, point_y = to_meters(
            np.array([p.lng for p in trace.points]),
            np.array([p.lat for p in trace.points]),
        )

        tree = STRtree(shapely.points(node_x, node_y))
        _, tree_indices = tree.query(
            shapely.points(point_x, point_y),
            predicate="dwithin",
            distance=self.settings.snap_radius_m,
        )
        return {int(node_ids[i]) for i in np.unique(tree_indices)}

    async def match(self, trace: PreprocessedTrace, graph: RoadGraph) -> MatchResult:
        node_ids = self.hit_nodes(trace, graph)
        logger.debug(
            "Node proximity: %d nodes hit from %d points",
            len(node_ids),
            len(trace.points),
        )
        return MatchResult(node_ids=node_ids)
