"""
Activity processing and area coverage entry points.

``process_activity`` runs one activity through the strictly sequential
stages preprocessing -> graph -> matching -> persistence -> street
recompute -> area scoping. Each activity is independent; no lock is held
across activities. Dependency outages degrade a stage instead of failing
the activity. Only configuration and storage errors propagate.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any

from config import MATCHING_STRATEGY
from core.exceptions import ConfigurationError
from core.http.osrm import OsrmClient
from core.http.overpass import OverpassClient
from date_utils import ensure_utc, normalize_to_utc_datetime
from db.manager import init_database
from street_coverage.aggregation import (
    STATUS_COMPLETED,
    aggregate_streets,
    segment_coverage,
)
from street_coverage.graph_cache import MongoGraphCache
from street_coverage.graph_provider import RoadGraphProvider, SnapshotGraphSource
from street_coverage.gpx import build_gpx_from_streets
from street_coverage.matching import EdgeMatcher, NodeProximityMatcher
from street_coverage.models import (
    ActivityResult,
    AreaSegment,
    AreaStreet,
    CoverageSettings,
    MatchResult,
)
from street_coverage.persistence import CoveragePersistence
from street_coverage.preprocessing import coerce_track_point, preprocess_trace
from street_coverage.scope import scope_areas_for_activity, touch_areas
from street_coverage.street_names import street_key_for
from street_coverage.way_catalog import WayCatalog

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import date, datetime

    from street_coverage.matching.base import CoverageMatcher
    from street_coverage.models import (
        RoadGraph,
        SegmentCoverage,
        StreetCoverage,
        TrackPoint,
        Way,
    )

logger = logging.getLogger(__name__)

STRATEGY_NODE = "node_proximity"
STRATEGY_EDGE = "edge"
STRATEGY_BOTH = "both"
VALID_STRATEGIES = {STRATEGY_NODE, STRATEGY_EDGE, STRATEGY_BOTH}


def activity_fingerprint(user_id: str, points: Sequence[TrackPoint]) -> str:
    """Stable SHA-256 key of a trace, used when the caller has no activity id."""
    digest = hashlib.sha256(user_id.encode("utf-8"))
    for point in points:
        ts = point.timestamp.isoformat() if point.timestamp else "-"
        digest.update(f"|{point.lat:.6f},{point.lng:.6f},{ts}".encode())
    return digest.hexdigest()


class StreetCoverageService:
    """Coverage core: turns activities into per-user street progress."""

    def __init__(
        self,
        provider: RoadGraphProvider,
        matchers: Sequence[CoverageMatcher],
        *,
        persistence: CoveragePersistence | None = None,
        settings: CoverageSettings | None = None,
        catalog: WayCatalog | None = None,
    ) -> None:
        if not matchers:
            msg = "At least one matcher is required"
            raise ConfigurationError(msg)
        self.provider = provider
        self.matchers = list(matchers)
        self.persistence = persistence or CoveragePersistence()
        self.settings = settings or CoverageSettings()
        self.catalog = catalog or WayCatalog()

    @classmethod
    def from_config(
        cls,
        settings: CoverageSettings | None = None,
        strategy: str = MATCHING_STRATEGY,
    ) -> StreetCoverageService:
        """Service wired to MongoDB, Overpass, OSRM and the optional snapshot."""
        settings = settings or CoverageSettings.from_env()
        if strategy not in VALID_STRATEGIES:
            msg = f"Unknown matching strategy '{strategy}'"
            raise ConfigurationError(msg, {"valid": sorted(VALID_STRATEGIES)})
        catalog = WayCatalog()
        provider = RoadGraphProvider(
            MongoGraphCache(),
            overpass=OverpassClient(
                max_retries=settings.overpass_max_retries,
                timeout_s=settings.overpass_timeout_s,
                retry_delay=settings.retry_delay_s,
            ),
            snapshot=SnapshotGraphSource.from_config(),
            settings=settings,
            catalog=catalog,
        )
        matchers: list[CoverageMatcher] = []
        if strategy in (STRATEGY_NODE, STRATEGY_BOTH):
            matchers.append(NodeProximityMatcher(settings))
        if strategy in (STRATEGY_EDGE, STRATEGY_BOTH):
            client = OsrmClient(
                max_retries=settings.osrm_max_retries,
                timeout_s=settings.osrm_timeout_s,
                retry_delay=settings.retry_delay_s,
            )
            matchers.append(EdgeMatcher(client, settings))
        return cls(provider, matchers, settings=settings, catalog=catalog)

    @property
    def uses_nodes(self) -> bool:
        return any(m.name == NodeProximityMatcher.name for m in self.matchers)

    @property
    def uses_edges(self) -> bool:
        return any(m.name == EdgeMatcher.name for m in self.matchers)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def process_activity(
        self,
        user_id: str,
        trace: Iterable[Any],
        activity_timestamp: str | datetime | date | None = None,
        activity_id: str | None = None,
    ) -> ActivityResult:
        """
        Apply one activity to a user's coverage.

        Malformed or empty traces produce a zero result. Re-submitting an
        activity returns the first result without writing anything.
        """
        raw_points = [p for p in (coerce_track_point(r) for r in trace or []) if p]
        if not raw_points:
            logger.info("Activity for user %s has no usable GPS points", user_id)
            return ActivityResult()

        activity_key = activity_id or activity_fingerprint(user_id, raw_points)
        processed = await self.persistence.find_processed(user_id, activity_key)
        if processed is not None:
            logger.info("Activity %s already processed for user %s", activity_key, user_id)
            return ActivityResult(
                units_hit=processed.units_hit,
                streets_updated=processed.streets_updated,
                area_ids=list(processed.area_ids),
                activity_key=activity_key,
                already_processed=True,
            )

        # Area scope only uses the caller's timestamp, never the trace's.
        scope_at = normalize_to_utc_datetime(activity_timestamp)
        activity_at = scope_at or next(
            (p.timestamp for p in raw_points if p.timestamp is not None),
            None,
        )
        cleaned = preprocess_trace(raw_points, self.settings)
        result = ActivityResult(activity_key=activity_key, dropped_points=cleaned.dropped_count)
        if not cleaned.points:
            return result

        graph = await self.provider.graph_for_trace(cleaned.points)
        if graph.is_empty():
            logger.warning("No road graph for activity %s; nothing to credit", activity_key)
            result.warnings.append("road graph unavailable")
            return result

        match = MatchResult()
        for matcher in self.matchers:
            match = match.merge(await matcher.match(cleaned, graph))
        result.nodes_hit = len(match.node_ids)
        result.edges_accepted = len(match.edges)
        result.units_hit = match.units_hit
        result.rejection_reasons = dict(match.rejection_reasons)
        result.warnings.extend(match.warnings)

        # Unit writes first; the street recompute reads them back.
        result.new_node_hits = await self.persistence.record_node_hits(
            user_id,
            match.node_ids,
            activity_at,
        )
        await self.persistence.record_edges(user_id, match.edges, activity_key, activity_at)

        touched_ways = self._touched_ways(graph, match)
        if touched_ways:
            streets = await self._recompute_streets(user_id, graph, touched_ways)
            result.streets_updated = len(streets)
            result.streets_completed = await self.persistence.merge_streets(
                user_id,
                streets,
                activity_key,
                activity_at,
            )

        areas = await scope_areas_for_activity(user_id, cleaned.points, scope_at)
        await touch_areas(areas, activity_at)
        result.area_ids = [str(area.id) for area in areas]

        await self.persistence.mark_processed(
            user_id,
            activity_key,
            units_hit=result.units_hit,
            streets_updated=result.streets_updated,
            area_ids=result.area_ids,
            point_count=len(raw_points),
            activity_timestamp=ensure_utc(activity_at),
        )
        logger.info(
            "Processed activity %s for user %s: %d units, %d streets, %d completed",
            activity_key[:12],
            user_id,
            result.units_hit,
            result.streets_updated,
            result.streets_completed,
        )
        return result

    @staticmethod
    def _touched_ways(graph: RoadGraph, match: MatchResult) -> set[int]:
        touched = {validated.edge.way_id for validated in match.edges}
        if match.node_ids:
            for way in graph.ways.values():
                if not match.node_ids.isdisjoint(way.node_ids):
                    touched.add(way.way_id)
        return touched

    async def _segments_for(self, user_id: str, ways: list[Way]) -> list[SegmentCoverage]:
        """Cumulative per-way coverage read after this activity's writes."""
        node_hits: dict[int, int] = {}
        edge_lengths: dict[int, float] = {}
        if self.uses_nodes:
            node_hits = await self.persistence.load_way_node_hits(user_id, ways)
        if self.uses_edges:
            edge_lengths = await self.persistence.load_way_edge_lengths(
                user_id,
                (way.way_id for way in ways),
            )
        return [
            segment_coverage(
                way,
                self.settings,
                hit_nodes=node_hits.get(way.way_id, 0) if self.uses_nodes else None,
                covered_length_m=edge_lengths.get(way.way_id, 0.0) if self.uses_edges else None,
            )
            for way in ways
        ]

    async def _recompute_streets(
        self,
        user_id: str,
        graph: RoadGraph,
        touched_ways: set[int],
    ) -> list[StreetCoverage]:
        street_keys = {street_key_for(graph.ways[way_id]) for way_id in touched_ways}
        local = [way for way in graph.ways.values() if street_key_for(way) in street_keys]
        await self.catalog.record(local)
        segments = await self._segments_for(
            user_id,
            await self._street_ways(street_keys, local),
        )
        return aggregate_streets(segments, self.settings)

    async def _street_ways(self, street_keys: set[str], local: list[Way]) -> list[Way]:
        """Every known way of the given streets; ``local`` ways take precedence."""
        ways = {way.way_id: way for way in await self.catalog.ways_for_streets(street_keys)}
        ways.update((way.way_id, way) for way in local)
        return list(ways.values())

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_area_coverage(
        self,
        user_id: str,
        center: tuple[float, float],
        radius_m: float,
    ) -> list[AreaStreet]:
        """
        Streets in an area with the user's progress and segment geometry.

        Percentages cover every known way of a street. Only the segments
        inside the area are listed.
        """
        graph = await self.provider.get_graph(center, radius_m)
        if graph.is_empty():
            return []

        local = list(graph.ways.values())
        ways = await self._street_ways({street_key_for(way) for way in local}, local)
        segments = await self._segments_for(user_id, ways)
        streets = aggregate_streets(segments, self.settings)
        progress = await self.persistence.load_street_progress(
            user_id,
            (street.street_key for street in streets),
        )

        area_streets: list[AreaStreet] = []
        for street in streets:
            stored = progress.get(street.street_key)
            if stored is None and street.weighted_ratio <= 0:
                continue
            percentage = max(street.percentage, stored.percentage if stored else 0.0)
            status = street.status
            if stored is not None and stored.ever_completed:
                status = STATUS_COMPLETED
            area_streets.append(
                AreaStreet(
                    street_key=street.street_key,
                    name=street.name,
                    percentage=percentage,
                    status=status,
                    length_m=street.total_length_m,
                    run_count=stored.run_count if stored else 0,
                    completion_count=stored.completion_count if stored else 0,
                    last_run_date=ensure_utc(stored.last_run_date) if stored else None,
                    segments=[
                        AreaSegment(
                            way_id=segment.way_id,
                            name=segment.name,
                            highway_type=segment.highway_type,
                            length_m=segment.length_m,
                            fraction=segment.fraction,
                            status=status,
                            geometry={
                                "type": "LineString",
                                "coordinates": graph.way_coordinates(segment.way_id),
                            },
                        )
                        for segment in street.segments
                        if segment.way_id in graph.ways
                    ],
                ),
            )
        area_streets.sort(key=lambda s: (-s.percentage, s.name or s.street_key))
        return area_streets

    async def export_area_gpx(
        self,
        user_id: str,
        center: tuple[float, float],
        radius_m: float,
        *,
        completed_only: bool = True,
    ) -> str:
        streets = await self.get_area_coverage(user_id, center, radius_m)
        if completed_only:
            streets = [s for s in streets if s.status == STATUS_COMPLETED]
        return build_gpx_from_streets(streets, name="Covered streets")


class _DefaultService:
    instance: StreetCoverageService | None = None


def get_default_service() -> StreetCoverageService:
    if _DefaultService.instance is None:
        _DefaultService.instance = StreetCoverageService.from_config()
    return _DefaultService.instance


async def process_activity(
    user_id: str,
    trace: Iterable[Any],
    activity_timestamp: str | datetime | date | None = None,
    activity_id: str | None = None,
) -> ActivityResult:
    await init_database()
    return await get_default_service().process_activity(
        user_id,
        trace,
        activity_timestamp=activity_timestamp,
        activity_id=activity_id,
    )


async def get_area_coverage(
    user_id: str,
    center: tuple[float, float],
    radius_m: float,
) -> list[AreaStreet]:
    await init_database()
    return await get_default_service().get_area_coverage(user_id, center, radius_m)
