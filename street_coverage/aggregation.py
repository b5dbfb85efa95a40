"""
Coverage aggregation.

Turns per-way hit data into per-street coverage:

- A way's node coverage is complete when every node is hit (short ways) or
  when the hit fraction meets the standard threshold (longer ways).
- A way's edge coverage is the covered share of its edge length.
- Ways are grouped into logical streets by normalized name and combined
  into a length-weighted ratio where short connector segments are
  down-weighted.
- A street is "completed" when the weighted ratio meets the street
  threshold and every primary segment is complete on its own. Segment
  display status follows the street status.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from street_coverage.models import CoverageSettings, SegmentCoverage, StreetCoverage
from street_coverage.street_names import street_key_for

if TYPE_CHECKING:
    from collections.abc import Iterable

    from street_coverage.models import Way

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_PARTIAL = "partial"

# Guards threshold comparisons against float noise (0.9 * 100 != 90.0).
_EPSILON = 1e-9


def is_way_complete(hit: int, total: int, settings: CoverageSettings | None = None) -> bool:
    """Node completion rule for one way."""
    settings = settings or CoverageSettings()
    if total <= 0:
        return False
    if total <= settings.short_way_node_threshold:
        return hit >= total
    return hit / total >= settings.standard_completion_threshold - _EPSILON


def segment_coverage(
    way: Way,
    settings: CoverageSettings,
    *,
    hit_nodes: int | None = None,
    covered_length_m: float | None = None,
) -> SegmentCoverage:
    """
    Coverage of one way from node hits, covered edge length, or both.

    With both, the better of the two fractions is used and the segment is
    complete when either rule says so.
    """
    fractions: list[float] = []
    complete = False
    if hit_nodes is not None and way.total_node_count > 0:
        hits = min(hit_nodes, way.total_node_count)
        fractions.append(hits / way.total_node_count)
        complete = complete or is_way_complete(hits, way.total_node_count, settings)
    if covered_length_m is not None and way.total_edge_length_m > 0:
        fraction = min(1.0, covered_length_m / way.total_edge_length_m)
        fractions.append(fraction)
        complete = complete or fraction >= settings.standard_completion_threshold - _EPSILON
    return SegmentCoverage(
        way_id=way.way_id,
        name=way.name,
        highway_type=way.highway_type,
        length_m=way.total_edge_length_m,
        fraction=max(fractions) if fractions else 0.0,
        complete=complete,
    )


def is_connector(segment: SegmentCoverage, settings: CoverageSettings) -> bool:
    return segment.length_m < settings.connector_max_length_m


def weighted_completion_ratio(
    segments: Iterable[SegmentCoverage],
    settings: CoverageSettings | None = None,
) -> float:
    """Length-weighted coverage ratio with connectors down-weighted."""
    settings = settings or CoverageSettings()
    segments = list(segments)
    if not segments:
        return 0.0
    numerator = 0.0
    denominator = 0.0
    for segment in segments:
        weight = settings.connector_weight if is_connector(segment, settings) else 1.0
        numerator += segment.fraction * segment.length_m * weight
        denominator += segment.length_m * weight
    if denominator <= 0:
        return sum(s.fraction for s in segments) / len(segments)
    return numerator / denominator


def street_status(
    segments: list[SegmentCoverage],
    ratio: float,
    settings: CoverageSettings,
) -> str:
    if ratio < settings.street_completion_threshold - _EPSILON:
        return STATUS_PARTIAL
    primary = [s for s in segments if not is_connector(s, settings)]
    required = primary or segments
    if all(s.complete for s in required):
        return STATUS_COMPLETED
    return STATUS_PARTIAL


def aggregate_streets(
    segments: Iterable[SegmentCoverage],
    settings: CoverageSettings | None = None,
) -> list[StreetCoverage]:
    """Group segments into logical streets and compute street status."""
    settings = settings or CoverageSettings()
    groups: dict[str, list[SegmentCoverage]] = defaultdict(list)
    for segment in segments:
        groups[street_key_for(segment)].append(segment)

    streets: list[StreetCoverage] = []
    for key, members in groups.items():
        members.sort(key=lambda s: (-s.length_m, s.way_id))
        ratio = weighted_completion_ratio(members, settings)
        status = street_status(members, ratio, settings)
        streets.append(
            StreetCoverage(
                street_key=key,
                name=members[0].name,
                segments=members,
                weighted_ratio=ratio,
                status=status,
                segment_status={s.way_id: status for s in members},
            ),
        )
    logger.debug(
        "Aggregated %d segments into %d streets",
        sum(len(g) for g in groups.values()),
        len(streets),
    )
    return streets
