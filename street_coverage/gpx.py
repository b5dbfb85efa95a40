"""GPX import and export for activity traces."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import gpxpy
import gpxpy.gpx

from core.exceptions import ValidationException
from core.spatial import GeometryService
from date_utils import ensure_utc
from street_coverage.models import TrackPoint

if TYPE_CHECKING:
    from collections.abc import Iterable

    from street_coverage.models import AreaStreet

logger = logging.getLogger(__name__)


def parse_gpx(content: str | bytes) -> list[TrackPoint]:
    """
    Parse GPX XML into ordered track points.

    Track points are preferred; route points are used when a file has no
    tracks. Points with invalid coordinates are skipped.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        gpx = gpxpy.parse(content)
    except gpxpy.gpx.GPXException as exc:
        msg = f"Invalid GPX document: {exc}"
        raise ValidationException(msg) from exc

    raw_points: list[gpxpy.gpx.GPXTrackPoint | gpxpy.gpx.GPXRoutePoint] = [
        point
        for track in gpx.tracks
        for segment in track.segments
        for point in segment.points
    ]
    if not raw_points:
        raw_points = [point for route in gpx.routes for point in route.points]

    points: list[TrackPoint] = []
    skipped = 0
    for point in raw_points:
        valid, pair = GeometryService.validate_coordinate_pair(
            [point.longitude, point.latitude],
        )
        if not valid or pair is None:
            skipped += 1
            continue
        points.append(
            TrackPoint(lat=pair[1], lng=pair[0], timestamp=ensure_utc(point.time)),
        )
    if skipped:
        logger.debug("Skipped %d GPX points with invalid coordinates", skipped)
    return points


def build_gpx_from_points(
    points: Iterable[TrackPoint],
    name: str = "Activity",
    description: str | None = None,
) -> str:
    """Build GPX XML from track points."""
    gpx = gpxpy.gpx.GPX()
    gpx.creator = "Street Keeper"

    track = gpxpy.gpx.GPXTrack()
    track.name = name
    if description:
        track.description = description
    gpx.tracks.append(track)

    segment = gpxpy.gpx.GPXTrackSegment()
    track.segments.append(segment)

    for point in points:
        segment.points.append(
            gpxpy.gpx.GPXTrackPoint(point.lat, point.lng, time=point.timestamp),
        )

    return gpx.to_xml()


def build_gpx_from_streets(streets: Iterable[AreaStreet], name: str = "Coverage") -> str:
    """One GPX track per street, one segment per covered way."""
    gpx = gpxpy.gpx.GPX()
    gpx.creator = "Street Keeper"
    gpx.name = name

    for street in streets:
        track = gpxpy.gpx.GPXTrack()
        track.name = street.name or street.street_key
        track.description = f"{street.percentage:.2f}% ({street.status})"
        for area_segment in street.segments:
            coords = area_segment.geometry.get("coordinates") or []
            if len(coords) < 2:
                continue
            segment = gpxpy.gpx.GPXTrackSegment()
            for lng, lat, *_ in coords:
                segment.points.append(gpxpy.gpx.GPXTrackPoint(lat, lng))
            track.segments.append(segment)
        if track.segments:
            gpx.tracks.append(track)

    return gpx.to_xml()
