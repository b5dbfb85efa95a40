"""
Spatial and geometry utilities.

Centralizes coordinate validation, distance calculations, bounding boxes
and the pyproj helper used to project small areas into local meters.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

import pyproj

from core.constants import EARTH_RADIUS_M, METERS_PER_DEGREE_LAT

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

WGS84 = pyproj.CRS("EPSG:4326")


class GeometryService:
    """Authoritative geometry operations for the application."""

    EARTH_RADIUS_M = EARTH_RADIUS_M

    @staticmethod
    def validate_coordinate_pair(
        coord: Sequence[Any],
    ) -> tuple[bool, list[float] | None]:
        """Validate a [lon, lat] coordinate pair."""
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            return False, None
        try:
            lon = float(coord[0])
            lat = float(coord[1])
        except (TypeError, ValueError, IndexError):
            return False, None
        if math.isnan(lon) or math.isnan(lat):
            return False, None
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            return False, None
        return True, [lon, lat]

    @staticmethod
    def haversine_distance(
        lon1: float,
        lat1: float,
        lon2: float,
        lat2: float,
        unit: str = "meters",
    ) -> float:
        """Calculate the great-circle distance using the Haversine formula."""
        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        dphi = math.radians(lat2 - lat1)
        dlmb = math.radians(lon2 - lon1)
        a = (
            math.sin(dphi / 2) ** 2
            + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
        )
        distance_m = (
            2 * GeometryService.EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))
        )
        if unit == "meters":
            return distance_m
        if unit == "km":
            return distance_m / 1000.0
        msg = "Invalid unit. Use 'meters' or 'km'."
        raise ValueError(msg)

    @staticmethod
    def bbox_around_point(
        lat: float,
        lon: float,
        radius_m: float,
    ) -> tuple[float, float, float, float]:
        """Return (min_lat, min_lon, max_lat, max_lon) enclosing a circle."""
        lat_deg = radius_m / METERS_PER_DEGREE_LAT
        cos_lat = max(math.cos(math.radians(lat)), 1e-6)
        lon_deg = radius_m / (METERS_PER_DEGREE_LAT * cos_lat)
        return lat - lat_deg, lon - lon_deg, lat + lat_deg, lon + lon_deg

    @staticmethod
    def bounding_box(
        points: Iterable[tuple[float, float]],
    ) -> tuple[float, float, float, float] | None:
        """Return (min_lat, min_lon, max_lat, max_lon) for (lat, lon) pairs."""
        lats: list[float] = []
        lons: list[float] = []
        for lat, lon in points:
            lats.append(lat)
            lons.append(lon)
        if not lats:
            return None
        return min(lats), min(lons), max(lats), max(lons)

    @staticmethod
    def bboxes_intersect(
        a: tuple[float, float, float, float],
        b: tuple[float, float, float, float],
    ) -> bool:
        """Axis-aligned overlap test for (min_lat, min_lon, max_lat, max_lon)."""
        return not (a[2] < b[0] or b[2] < a[0] or a[3] < b[1] or b[3] < a[1])


def get_local_projection(
    lat: float,
    lon: float,
) -> Callable[[Any, Any], tuple[Any, Any]]:
    """
    Build a local azimuthal equidistant projection centered on a point.

    The returned callable takes (lon, lat), scalars or arrays, and returns
    (x, y) in meters.
    """
    local_crs = pyproj.CRS.from_proj4(
        f"+proj=aeqd +lat_0={lat} +lon_0={lon} +datum=WGS84 +units=m +no_defs",
    )
    return pyproj.Transformer.from_crs(
        WGS84,
        local_crs,
        always_xy=True,
    ).transform

