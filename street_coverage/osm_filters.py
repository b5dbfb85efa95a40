"""OSM tag helpers shared by the graph provider and the edge gates."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Routable highway values that may form part of a street graph. Everything
# else (buildings, areas, proposed roads) is ignored when building a graph.
ROUTABLE_HIGHWAY_TYPES = {
    "motorway",
    "trunk",
    "primary",
    "secondary",
    "tertiary",
    "unclassified",
    "residential",
    "motorway_link",
    "trunk_link",
    "primary_link",
    "secondary_link",
    "tertiary_link",
    "living_street",
    "service",
    "pedestrian",
    "track",
    "footway",
    "path",
    "cycleway",
    "bridleway",
    "steps",
    "road",
}

NON_ROUTABLE_HIGHWAY_TYPES = {
    "proposed",
    "construction",
    "abandoned",
    "platform",
    "raceway",
    "elevator",
}


def normalize_tag_values(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list | tuple | set):
        return [str(item).strip().lower() for item in value if item is not None]
    raw = str(value)
    if ";" not in raw:
        token = raw.strip().lower()
        return [token] if token else []
    values: list[str] = []
    for part in raw.split(";"):
        token = part.strip().lower()
        if token:
            values.append(token)
    return values


def effective_highway_type(tags: Mapping[str, Any]) -> str | None:
    """
    Highway classification used by the edge gates.

    Service roads carrying a ``service`` subtag are classified by that
    subtag, so ``highway=service, service=driveway`` becomes ``driveway``.
    """
    highway_values = normalize_tag_values(tags.get("highway"))
    if not highway_values:
        return None
    highway = highway_values[0]
    if highway == "service":
        service_values = normalize_tag_values(tags.get("service"))
        if service_values:
            return service_values[0]
    return highway


def is_graph_way(tags: Mapping[str, Any]) -> bool:
    """True for ways that belong in a street graph."""
    highway_values = normalize_tag_values(tags.get("highway"))
    if not highway_values:
        return False
    if str(tags.get("area", "")).strip().lower() == "yes":
        return False
    highway = highway_values[0]
    if highway in NON_ROUTABLE_HIGHWAY_TYPES:
        return False
    return highway in ROUTABLE_HIGHWAY_TYPES


def way_display_name(tags: Mapping[str, Any]) -> str | None:
    name = tags.get("name")
    if name is None:
        return None
    text = str(name).strip()
    return text or None
