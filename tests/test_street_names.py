import pytest

from street_coverage.models import Way
from street_coverage.street_names import is_unnamed, normalize_street_name, street_key_for


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Elm Grove", "elm grove"),
        ("Elm Grove (B2154)", "elm grove"),
        ("High St", "high street"),
        ("St John's Road", "saint johns road"),
        ("The Avenue", "avenue"),
        ("N Lamar Blvd", "north lamar boulevard"),
        ("Oak Ave.", "oak avenue"),
        ("  Main   Street ", "main street"),
        ("E", "e"),
    ],
)
def test_normalize_street_name(raw: str, expected: str) -> None:
    assert normalize_street_name(raw) == expected


def test_unnamed_values() -> None:
    assert is_unnamed(None)
    assert is_unnamed("")
    assert is_unnamed("Unnamed Road")
    assert not is_unnamed("Unnamed Lane")


def test_street_key_for_unnamed_way_uses_osm_id() -> None:
    way = Way(
        way_id=42,
        name=None,
        highway_type="service",
        node_ids=(1, 2),
        total_node_count=2,
        total_edge_length_m=10.0,
    )

    assert street_key_for(way) == "way/42"
