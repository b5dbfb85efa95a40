import pytest

from core.spatial import GeometryService, get_local_projection


def test_validate_coordinate_pair() -> None:
    valid, coords = GeometryService.validate_coordinate_pair([-97.0, 32.0])
    assert valid
    assert coords == [-97.0, 32.0]

    invalid, coords = GeometryService.validate_coordinate_pair([200.0, 0.0])
    assert not invalid
    assert coords is None

    assert GeometryService.validate_coordinate_pair(["nan", 1.0]) == (False, None)
    assert GeometryService.validate_coordinate_pair([1.0]) == (False, None)


def test_haversine_distance_one_degree_latitude() -> None:
    meters = GeometryService.haversine_distance(-97.0, 30.0, -97.0, 31.0)

    assert meters == pytest.approx(111_195, rel=1e-3)
    assert GeometryService.haversine_distance(
        -97.0, 30.0, -97.0, 31.0, unit="km"
    ) == pytest.approx(111.195, rel=1e-3)
    with pytest.raises(ValueError):
        GeometryService.haversine_distance(0, 0, 0, 0, unit="miles")


def test_bbox_around_point_covers_radius() -> None:
    min_lat, min_lon, max_lat, max_lon = GeometryService.bbox_around_point(
        30.0, -97.0, 1000.0
    )

    assert min_lat < 30.0 < max_lat
    assert min_lon < -97.0 < max_lon
    north = GeometryService.haversine_distance(-97.0, 30.0, -97.0, max_lat)
    east = GeometryService.haversine_distance(-97.0, 30.0, max_lon, 30.0)
    assert north == pytest.approx(1000.0, rel=0.01)
    assert east == pytest.approx(1000.0, rel=0.01)


def test_bounding_box_and_intersection() -> None:
    box = GeometryService.bounding_box([(30.0, -97.0), (30.1, -96.9)])

    assert box == (30.0, -97.0, 30.1, -96.9)
    assert GeometryService.bounding_box([]) is None
    assert GeometryService.bboxes_intersect(box, (30.05, -96.95, 30.2, -96.8))
    assert not GeometryService.bboxes_intersect(box, (30.2, -97.0, 30.3, -96.9))


def test_local_projection_is_centered_in_meters() -> None:
    to_meters = get_local_projection(30.0, -97.0)

    x0, y0 = to_meters(-97.0, 30.0)
    x1, y1 = to_meters(-97.0, 30.001)

    assert (x0, y0) == pytest.approx((0.0, 0.0), abs=1e-6)
    assert x1 == pytest.approx(0.0, abs=1e-6)
    assert y1 == pytest.approx(110.9, abs=0.5)
