import pytest
from graph_builders import line_nodes, make_graph

from db.models import WayTotal
from street_coverage.way_catalog import WayCatalog


@pytest.fixture
def two_streets():
    nodes = line_nodes(1, 4, 30.0, -97.0, 20.0)
    nodes.update(line_nodes(11, 3, 30.01, -97.0, 20.0))
    return make_graph(
        nodes,
        [
            (100, [1, 2, 3, 4], "Maple St.", "residential"),
            (200, [11, 12, 13], None, "service"),
        ],
    )


@pytest.mark.asyncio
async def test_recorded_ways_are_found_by_street_key(beanie_db, two_streets) -> None:
    catalog = WayCatalog()

    written = await catalog.record(two_streets.ways.values())
    maple = await catalog.ways_for_streets({"maple street"})
    unnamed = await catalog.ways_for_streets({"way/200"})

    assert written == 2
    assert maple == [two_streets.ways[100]]
    assert [way.node_ids for way in unnamed] == [(11, 12, 13)]
    assert await catalog.ways_for_streets(set()) == []


@pytest.mark.asyncio
async def test_recording_again_updates_in_place(beanie_db, two_streets) -> None:
    catalog = WayCatalog()
    await catalog.record(two_streets.ways.values())
    await catalog.record([two_streets.ways[100], two_streets.ways[100]])

    assert await WayTotal.count() == 2
    stored = await WayTotal.find_one(WayTotal.way_id == 100)
    assert stored.street_key == "maple street"
    assert stored.total_node_count == 4
