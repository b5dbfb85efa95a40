import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from graph_builders import line_nodes, make_graph
from mongomock_motor import AsyncMongoMockClient
from network_blocker import install_network_blocker

from db.manager import db_manager  # noqa: E402
from street_coverage.models import CoverageSettings, RoadGraph  # noqa: E402


@pytest.fixture(autouse=True)
def _default_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONGODB_DATABASE", "street_keeper_test")
    install_network_blocker(monkeypatch)


@pytest.fixture
async def beanie_db():
    client = AsyncMongoMockClient()
    database = client["test_db"]
    await db_manager.init_beanie(database)
    return database


@pytest.fixture
def settings() -> CoverageSettings:
    return CoverageSettings()


@pytest.fixture
def street_graph() -> RoadGraph:
    """
    Two streets meeting at node 105.

    "Elm Grove" runs north from (30.0, -97.0): way 1 has nodes 100-105 and
    way 2 continues as "Elm Grove (B2154)" with nodes 105-110, all ~20 m
    apart. "Oak Avenue" (way 3) runs east from node 105.
    """
    nodes = line_nodes(100, 11, 30.0, -97.0, 20.0)
    junction_lat, junction_lng = nodes[105]
    nodes.update(
        {
            300 + i: (junction_lat, junction_lng + (i + 1) * 0.0002)
            for i in range(4)
        },
    )
    return make_graph(
        nodes,
        [
            (1, list(range(100, 106)), "Elm Grove", "residential"),
            (2, list(range(105, 111)), "Elm Grove (B2154)", "residential"),
            (3, [105, 300, 301, 302, 303], "Oak Avenue", "residential"),
        ],
    )
