import pytest
from http_fakes import FakeResponse, FakeSession

from core.exceptions import ExternalServiceException
from core.http.overpass import OverpassClient, build_around_query

PRIMARY = "https://overpass.test/api/interpreter"
FALLBACK = "https://overpass-fallback.test/api/interpreter"

ELEMENTS = [
    {"type": "node", "id": 1, "lat": 30.0, "lon": -97.0},
    {"type": "node", "id": 2, "lat": 30.0, "lon": -96.999},
    {"type": "way", "id": 10, "nodes": [1, 2], "tags": {"highway": "residential"}},
]


def _client(session: FakeSession, **kwargs) -> OverpassClient:
    return OverpassClient(
        [PRIMARY, FALLBACK],
        session=session,
        retry_delay=0,
        **kwargs,
    )


def test_build_around_query_selects_highways_and_nodes() -> None:
    query = build_around_query(30.5, -97.25, 849.6, 25)

    assert query.startswith("[out:json][timeout:25];")
    assert 'way["highway"](around:850,30.500000,-97.250000);' in query
    assert query.endswith("(._;>;);out body;")


@pytest.mark.asyncio
async def test_query_around_posts_query_and_returns_elements() -> None:
    session = FakeSession(post_responses=[FakeResponse(json_data={"elements": ELEMENTS})])

    elements = await _client(session).query_around(30.0, -97.0, 500)

    assert elements == ELEMENTS
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", PRIMARY)
    assert "around:500" in kwargs["data"]["data"]


@pytest.mark.asyncio
async def test_query_around_falls_back_after_server_errors() -> None:
    session = FakeSession(
        post_responses=[
            FakeResponse(status=504, text_data="gateway timeout"),
            FakeResponse(status=504, text_data="gateway timeout"),
            FakeResponse(json_data={"elements": ELEMENTS}),
        ],
    )

    elements = await _client(session, max_retries=1).query_around(30.0, -97.0, 500)

    assert len(elements) == 3
    urls = [url for _, url, _ in session.requests]
    assert urls == [PRIMARY, PRIMARY, FALLBACK]


@pytest.mark.asyncio
async def test_query_around_does_not_retry_client_errors() -> None:
    session = FakeSession(
        post_responses=[
            FakeResponse(status=400, text_data="parse error"),
            FakeResponse(json_data={"elements": []}),
        ],
    )

    elements = await _client(session, max_retries=3).query_around(30.0, -97.0, 500)

    assert elements == []
    urls = [url for _, url, _ in session.requests]
    assert urls == [PRIMARY, FALLBACK]


@pytest.mark.asyncio
async def test_query_around_raises_when_every_endpoint_fails() -> None:
    session = FakeSession(
        post_responses=[
            FakeResponse(status=400, text_data="bad"),
            FakeResponse(json_data={"remark": "runtime error"}),
        ],
    )

    with pytest.raises(ExternalServiceException) as exc_info:
        await _client(session, max_retries=0).query_around(30.0, -97.0, 500)

    assert "all endpoints failed" in exc_info.value.message
    assert len(exc_info.value.details["errors"]) == 2
