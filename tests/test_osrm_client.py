import pytest
from http_fakes import FakeResponse, FakeSession

from core.exceptions import ExternalServiceException
from core.http.osrm import OsrmClient

BASE = "https://osrm.test"
COORDS = [(-97.0, 30.0), (-96.999, 30.0), (-96.998, 30.0)]


def _client(session: FakeSession, endpoints=None, **kwargs) -> OsrmClient:
    return OsrmClient(
        endpoints or [BASE],
        profile="foot",
        session=session,
        retry_delay=0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_match_builds_request_with_node_annotations() -> None:
    payload = {"code": "Ok", "matchings": [{"legs": []}], "tracepoints": [None]}
    session = FakeSession(get_responses=[FakeResponse(json_data=payload)])

    data = await _client(session).match(COORDS, timestamps=[100, 110, 120])

    assert data == payload
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == (
        f"{BASE}/match/v1/foot/"
        "-97.000000,30.000000;-96.999000,30.000000;-96.998000,30.000000"
    )
    assert kwargs["params"]["annotations"] == "nodes"
    assert kwargs["params"]["timestamps"] == "100;110;120"


@pytest.mark.asyncio
async def test_match_treats_no_match_as_empty_result() -> None:
    session = FakeSession(
        get_responses=[
            FakeResponse(status=400, json_data={"code": "NoMatch", "message": "Could not match"}),
        ],
    )

    data = await _client(session).match(COORDS)

    assert data["matchings"] == []
    assert data["tracepoints"] == []


@pytest.mark.asyncio
async def test_match_rejects_short_or_misaligned_input() -> None:
    client = _client(FakeSession())

    with pytest.raises(ExternalServiceException):
        await client.match(COORDS[:1])
    with pytest.raises(ExternalServiceException):
        await client.match(COORDS, timestamps=[1, 2])


@pytest.mark.asyncio
async def test_match_falls_back_to_next_endpoint() -> None:
    session = FakeSession(
        get_responses=[
            FakeResponse(status=503, text_data="unavailable"),
            FakeResponse(json_data={"code": "Ok", "matchings": [], "tracepoints": []}),
        ],
    )

    data = await _client(
        session,
        endpoints=[BASE, "https://osrm-backup.test/"],
        max_retries=0,
    ).match(COORDS)

    assert data["code"] == "Ok"
    urls = [url for _, url, _ in session.requests]
    assert urls[1].startswith("https://osrm-backup.test/match/v1/foot/")


@pytest.mark.asyncio
async def test_match_raises_when_all_endpoints_fail() -> None:
    session = FakeSession(
        get_responses=[FakeResponse(status=400, json_data={"code": "InvalidQuery"})],
    )

    with pytest.raises(ExternalServiceException) as exc_info:
        await _client(session, max_retries=2).match(COORDS)

    assert "OSRM unavailable" in exc_info.value.message
    assert len(session.requests) == 1
