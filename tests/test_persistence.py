import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from date_utils import ensure_utc
from db.models import ProcessedActivity, UserNodeHit, UserStreetProgress
from street_coverage.models import SegmentCoverage, StreetCoverage
from street_coverage.persistence import CoveragePersistence

USER = "user-1"
T0 = datetime(2025, 1, 17, 10, 0, tzinfo=UTC)


def _street(percent: float, *, completed: bool = False) -> StreetCoverage:
    segment = SegmentCoverage(
        way_id=1,
        name="Elm Grove",
        highway_type="residential",
        length_m=100.0,
        fraction=percent / 100.0,
        complete=completed,
    )
    return StreetCoverage(
        street_key="elm grove",
        name="Elm Grove",
        segments=[segment],
        weighted_ratio=percent / 100.0,
        status="completed" if completed else "partial",
    )


async def _stored() -> UserStreetProgress:
    return await UserStreetProgress.find_one(
        UserStreetProgress.user_id == USER,
        UserStreetProgress.street_key == "elm grove",
    )


@pytest.mark.asyncio
async def test_percentage_never_decreases(beanie_db) -> None:
    persistence = CoveragePersistence()

    await persistence.merge_street_progress(USER, _street(80.0), "a1", T0)
    await persistence.merge_street_progress(USER, _street(50.0), "a2", T0 + timedelta(days=1))

    stored = await _stored()
    assert stored.percentage == 80.0
    assert stored.run_count == 2
    assert ensure_utc(stored.last_run_date) == T0 + timedelta(days=1)


@pytest.mark.asyncio
async def test_out_of_order_runs_merge_dates(beanie_db) -> None:
    persistence = CoveragePersistence()

    await persistence.merge_street_progress(USER, _street(50.0), "late", T0 + timedelta(days=3))
    await persistence.merge_street_progress(USER, _street(60.0), "early", T0)

    stored = await _stored()
    assert stored.percentage == 60.0
    assert ensure_utc(stored.first_run_date) == T0
    assert ensure_utc(stored.last_run_date) == T0 + timedelta(days=3)


@pytest.mark.asyncio
async def test_same_activity_is_counted_once(beanie_db) -> None:
    persistence = CoveragePersistence()

    await persistence.merge_street_progress(USER, _street(40.0), "a1", T0)
    await persistence.merge_street_progress(USER, _street(40.0), "a1", T0)

    stored = await _stored()
    assert stored.run_count == 1
    assert stored.activity_keys == ["a1"]


@pytest.mark.asyncio
async def test_completion_count_increments_only_on_transition(beanie_db) -> None:
    persistence = CoveragePersistence()

    first = await persistence.merge_street_progress(USER, _street(100.0, completed=True), "a1", T0)
    second = await persistence.merge_street_progress(USER, _street(100.0, completed=True), "a2", T0)

    stored = await _stored()
    assert (first, second) == (True, False)
    assert stored.ever_completed
    assert stored.completion_count == 1


@pytest.mark.asyncio
async def test_concurrent_merges_keep_every_run(beanie_db) -> None:
    persistence = CoveragePersistence(concurrency=4)

    await asyncio.gather(
        *(
            persistence.merge_street_progress(USER, _street(10.0 * i), f"a{i}", T0)
            for i in range(1, 6)
        ),
    )

    stored = await _stored()
    assert stored.run_count == 5
    assert stored.percentage == 50.0
    assert await UserStreetProgress.count() == 1


@pytest.mark.asyncio
async def test_node_hits_report_first_time_hits(beanie_db) -> None:
    persistence = CoveragePersistence()

    first = await persistence.record_node_hits(USER, [1, 2, 3], T0)
    second = await persistence.record_node_hits(USER, [3, 4], T0 + timedelta(hours=1))

    assert (first, second) == (3, 1)
    hit = await UserNodeHit.find_one(UserNodeHit.user_id == USER, UserNodeHit.node_id == 3)
    assert ensure_utc(hit.first_hit_at) == T0
    assert ensure_utc(hit.last_hit_at) == T0 + timedelta(hours=1)


@pytest.mark.asyncio
async def test_mark_processed_tolerates_duplicates(beanie_db) -> None:
    persistence = CoveragePersistence()
    kwargs = {
        "units_hit": 3,
        "streets_updated": 1,
        "area_ids": [],
        "point_count": 10,
        "activity_timestamp": T0,
    }

    await persistence.mark_processed(USER, "a1", **kwargs)
    await persistence.mark_processed(USER, "a1", **kwargs)

    assert await ProcessedActivity.count() == 1
    assert (await persistence.find_processed(USER, "a1")).units_hit == 3


@pytest.mark.asyncio
async def test_activity_key_history_is_capped(beanie_db) -> None:
    persistence = CoveragePersistence(key_history=3)

    for i in range(1, 6):
        await persistence.merge_street_progress(USER, _street(10.0 * i), f"a{i}", T0)
    await persistence.merge_street_progress(USER, _street(10.0), "a5", T0)

    stored = await _stored()
    assert stored.activity_keys == ["a3", "a4", "a5"]
    assert stored.run_count == 5
    assert stored.percentage == 50.0
