"""Tests for the carryover engine (lazy pass, batch pass, preview, watermark)."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from kidsafe.services import carryover
from kidsafe.services.carryover import (
    get_watermark,
    preview_carryover,
    process_carryover,
    run_batch_carryover,
)
from tests.conftest import (
    create_child,
    create_schedule,
    create_video,
    fetch_schedules,
    fresh_day,
)

ONE_DAY = timedelta(days=1)


def _active(rows):
    return [r for r in rows if r.is_active]


class TestProcessCarryover:
    async def test_two_days_stale_walks_forward(self, db_session, family):
        """V scheduled on D1, never watched, queried on D1+2."""
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)

        carried = await process_carryover(db_session, d1 + 2 * ONE_DAY, child_id=child.id)

        assert carried == 2
        rows = await fetch_schedules(db_session, child.id, video.id)
        assert [r.scheduled_date for r in rows] == [d1, d1 + ONE_DAY, d1 + 2 * ONE_DAY]
        assert [r.is_active for r in rows] == [False, False, True]

        current = rows[-1]
        assert current.carried_over is True
        assert current.original_date == d1
        assert current.is_watched is False

    async def test_second_pass_is_noop(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)

        first = await process_carryover(db_session, d1 + ONE_DAY, child_id=child.id)
        rows_after_first = await fetch_schedules(db_session, child.id)
        second = await process_carryover(db_session, d1 + ONE_DAY, child_id=child.id)
        rows_after_second = await fetch_schedules(db_session, child.id)

        assert first == 1
        assert second == 0
        assert [(r.id, r.is_active) for r in rows_after_first] == [
            (r.id, r.is_active) for r in rows_after_second
        ]

    async def test_watched_item_never_carried(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        watched_at = datetime.now(timezone.utc)
        await create_schedule(
            db_session, child.id, video.id, d1,
            is_watched=True, watched_at=watched_at,
        )

        carried = await process_carryover(db_session, d1 + 3 * ONE_DAY, child_id=child.id)

        assert carried == 0
        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 1
        assert rows[0].is_active is True
        assert rows[0].is_watched is True

    async def test_existing_target_skips_insert_but_deactivates(self, db_session, family):
        """Guardian already scheduled V for D2; the stale D1 row is still closed."""
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)
        await create_schedule(db_session, child.id, video.id, d1 + ONE_DAY)

        carried = await process_carryover(db_session, d1 + ONE_DAY, child_id=child.id)

        assert carried == 0
        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 2
        assert rows[0].is_active is False
        assert rows[1].is_active is True
        assert rows[1].carried_over is False

    async def test_original_date_survives_long_chain(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)

        for offset in range(1, 6):
            await process_carryover(db_session, d1 + offset * ONE_DAY, child_id=child.id)

        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 6
        assert {r.original_date for r in rows} == {d1}
        assert len(_active(rows)) == 1
        assert _active(rows)[0].scheduled_date == d1 + 5 * ONE_DAY

    async def test_scoped_pass_leaves_other_children_alone(self, db_session, family):
        d1 = fresh_day()
        first = await create_child(db_session, family["family"].id, name="First")
        second = await create_child(db_session, family["family"].id, name="Second")
        video = await create_video(db_session, first.id)
        await create_schedule(db_session, first.id, video.id, d1)
        await create_schedule(db_session, second.id, video.id, d1)

        await process_carryover(db_session, d1 + ONE_DAY, child_id=first.id)

        other = await fetch_schedules(db_session, second.id)
        assert len(other) == 1
        assert other[0].is_active is True

    async def test_unscoped_pass_processes_every_child(self, db_session, family):
        # Earlier than every fresh_day(), so no other test's rows are stale here.
        d1 = date(2030, 1, 1)
        first = await create_child(db_session, family["family"].id, name="First")
        second = await create_child(db_session, family["family"].id, name="Second")
        video = await create_video(db_session, first.id)
        await create_schedule(db_session, first.id, video.id, d1)
        await create_schedule(db_session, second.id, video.id, d1)

        carried = await process_carryover(db_session, d1 + ONE_DAY)

        assert carried == 2
        for child in (first, second):
            rows = await fetch_schedules(db_session, child.id)
            assert [r.is_active for r in rows] == [False, True]

    async def test_future_schedules_untouched(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1 + 5 * ONE_DAY)

        carried = await process_carryover(db_session, d1, child_id=child.id)

        assert carried == 0
        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 1
        assert rows[0].is_active is True

    async def test_failed_candidate_does_not_stop_the_pass(
        self, db_session, family, monkeypatch,
    ):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        good = await create_video(db_session, child.id, title="Good")
        bad = await create_video(db_session, child.id, title="Bad")
        await create_schedule(db_session, child.id, bad.id, d1)
        await create_schedule(db_session, child.id, good.id, d1)
        bad_id = bad.id

        original = carryover._carry_forward

        async def flaky(db, candidate):
            if candidate.approved_video_id == bad_id:
                raise OperationalError("UPDATE scheduled_videos", {}, Exception("disk I/O error"))
            return await original(db, candidate)

        monkeypatch.setattr(carryover, "_carry_forward", flaky)

        carried = await process_carryover(db_session, d1 + ONE_DAY, child_id=child.id)

        assert carried == 1
        good_rows = await fetch_schedules(db_session, child.id, good.id)
        assert [r.is_active for r in good_rows] == [False, True]
        bad_rows = await fetch_schedules(db_session, child.id, bad_id)
        assert len(bad_rows) == 1
        assert bad_rows[0].is_active is True
        # The day is not fully closed, so the watermark must not move.
        assert await get_watermark(db_session, child.id) is None

    async def test_watched_during_pass_is_not_carried(
        self, db_session, family, monkeypatch,
    ):
        """The child finishes V after the pass selected it but before it moved."""
        from kidsafe.services.watch_service import mark_watched

        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        schedule = await create_schedule(db_session, child.id, video.id, d1)
        child_id = child.id

        original = carryover._carry_forward

        async def watched_meanwhile(db, candidate):
            await mark_watched(db, candidate.id, child_id)
            return await original(db, candidate)

        monkeypatch.setattr(carryover, "_carry_forward", watched_meanwhile)

        carried = await process_carryover(db_session, d1 + ONE_DAY, child_id=child_id)

        assert carried == 0
        rows = await fetch_schedules(db_session, child_id)
        assert [r.id for r in rows] == [schedule.id]
        assert rows[0].is_watched is True
        assert rows[0].is_active is True

    async def test_concurrent_passes_create_one_row(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)

        results = await asyncio.gather(
            process_carryover(db_session, d1 + ONE_DAY, child_id=child.id),
            process_carryover(db_session, d1 + ONE_DAY, child_id=child.id),
        )

        assert sorted(results) == [0, 1]
        rows = await fetch_schedules(db_session, child.id)
        target_rows = [r for r in rows if r.scheduled_date == d1 + ONE_DAY and r.is_active]
        assert len(target_rows) == 1


class TestWatermark:
    async def test_lazy_pass_closes_through_day_before_reference(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, d1)

        await process_carryover(db_session, d1 + 2 * ONE_DAY, child_id=child.id)

        assert await get_watermark(db_session, child.id) == d1 + ONE_DAY

    async def test_lazy_pass_without_schedules_still_records_watermark(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)

        await process_carryover(db_session, d1, child_id=child.id)

        assert await get_watermark(db_session, child.id) == d1 - ONE_DAY

    async def test_closed_days_are_skipped(self, db_session, family, monkeypatch):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        await process_carryover(db_session, d1, child_id=child.id)

        async def fail(*args, **kwargs):
            raise AssertionError("closed day scanned again")

        monkeypatch.setattr(carryover, "_earliest_open_day", fail)

        assert await process_carryover(db_session, d1, child_id=child.id) == 0

    async def test_batch_only_advances_contiguously(self, db_session, family):
        d1 = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)

        # No watermark yet: earlier days are unknown, so a batch run must
        # not claim them closed.
        await create_schedule(db_session, child.id, video.id, d1)
        await run_batch_carryover(db_session, d1)
        assert await get_watermark(db_session, child.id) is None

        # A lazy pass closes everything before d1 + 1 ...
        await process_carryover(db_session, d1 + ONE_DAY, child_id=child.id)
        assert await get_watermark(db_session, child.id) == d1

        # ... and the next batch day extends it.
        await run_batch_carryover(db_session, d1 + ONE_DAY)
        assert await get_watermark(db_session, child.id) == d1 + ONE_DAY


class TestBatchCarryover:
    async def test_only_explicit_date_processed(self, db_session, family):
        day = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        older = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, day)
        await create_schedule(db_session, child.id, older.id, day - ONE_DAY)

        result = await run_batch_carryover(db_session, day)

        assert result.found == 1
        assert result.carried == 1
        assert result.next_date == day + ONE_DAY

        rows = await fetch_schedules(db_session, child.id, video.id)
        assert [(r.scheduled_date, r.is_active, r.carried_over) for r in rows] == [
            (day, False, False),
            (day + ONE_DAY, True, True),
        ]
        untouched = await fetch_schedules(db_session, child.id, older.id)
        assert untouched[0].is_active is True

    async def test_all_children_processed(self, db_session, family):
        day = fresh_day()
        children = [
            await create_child(db_session, family["family"].id, name=f"Kid {n}")
            for n in range(3)
        ]
        video = await create_video(db_session, children[0].id)
        for child in children:
            await create_schedule(db_session, child.id, video.id, day)

        result = await run_batch_carryover(db_session, day)

        assert result.found == 3
        assert result.carried == 3

    async def test_rerun_same_date_is_noop(self, db_session, family):
        day = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, day)

        await run_batch_carryover(db_session, day)
        again = await run_batch_carryover(db_session, day)

        assert again.found == 0
        assert again.carried == 0
        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 2
        assert len(_active(rows)) == 1

    async def test_watched_then_batch_creates_nothing(self, db_session, family):
        day = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(
            db_session, child.id, video.id, day,
            is_watched=True, watched_at=datetime.now(timezone.utc),
        )

        result = await run_batch_carryover(db_session, day)

        assert result.found == 0
        assert result.carried == 0
        assert len(await fetch_schedules(db_session, child.id)) == 1

    async def test_existing_next_day_row_counts_as_found_not_carried(
        self, db_session, family,
    ):
        day = fresh_day()
        child = await create_child(db_session, family["family"].id)
        video = await create_video(db_session, child.id)
        await create_schedule(db_session, child.id, video.id, day)
        await create_schedule(db_session, child.id, video.id, day + ONE_DAY)

        result = await run_batch_carryover(db_session, day)

        assert result.found == 1
        assert result.carried == 0
        rows = await fetch_schedules(db_session, child.id)
        assert [r.is_active for r in rows] == [False, True]

    async def test_child_failure_is_isolated(self, db_session, family, monkeypatch):
        day = fresh_day()
        healthy = await create_child(db_session, family["family"].id, name="Healthy")
        broken = await create_child(db_session, family["family"].id, name="Broken")
        video = await create_video(db_session, healthy.id)
        await create_schedule(db_session, healthy.id, video.id, day)
        await create_schedule(db_session, broken.id, video.id, day)
        await db_session.commit()
        broken_id = broken.id

        original = carryover._close_out_day

        async def flaky(db, d, child_id):
            if child_id == broken_id:
                raise OperationalError("SELECT", {}, Exception("connection reset"))
            return await original(db, d, child_id)

        monkeypatch.setattr(carryover, "_close_out_day", flaky)

        result = await run_batch_carryover(db_session, day)

        assert result.found == 2
        assert result.carried == 1
        assert result.failed == 1
        assert len(await fetch_schedules(db_session, broken_id)) == 1


class TestPreview:
    async def test_preview_lists_without_mutating(self, db_session, family):
        day = fresh_day()
        child = await create_child(db_session, family["family"].id, name="Mia")
        video = await create_video(db_session, child.id, title="Ocean Animals")
        await create_schedule(db_session, child.id, video.id, day)
        watched = await create_video(db_session, child.id)
        await create_schedule(
            db_session, child.id, watched.id, day,
            is_watched=True, watched_at=datetime.now(timezone.utc),
        )

        items = await preview_carryover(db_session, day)

        assert len(items) == 1
        assert items[0]["child_name"] == "Mia"
        assert items[0]["video_title"] == "Ocean Animals"
        assert items[0]["original_date"] == day
        assert items[0]["carried_over"] is False

        rows = await fetch_schedules(db_session, child.id)
        assert len(rows) == 2
        assert all(r.is_active for r in rows)
