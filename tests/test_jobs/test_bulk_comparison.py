"""Unit tests for bulk comparison jobs and the batch processor.

Test Strategy:
1. Test job creation: unit expansion, clamping and the estimate
2. Test processing with one failing unit (job still completes)
3. Test cancellation mid-job and before the first batch
4. Test the forward-only state machine
5. Test unexpected errors mark the job failed
6. Test the default runner against the baseline source

The inter-batch sleep is replaced with a recording coroutine.

Each test follows the pattern:
- Given: Teams in the store and a bulk request
- When: The job is created and executed
- Then: Status, progress counters and results match
"""
import asyncio
import sys
import uuid
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import add_scraped

from sportsrecon.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from sportsrecon.models import BaselineSnapshot, ComparisonResultRecord
from sportsrecon.schemas.comparison import BulkComparisonRequest
from sportsrecon.services.jobs.batch_processor import BatchProcessor, JobUnit
from sportsrecon.services.jobs import bulk_comparison
from sportsrecon.services.jobs.bulk_comparison import BulkComparisonService, overall_summary

ROSTER = "ncaa_football_roster"


def fake_result(match_percentage=80):
    return {
        "comparison_id": str(uuid.uuid4()),
        "match_percentage": match_percentage,
        "total_scraped": 10,
        "total_source": 10,
        "summary": {
            "perfect_matches": 8,
            "with_discrepancies": 2,
            "unique_to_each": {"scraped": 1, "source": 0},
        },
    }


class FakeRunner:
    """Records units and fails the ones listed in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def __call__(self, unit: JobUnit, filters, job_id):
        self.calls.append(unit.team_id)
        if unit.team_id in self.failing:
            raise NotFoundError("Team", unit.team_id)
        return fake_result()


class SlowRunner:
    """Finishes the first unit immediately; the others take a little while."""

    def __init__(self, fast_team: str):
        self.fast_team = fast_team
        self.finished = []

    async def __call__(self, unit: JobUnit, filters, job_id):
        if unit.team_id != self.fast_team:
            await asyncio.sleep(0.05)
        self.finished.append(unit.team_id)
        return fake_result()


class FakeSleep:
    def __init__(self, on_call=None):
        self.calls = []
        self.on_call = on_call

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        if self.on_call:
            self.on_call(len(self.calls))


def bulk_request(**overrides) -> BulkComparisonRequest:
    data = {"league": "NCAA", "modules": [ROSTER], "concurrency": 3, "batch_delay_seconds": 1.0}
    data.update(overrides)
    return BulkComparisonRequest(**data)


class TestCreateJob:

    def test_expands_active_teams_that_can_run_module(self, db_session: Session, session_factory, sample_teams):
        service = BulkComparisonService(db_session, session_factory=session_factory)

        created = service.create_job(bulk_request())

        assert created["status"] == "pending"
        assert created["total_operations"] == 12
        assert created["teams"] == 12
        assert created["modules"] == [ROSTER]
        job = service.get_job(created["job_id"])
        assert [u["team_id"] for u in job.units][:2] == ["team-01", "team-02"]

    def test_clamps_concurrency_and_delay(self, db_session: Session, session_factory, sample_teams):
        service = BulkComparisonService(db_session, session_factory=session_factory)

        created = service.create_job(bulk_request(concurrency=50, batch_delay_seconds=0.1))

        assert created["concurrency"] == 5
        assert created["batch_delay_seconds"] == 1.0
        # 12 units x 3s + 2 delays between 3 batches
        assert created["estimated_seconds"] == 38

    def test_team_filter(self, db_session: Session, session_factory, sample_teams):
        service = BulkComparisonService(db_session, session_factory=session_factory)

        created = service.create_job(bulk_request(league=None, teams=["team-03", "team-inactive", "mlb-1"]))

        # Inactive teams are skipped; the MILB team cannot run an NCAA module
        assert created["total_operations"] == 1

    def test_unknown_module(self, db_session: Session, session_factory, sample_teams):
        service = BulkComparisonService(db_session, session_factory=session_factory)
        with pytest.raises(ValidationError):
            service.create_job(bulk_request(modules=["cricket_roster"]))

    def test_request_requires_selection(self):
        with pytest.raises(ValueError):
            BulkComparisonRequest(modules=[ROSTER])


class TestProcessJob:

    async def test_failing_unit_does_not_fail_job(self, db_session: Session, session_factory, sample_teams):
        """12 teams, concurrency 3, team-05 throws NotFoundError."""
        runner = FakeRunner(failing={"team-05"})
        sleep = FakeSleep()
        service = BulkComparisonService(db_session, session_factory=session_factory, runner=runner, sleep=sleep)
        job_id = service.create_job(bulk_request())["job_id"]

        final = await service.execute_job(job_id)

        assert final["status"] == "completed"
        assert final["progress"]["completed"] == 12
        assert final["progress"]["failed"] == 1
        assert final["progress"]["current_team"] is None
        failed = [r for r in final["results"] if r["status"] == "failed"]
        assert len(failed) == 1
        assert failed[0]["team_id"] == "team-05"
        assert "team-05" in failed[0]["error"]
        assert len(sleep.calls) == 3
        assert final["overall_summary"]["total_comparisons"] == 11
        assert final["overall_summary"]["average_match_percentage"] == 80
        assert final["completed_at"] is not None

    async def test_cancel_mid_job(self, db_session: Session, session_factory, sample_teams):
        """Cancel after 2 of 4 batches: only those 6 units have results."""
        runner = FakeRunner()
        service = BulkComparisonService(db_session, session_factory=session_factory, runner=runner)
        job_id = service.create_job(bulk_request())["job_id"]

        def cancel_on_second_delay(count):
            if count == 2:
                service.cancel_job(job_id)

        service.sleep = FakeSleep(on_call=cancel_on_second_delay)

        final = await service.execute_job(job_id)

        assert final["status"] == "cancelled"
        assert final["cancel_requested"] is True
        assert len(final["results"]) == 6
        assert final["progress"]["completed"] == 6
        assert len(runner.calls) == 6

    async def test_cancel_pending_job(self, db_session: Session, session_factory, sample_teams):
        runner = FakeRunner()
        service = BulkComparisonService(db_session, session_factory=session_factory, runner=runner)
        job_id = service.create_job(bulk_request())["job_id"]

        response = service.cancel_job(job_id)
        assert response == {"job_id": job_id, "status": "pending", "cancel_requested": True}

        final = await service.execute_job(job_id)

        assert final["status"] == "cancelled"
        assert final["results"] == []
        assert runner.calls == []

    async def test_cancel_pending_job_keeps_no_process_state(
        self, db_session: Session, session_factory, sample_team,
    ):
        service = BulkComparisonService(db_session, session_factory=session_factory)
        job_id = service.create_job(bulk_request())["job_id"]

        service.cancel_job(job_id)

        assert job_id not in bulk_comparison._cancelled_jobs
        assert service.get_job(job_id).cancel_requested is True

    async def test_cancel_terminal_job_is_noop(self, db_session: Session, session_factory, sample_team):
        service = BulkComparisonService(db_session, session_factory=session_factory, runner=FakeRunner())
        job_id = service.create_job(bulk_request())["job_id"]
        await service.execute_job(job_id)

        response = service.cancel_job(job_id)

        assert response == {"job_id": job_id, "status": "completed", "cancel_requested": False}

    async def test_state_machine_only_moves_forward(self, db_session: Session, session_factory, sample_team):
        service = BulkComparisonService(db_session, session_factory=session_factory, runner=FakeRunner())
        job_id = service.create_job(bulk_request())["job_id"]

        with pytest.raises(InvalidTransitionError):
            await service.process_job(job_id)  # still pending

        await service.execute_job(job_id)

        with pytest.raises(InvalidTransitionError):
            service.start_job(job_id)
        with pytest.raises(InvalidTransitionError):
            await service.process_job(job_id)

    async def test_unexpected_error_marks_job_failed(
        self, db_session: Session, session_factory, sample_teams, monkeypatch,
    ):
        service = BulkComparisonService(
            db_session, session_factory=session_factory, runner=FakeRunner(), sleep=FakeSleep(),
        )
        job_id = service.create_job(bulk_request(concurrency=1))["job_id"]

        def broken_apply(db, job_id, outcome):
            raise RuntimeError("progress store unavailable")

        monkeypatch.setattr(service, "_apply_outcome", broken_apply)

        final = await service.execute_job(job_id)

        assert final["status"] == "failed"
        assert final["error"] == "progress store unavailable"

    async def test_failed_job_stops_in_flight_units(
        self, db_session: Session, session_factory, sample_teams, monkeypatch,
    ):
        runner = SlowRunner(fast_team="team-01")
        service = BulkComparisonService(
            db_session, session_factory=session_factory, runner=runner, sleep=FakeSleep(),
        )
        job_id = service.create_job(bulk_request(concurrency=3))["job_id"]

        def broken_apply(db, job_id, outcome):
            raise RuntimeError("progress store unavailable")

        monkeypatch.setattr(service, "_apply_outcome", broken_apply)

        final = await service.execute_job(job_id)
        await asyncio.sleep(0.1)

        assert final["status"] == "failed"
        assert runner.finished == ["team-01"]

    async def test_unknown_job(self, db_session: Session, session_factory):
        service = BulkComparisonService(db_session, session_factory=session_factory)
        with pytest.raises(NotFoundError):
            service.get_job("missing")
        with pytest.raises(NotFoundError):
            service.cancel_job("missing")

    async def test_default_runner_uses_comparison_service(
        self, db_session: Session, session_factory, sample_team,
    ):
        db_session.add(BaselineSnapshot(
            id=str(uuid.uuid4()), team_id=sample_team.team_id, module_id=ROSTER, season=2024,
            records=[{"full_name": "Carl Jones", "jersey": "5"}], captured_at=datetime.utcnow(),
        ))
        add_scraped(db_session, sample_team.team_id, ROSTER, [{"name": "Carl Jones", "jersey": "5"}])
        service = BulkComparisonService(db_session, session_factory=session_factory)
        job_id = service.create_job(bulk_request(source="baseline", season=2024))["job_id"]

        final = await service.execute_job(job_id)

        result = final["results"][0]
        assert result["status"] == "success"
        assert result["summary"]["match_percentage"] == 100
        record = db_session.get(ComparisonResultRecord, result["comparison_id"])
        assert record.job_id == job_id

    def test_list_recent_jobs(self, db_session: Session, session_factory, sample_team):
        service = BulkComparisonService(db_session, session_factory=session_factory)
        first = service.create_job(bulk_request())["job_id"]
        second = service.create_job(bulk_request())["job_id"]

        jobs = service.list_recent_jobs(limit=1)

        assert len(jobs) == 1
        assert jobs[0].id in (first, second)


class TestBatchProcessor:

    async def test_batches_and_delay(self):
        units = [JobUnit(team_id=f"t{i}", module_id=ROSTER) for i in range(5)]
        sleep = FakeSleep()

        async def run(unit):
            return fake_result()

        processor = BatchProcessor(run, concurrency=2, batch_delay_seconds=1.5, sleep=sleep)
        outcomes = [o async for o in processor.process(units)]

        assert len(outcomes) == 5
        assert processor.batches_run == 3
        assert sleep.calls == [1.5, 1.5]
        assert all(o.succeeded for o in outcomes)
        assert outcomes[0].summary["missing_in_source"] == 1

    async def test_cancel_before_first_batch(self):
        async def run(unit):
            raise AssertionError("should not run")

        processor = BatchProcessor(run, concurrency=2, batch_delay_seconds=1.0, sleep=FakeSleep())
        outcomes = [o async for o in processor.process([JobUnit("t1", ROSTER)], lambda: True)]

        assert outcomes == []
        assert processor.cancelled is True

    async def test_closing_mid_batch_cancels_running_units(self):
        finished = []

        async def run(unit):
            if unit.team_id != "t0":
                await asyncio.sleep(0.05)
            finished.append(unit.team_id)
            return fake_result()

        processor = BatchProcessor(run, concurrency=3, batch_delay_seconds=1.0, sleep=FakeSleep())
        outcomes = processor.process([JobUnit(f"t{i}", ROSTER) for i in range(3)])

        first = await outcomes.__anext__()
        await outcomes.aclose()
        await asyncio.sleep(0.1)

        assert first.unit.team_id == "t0"
        assert finished == ["t0"]


class TestOverallSummary:

    def test_ignores_failed_units(self):
        class Result:
            def __init__(self, status, summary):
                self.status = status
                self.summary = summary

        summary = overall_summary([
            Result("success", {"match_percentage": 50, "with_discrepancies": 2,
                               "missing_in_scraped": 1, "missing_in_source": 0}),
            Result("success", {"match_percentage": 75, "with_discrepancies": 1,
                               "missing_in_scraped": 0, "missing_in_source": 3}),
            Result("failed", None),
        ])

        assert summary == {
            "total_comparisons": 2,
            "average_match_percentage": 63,  # 62.5 rounds half up
            "total_discrepancies": 3,
            "total_missing_in_scraped": 1,
            "total_missing_in_source": 3,
        }

    def test_empty(self):
        assert overall_summary([])["average_match_percentage"] == 0
