"""
Bulk comparison jobs.

A job expands a team/module selection into reconciliation units and runs
them through the BatchProcessor. The job record is the only shared write:

    pending -> running -> completed | failed | cancelled

Transitions are guarded UPDATEs (``WHERE status IN (...)``) and progress
counters only move through ``completed = completed + 1`` style updates, so
units finishing concurrently never lose increments.

Request-bound work (create, cancel, read) uses the session handed to the
service; processing opens its own sessions from ``session_factory`` because
it outlives the request.
"""
import logging
import math
from contextlib import aclosing
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from sportsrecon.core import metrics
from sportsrecon.core.config import settings
from sportsrecon.core.database import SessionLocal
from sportsrecon.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from sportsrecon.core.logging import clear_job_id, set_job_id
from sportsrecon.models import ComparisonJob, ComparisonJobResult, Team
from sportsrecon.schemas.comparison import BulkComparisonRequest
from sportsrecon.services.jobs.batch_processor import (
    BatchProcessor, JobUnit, UnitOutcome, UnitRunner,
)
from sportsrecon.services.reconciliation.modules import get_module, should_run_module

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)

# Jobs cancelled in this process; the persisted flag covers other workers
_cancelled_jobs: Set[str] = set()


def overall_summary(results: List[ComparisonJobResult]) -> Dict[str, Any]:
    """Aggregate successful unit summaries into the job's overall summary."""
    successful = [r for r in results if r.status == "success" and r.summary]
    if not successful:
        return {
            "total_comparisons": 0,
            "average_match_percentage": 0,
            "total_discrepancies": 0,
            "total_missing_in_scraped": 0,
            "total_missing_in_source": 0,
        }
    total_match = sum(r.summary.get("match_percentage", 0) for r in successful)
    return {
        "total_comparisons": len(successful),
        "average_match_percentage": math.floor(total_match / len(successful) + 0.5),
        "total_discrepancies": sum(r.summary.get("with_discrepancies", 0) for r in successful),
        "total_missing_in_scraped": sum(r.summary.get("missing_in_scraped", 0) for r in successful),
        "total_missing_in_source": sum(r.summary.get("missing_in_source", 0) for r in successful),
    }


def job_to_dict(job: ComparisonJob, include_results: bool = True) -> Dict[str, Any]:
    data = {
        "job_id": job.id,
        "status": job.status,
        "filters": job.filters,
        "concurrency": job.concurrency,
        "batch_delay_seconds": job.batch_delay_seconds,
        "progress": {
            "total": job.total,
            "completed": job.completed,
            "failed": job.failed,
            "current_team": job.current_team,
            "current_module": job.current_module,
        },
        "overall_summary": job.overall_summary,
        "cancel_requested": job.cancel_requested,
        "estimated_seconds": job.estimated_seconds,
        "error": job.error,
        "created_by": job.created_by,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    if include_results:
        data["results"] = [
            {
                "team_id": r.team_id,
                "team_name": r.team_name,
                "module_id": r.module_id,
                "status": r.status,
                "summary": r.summary,
                "error": r.error,
                "comparison_id": r.comparison_id,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "completed_at": r.completed_at.isoformat() if r.completed_at else None,
            }
            for r in job.results
        ]
    return data


class BulkComparisonService:
    """Create, execute, cancel and inspect bulk comparison jobs."""

    def __init__(
        self,
        db: Session,
        session_factory: Optional[sessionmaker] = None,
        runner: Optional[Callable[[JobUnit, Dict[str, Any], str], Any]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        """
        Args:
            db: Request-scoped session for create/cancel/read
            session_factory: Factory for the sessions used while processing
            runner: Coroutine function ``(unit, filters, job_id) -> comparison result``
                (defaults to a ComparisonService run per unit)
            sleep: Sleep function between batches, replaceable in tests
        """
        self.db = db
        self.session_factory = session_factory or SessionLocal
        self.runner = runner or self._run_comparison
        self.sleep = sleep

    # ─────────────────────────────────────────────────────────────
    # Creation
    # ─────────────────────────────────────────────────────────────

    def create_job(self, request: BulkComparisonRequest) -> Dict[str, Any]:
        """
        Resolve the selection into units and persist a pending job.

        Returns:
            Dict with job_id, total_operations, teams, modules, source,
            estimated_seconds, concurrency and batch_delay_seconds
        """
        specs = []
        for module_id in dict.fromkeys(request.modules):
            try:
                specs.append(get_module(module_id))
            except NotFoundError:
                raise ValidationError(f"Unknown module '{module_id}'", invalid_fields={"modules": module_id})

        teams = self._resolve_teams(request)
        units: List[JobUnit] = []
        for team in teams:
            for spec in specs:
                if should_run_module(team, spec):
                    units.append(JobUnit(team_id=team.team_id, module_id=spec.module_id, team_name=team.team_name))

        concurrency = settings.effective_concurrency(request.concurrency)
        batch_delay = settings.effective_batch_delay(request.batch_delay_seconds)
        batches = math.ceil(len(units) / concurrency) if units else 0
        estimated = len(units) * settings.BULK_SECONDS_PER_OPERATION + max(0, batches - 1) * batch_delay

        filters = request.model_dump(
            mode="json",
            include={"league", "conference", "division", "teams", "modules", "source", "season",
                     "start_date", "end_date"},
        )
        job = ComparisonJob(
            id=str(uuid.uuid4()),
            status=PENDING,
            filters=filters,
            concurrency=concurrency,
            batch_delay_seconds=batch_delay,
            total=len(units),
            completed=0,
            failed=0,
            units=[u.to_dict() for u in units],
            cancel_requested=False,
            estimated_seconds=int(math.ceil(estimated)),
            created_by=request.created_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(job)
        self.db.commit()

        logger.info(
            f"Created bulk job {job.id}: {len(units)} units across {len(teams)} teams, "
            f"concurrency={concurrency}, delay={batch_delay}s"
        )
        return {
            "job_id": job.id,
            "status": job.status,
            "total_operations": len(units),
            "teams": len({u.team_id for u in units}),
            "modules": [s.module_id for s in specs],
            "source": request.source,
            "estimated_seconds": job.estimated_seconds,
            "concurrency": concurrency,
            "batch_delay_seconds": batch_delay,
        }

    def _resolve_teams(self, request: BulkComparisonRequest) -> List[Team]:
        query = self.db.query(Team).filter(Team.active.is_(True))
        if request.teams:
            query = query.filter(Team.team_id.in_(request.teams))
        if request.league:
            query = query.filter(Team.league == request.league)
        if request.conference:
            query = query.filter(Team.conference == request.conference)
        if request.division:
            query = query.filter(Team.division == request.division)
        return query.order_by(Team.team_name, Team.team_id).all()

    # ─────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────

    def start_job(self, job_id: str) -> None:
        """
        Move a pending job to running.

        Raises:
            NotFoundError: Unknown job
            InvalidTransitionError: Job is not pending
        """
        _transition(self.db, job_id, (PENDING,), RUNNING, started_at=datetime.utcnow())
        logger.info(f"Bulk job {job_id} started")

    def run_job(self, request: BulkComparisonRequest) -> Dict[str, Any]:
        """Create a job and move it straight to running; the caller schedules process_job."""
        created = self.create_job(request)
        self.start_job(created["job_id"])
        created["status"] = RUNNING
        return created

    async def execute_job(self, job_id: str) -> Dict[str, Any]:
        """Start a pending job and process it to a terminal state."""
        self.start_job(job_id)
        return await self.process_job(job_id)

    async def process_job(self, job_id: str) -> Dict[str, Any]:
        """
        Process every unit of a running job.

        Unit failures are recorded as failed results. Anything else that goes
        wrong marks the job failed; progress and results recorded so far are kept.

        Returns:
            Final job dict
        """
        token = set_job_id(job_id)
        db = self.session_factory()
        try:
            job = _get_job(db, job_id)
            if job.status != RUNNING:
                raise InvalidTransitionError(job_id, job.status, RUNNING)
            units = [JobUnit.from_dict(u) for u in job.units or []]
            filters = dict(job.filters or {})
            processor = BatchProcessor(
                runner=self._unit_runner(filters, job_id),
                concurrency=job.concurrency,
                batch_delay_seconds=job.batch_delay_seconds,
                **({"sleep": self.sleep} if self.sleep else {}),
            )

            try:
                outcomes = processor.process(units, lambda: self._cancel_requested(db, job_id))
                async with aclosing(outcomes):
                    async for outcome in outcomes:
                        self._apply_outcome(db, job_id, outcome)

                final_status = CANCELLED if processor.cancelled else COMPLETED
                _transition(
                    db, job_id, (RUNNING,), final_status,
                    completed_at=datetime.utcnow(),
                    overall_summary=overall_summary(self._results(db, job_id)),
                    current_team=None,
                    current_module=None,
                )
            except Exception as e:
                db.rollback()
                logger.exception(f"Bulk job {job_id} failed: {e}")
                final_status = FAILED
                _transition(
                    db, job_id, (PENDING, RUNNING), FAILED,
                    completed_at=datetime.utcnow(),
                    error=str(e),
                    overall_summary=overall_summary(self._results(db, job_id)),
                )

            metrics.bulk_jobs_total.labels(status=final_status).inc()
            db.expire_all()
            job = _get_job(db, job_id)
            logger.info(
                f"Bulk job {job_id} {final_status}: {job.completed}/{job.total} units processed, "
                f"{job.failed} failed"
            )
            return job_to_dict(job)
        finally:
            _cancelled_jobs.discard(job_id)
            db.close()
            clear_job_id(token)

    def _unit_runner(self, filters: Dict[str, Any], job_id: str) -> UnitRunner:
        async def run(unit: JobUnit) -> Dict[str, Any]:
            return await self.runner(unit, filters, job_id)
        return run

    async def _run_comparison(self, unit: JobUnit, filters: Dict[str, Any], job_id: str) -> Dict[str, Any]:
        from sportsrecon.services.reconciliation.comparison_service import ComparisonService

        db = self.session_factory()
        try:
            return await ComparisonService(db).run_comparison(
                unit.team_id,
                unit.module_id,
                source=filters.get("source") or "oracle",
                season=filters.get("season"),
                start_date=_parse_date(filters.get("start_date")),
                end_date=_parse_date(filters.get("end_date")),
                job_id=job_id,
            )
        finally:
            db.close()

    def _apply_outcome(self, db: Session, job_id: str, outcome: UnitOutcome):
        """Record one unit result and bump the job counters atomically."""
        db.add(ComparisonJobResult(
            id=str(uuid.uuid4()),
            job_id=job_id,
            team_id=outcome.unit.team_id,
            team_name=outcome.unit.team_name,
            module_id=outcome.unit.module_id,
            status=outcome.status,
            summary=outcome.summary,
            error=outcome.error,
            comparison_id=outcome.comparison_id,
            started_at=outcome.started_at,
            completed_at=outcome.completed_at,
        ))
        db.execute(
            update(ComparisonJob)
            .where(ComparisonJob.id == job_id)
            .values(
                completed=ComparisonJob.completed + 1,
                failed=ComparisonJob.failed + (0 if outcome.succeeded else 1),
                current_team=outcome.unit.team_name or outcome.unit.team_id,
                current_module=outcome.unit.module_id,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def _cancel_requested(db: Session, job_id: str) -> bool:
        if job_id in _cancelled_jobs:
            return True
        flag = db.query(ComparisonJob.cancel_requested).filter(ComparisonJob.id == job_id).scalar()
        return bool(flag)

    @staticmethod
    def _results(db: Session, job_id: str) -> List[ComparisonJobResult]:
        return db.query(ComparisonJobResult).filter(ComparisonJobResult.job_id == job_id).all()

    # ─────────────────────────────────────────────────────────────
    # Control & inspection
    # ─────────────────────────────────────────────────────────────

    def cancel_job(self, job_id: str) -> Dict[str, Any]:
        """
        Request cancellation. Terminal jobs are left untouched.

        Returns:
            Dict with job_id, status and whether a cancel is now pending
        """
        job = _get_job(self.db, job_id)
        if job.status in TERMINAL_STATUSES:
            return {"job_id": job_id, "status": job.status, "cancel_requested": bool(job.cancel_requested)}

        self.db.execute(
            update(ComparisonJob)
            .where(ComparisonJob.id == job_id, ComparisonJob.status.in_((PENDING, RUNNING)))
            .values(cancel_requested=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()
        job = _get_job(self.db, job_id)
        # Only running jobs get the in-process fast path; process_job clears it
        if job.status == RUNNING:
            _cancelled_jobs.add(job_id)
        logger.info(f"Cancellation requested for bulk job {job_id} (status: {job.status})")
        return {"job_id": job_id, "status": job.status, "cancel_requested": bool(job.cancel_requested)}

    def get_job(self, job_id: str) -> ComparisonJob:
        return _get_job(self.db, job_id)

    def list_recent_jobs(self, limit: Optional[int] = None) -> List[ComparisonJob]:
        limit = limit or settings.BULK_RECENT_JOBS_LIMIT
        return (
            self.db.query(ComparisonJob)
            .order_by(ComparisonJob.created_at.desc())
            .limit(limit)
            .all()
        )


def _get_job(db: Session, job_id: str) -> ComparisonJob:
    job = db.get(ComparisonJob, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)
    return job


def _transition(db: Session, job_id: str, from_statuses, to_status: str, **values):
    """Guarded status update; raises when the job is not in one of ``from_statuses``."""
    result = db.execute(
        update(ComparisonJob)
        .where(ComparisonJob.id == job_id, ComparisonJob.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 0:
        db.expire_all()
        job = _get_job(db, job_id)
        raise InvalidTransitionError(job_id, job.status, to_status)
    db.expire_all()


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
