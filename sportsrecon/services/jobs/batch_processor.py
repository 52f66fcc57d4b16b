"""
Batch processor for bulk comparison jobs.

Units run in batches of at most ``concurrency``. Within a batch every unit
runs concurrently and outcomes are yielded as soon as each finishes; the
processor then sleeps for the batch delay before the next batch. The
cancel check runs before every batch, including the first.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from sportsrecon.core import metrics

logger = logging.getLogger(__name__)

UNIT_SUCCESS = "success"
UNIT_FAILED = "failed"


@dataclass(frozen=True)
class JobUnit:
    """One (team, module) pair inside a bulk job."""
    team_id: str
    module_id: str
    team_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"team_id": self.team_id, "team_name": self.team_name, "module_id": self.module_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobUnit":
        return cls(team_id=data["team_id"], module_id=data["module_id"], team_name=data.get("team_name"))


@dataclass
class UnitOutcome:
    unit: JobUnit
    status: str
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    comparison_id: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == UNIT_SUCCESS


UnitRunner = Callable[[JobUnit], Awaitable[Dict[str, Any]]]


def unit_summary(result: Dict[str, Any]) -> Dict[str, Any]:
    """Compact per-unit summary kept on the job result."""
    summary = result.get("summary", {})
    unique = summary.get("unique_to_each", {})
    return {
        "match_percentage": result.get("match_percentage", 0),
        "total_scraped": result.get("total_scraped", 0),
        "total_source": result.get("total_source", 0),
        "perfect_matches": summary.get("perfect_matches", 0),
        "with_discrepancies": summary.get("with_discrepancies", 0),
        "missing_in_scraped": unique.get("source", 0),
        "missing_in_source": unique.get("scraped", 0),
    }


class BatchProcessor:
    """Run job units batch by batch and stream their outcomes."""

    def __init__(
        self,
        runner: UnitRunner,
        concurrency: int,
        batch_delay_seconds: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            runner: Coroutine function running one unit and returning its comparison result
            concurrency: Units per batch (already clamped by the caller)
            batch_delay_seconds: Pause between batches (already floored by the caller)
            sleep: Sleep function, replaceable in tests
        """
        self.runner = runner
        self.concurrency = max(1, concurrency)
        self.batch_delay_seconds = batch_delay_seconds
        self.sleep = sleep
        self.cancelled = False
        self.batches_run = 0

    def batches(self, units: List[JobUnit]) -> List[List[JobUnit]]:
        return [units[i:i + self.concurrency] for i in range(0, len(units), self.concurrency)]

    async def process(
        self,
        units: List[JobUnit],
        should_cancel: Callable[[], bool] = lambda: False,
    ) -> AsyncIterator[UnitOutcome]:
        """
        Yield one outcome per unit, batch by batch.

        Stops early (and sets ``cancelled``) when ``should_cancel`` returns
        True before a batch starts. Units of the current batch always finish
        unless the consumer stops iterating; closing the generator cancels
        and awaits whatever is still running.
        """
        batches = self.batches(units)
        for index, batch in enumerate(batches):
            if should_cancel():
                self.cancelled = True
                logger.info(f"Cancellation requested, stopping before batch {index + 1}/{len(batches)}")
                return

            logger.debug(f"Starting batch {index + 1}/{len(batches)} ({len(batch)} units)")
            tasks = [asyncio.create_task(self._run_unit(unit)) for unit in batch]
            try:
                for next_done in asyncio.as_completed(tasks):
                    yield await next_done
            finally:
                await _cancel_pending(tasks)
            self.batches_run += 1

            if index < len(batches) - 1:
                await self.sleep(self.batch_delay_seconds)

    async def _run_unit(self, unit: JobUnit) -> UnitOutcome:
        started = datetime.utcnow()
        metrics.bulk_units_in_flight.inc()
        try:
            result = await self.runner(unit)
            return UnitOutcome(
                unit=unit,
                status=UNIT_SUCCESS,
                summary=unit_summary(result),
                comparison_id=result.get("comparison_id"),
                started_at=started,
                completed_at=datetime.utcnow(),
            )
        except Exception as e:
            # One unit failing never aborts its batch
            logger.warning(f"Unit {unit.team_id}/{unit.module_id} failed: {e}")
            return UnitOutcome(
                unit=unit,
                status=UNIT_FAILED,
                error=str(e),
                started_at=started,
                completed_at=datetime.utcnow(),
            )
        finally:
            metrics.bulk_units_in_flight.dec()


async def _cancel_pending(tasks: List[asyncio.Task]) -> None:
    pending = [task for task in tasks if not task.done()]
    if not pending:
        return
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    logger.info(f"Cancelled {len(pending)} in-flight units")
