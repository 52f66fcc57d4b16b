"""Database-backed record sources: the scraped-record store and baseline snapshots."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sportsrecon.core.exceptions import NotFoundError, UpstreamError
from sportsrecon.models import BaselineSnapshot, ScrapedRecord
from sportsrecon.services.reconciliation.records import game_date_key

logger = logging.getLogger(__name__)


def filter_by_date(
    records: List[Dict[str, Any]],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Keep games whose date key falls in [start_date, end_date]; undated records are kept."""
    if not start_date and not end_date:
        return records
    start = start_date.isoformat() if start_date else ""
    end = end_date.isoformat() if end_date else "9999-12-31"
    kept = []
    for record in records:
        key = game_date_key(record)
        if not key or start <= key <= end:
            kept.append(record)
    return kept


class ScrapedDataStore:
    """Reads what the scrapers stored for a team and module."""

    source_name = "scraped"

    def __init__(self, db: Session):
        self.db = db

    def fetch(
        self,
        team_id: str,
        module_id: str,
        season: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        Scraped records for one unit, newest scrape first.

        Records stored without a season are treated as current and always returned.

        Raises:
            UpstreamError: If the store cannot be read
        """
        try:
            query = self.db.query(ScrapedRecord).filter(
                ScrapedRecord.team_id == team_id,
                ScrapedRecord.module_id == module_id,
            )
            if season is not None:
                query = query.filter(
                    (ScrapedRecord.season == season) | (ScrapedRecord.season.is_(None))
                )
            rows = query.order_by(ScrapedRecord.scraped_at.desc()).all()
        except SQLAlchemyError as e:
            raise UpstreamError(self.source_name, f"failed to read scraped records: {e}") from e

        records = [dict(row.payload) for row in rows if isinstance(row.payload, dict)]
        return filter_by_date(records, start_date, end_date)


class BaselineSource:
    """Previously captured snapshots used as the authoritative side."""

    source_name = "baseline"

    def __init__(self, db: Session):
        self.db = db

    def fetch(
        self,
        team_id: str,
        module_id: str,
        season: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        Records from the most recent snapshot for one unit.

        Raises:
            NotFoundError: No snapshot has been captured
            UpstreamError: Store unreadable or snapshot malformed
        """
        try:
            query = self.db.query(BaselineSnapshot).filter(
                BaselineSnapshot.team_id == team_id,
                BaselineSnapshot.module_id == module_id,
            )
            if season is not None:
                query = query.filter(BaselineSnapshot.season == season)
            snapshot = query.order_by(BaselineSnapshot.captured_at.desc()).first()
        except SQLAlchemyError as e:
            raise UpstreamError(self.source_name, f"failed to read baseline snapshots: {e}") from e

        if snapshot is None:
            raise NotFoundError("Baseline snapshot", f"{team_id}/{module_id}")
        if not isinstance(snapshot.records, list):
            raise UpstreamError(self.source_name, f"snapshot {snapshot.id} does not hold a record list")

        records = [dict(record) for record in snapshot.records if isinstance(record, dict)]
        logger.debug(f"Baseline {snapshot.id} for {team_id}/{module_id}: {len(records)} records")
        return filter_by_date(records, start_date, end_date)
