"""Single comparison API routes."""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sportsrecon.core.database import get_db
from sportsrecon.schemas.comparison import ComparisonRequest
from sportsrecon.services.reconciliation.comparison_service import ComparisonService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/comparisons", tags=["comparisons"])


def get_comparison_service(db: Session = Depends(get_db)) -> ComparisonService:
    """Dependency to get comparison service instance."""
    return ComparisonService(db)


@router.post("/run")
async def run_comparison(
    request: ComparisonRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> Dict:
    """
    Reconcile one team/module against an authoritative source.

    Returns:
        The comparison result with matches, discrepancies, both missing
        lists, match percentage and summary, plus the comparison id
    """
    return await service.run_comparison(
        request.team_id,
        request.module_id,
        source=request.source,
        season=request.season,
        start_date=request.start_date,
        end_date=request.end_date,
    )


@router.get("/{comparison_id}")
async def get_comparison(
    comparison_id: str,
    service: ComparisonService = Depends(get_comparison_service),
) -> Dict:
    record = service.get_result(comparison_id)
    return {
        "comparison_id": record.id,
        "team_id": record.team_id,
        "module_id": record.module_id,
        "source": record.source,
        "season": record.season,
        "job_id": record.job_id,
        "created_at": record.created_at.isoformat(),
        **record.payload,
    }


@router.get("/{comparison_id}/differences")
async def get_differences(
    comparison_id: str,
    service: ComparisonService = Depends(get_comparison_service),
) -> Dict:
    """One row per difference: missing_in_web, missing_in_source or field_mismatch."""
    rows: List[Dict] = service.get_differences(comparison_id)
    return {"comparison_id": comparison_id, "count": len(rows), "differences": rows}
