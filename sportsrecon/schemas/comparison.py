"""
Pydantic request models for comparisons, bulk jobs and ignored games.
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sportsrecon.schemas.mapping import SourceType


class ComparisonRequest(BaseModel):
    """Run a single (team, module) reconciliation unit."""
    team_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    source: SourceType = "oracle"
    season: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_dates(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class BulkComparisonRequest(BaseModel):
    """Run many reconciliation units as one job.

    Concurrency above the configured ceiling and delays below the configured
    floor are clamped rather than rejected.
    """
    league: Optional[str] = None
    conference: Optional[str] = None
    division: Optional[str] = None
    teams: List[str] = Field(default_factory=list)
    modules: List[str] = Field(..., min_length=1)
    source: SourceType = "oracle"
    season: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    concurrency: Optional[int] = Field(None, ge=1)
    batch_delay_seconds: Optional[float] = Field(None, ge=0)
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def _check_selection(self):
        if not self.league and not self.teams:
            raise ValueError("Either league or teams must be specified")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class IgnoredGameCreate(BaseModel):
    """Exclude a schedule date from missing-in-source reporting."""
    team_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    game_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    opponent: Optional[str] = None
    reason: str = "Future tournament game"
    created_by: Optional[str] = None


class IgnoredGameResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    team_id: str
    module_id: str
    game_date: str
    opponent: Optional[str]
    reason: str
    created_by: Optional[str]
    created_at: datetime
