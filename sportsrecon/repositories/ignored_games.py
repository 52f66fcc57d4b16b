"""Ignored schedule games: per (team, module) dates excluded from missing-in-source reporting."""
import uuid
from datetime import datetime
from typing import List, Set

from sqlalchemy.orm import Session

from sportsrecon.models import IgnoredScheduleGame
from sportsrecon.repositories.base import BaseRepository
from sportsrecon.schemas.comparison import IgnoredGameCreate


class IgnoredGameRepository(BaseRepository[IgnoredScheduleGame]):
    """Data access for ignored schedule games."""

    def __init__(self, db: Session):
        super().__init__(IgnoredScheduleGame, db)

    def list_for(self, team_id: str, module_id: str) -> List[IgnoredScheduleGame]:
        return self.query().filter(
            IgnoredScheduleGame.team_id == team_id,
            IgnoredScheduleGame.module_id == module_id,
        ).order_by(IgnoredScheduleGame.game_date).all()

    def dates_for(self, team_id: str, module_id: str) -> Set[str]:
        """Date keys (YYYY-MM-DD) ignored for one team and module."""
        rows = self.db.query(IgnoredScheduleGame.game_date).filter(
            IgnoredScheduleGame.team_id == team_id,
            IgnoredScheduleGame.module_id == module_id,
        ).all()
        return {row[0] for row in rows}

    def upsert(self, data: IgnoredGameCreate) -> IgnoredScheduleGame:
        """Add a date, or refresh opponent/reason when it is already ignored."""
        existing = self.where_first(
            IgnoredScheduleGame.team_id == data.team_id,
            IgnoredScheduleGame.module_id == data.module_id,
            IgnoredScheduleGame.game_date == data.game_date,
        )
        if existing:
            existing.opponent = data.opponent
            existing.reason = data.reason
            existing.created_by = data.created_by or existing.created_by
            return existing
        return self.create(
            id=str(uuid.uuid4()),
            team_id=data.team_id,
            module_id=data.module_id,
            game_date=data.game_date,
            opponent=data.opponent,
            reason=data.reason,
            created_by=data.created_by,
            created_at=datetime.utcnow(),
        )

    def remove(self, team_id: str, module_id: str, game_date: str) -> bool:
        existing = self.where_first(
            IgnoredScheduleGame.team_id == team_id,
            IgnoredScheduleGame.module_id == module_id,
            IgnoredScheduleGame.game_date == game_date,
        )
        if existing is None:
            return False
        self.db.delete(existing)
        return True
