"""Ignored schedule game API routes."""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sportsrecon.core.database import get_db
from sportsrecon.core.exceptions import NotFoundError
from sportsrecon.repositories.ignored_games import IgnoredGameRepository
from sportsrecon.schemas.comparison import IgnoredGameCreate, IgnoredGameResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ignored-games", tags=["ignored-games"])


@router.get("/{team_id}/{module_id}", response_model=List[IgnoredGameResponse])
async def list_ignored_games(team_id: str, module_id: str, db: Session = Depends(get_db)):
    return IgnoredGameRepository(db).list_for(team_id, module_id)


@router.post("/", response_model=IgnoredGameResponse, status_code=201)
async def add_ignored_game(data: IgnoredGameCreate, db: Session = Depends(get_db)):
    """Ignore a schedule date; adding the same date again updates it."""
    entry = IgnoredGameRepository(db).upsert(data)
    db.commit()
    db.refresh(entry)
    logger.info(f"Ignoring {data.team_id}/{data.module_id} games on {data.game_date}")
    return entry


@router.delete("/{team_id}/{module_id}/{game_date}")
async def remove_ignored_game(
    team_id: str,
    module_id: str,
    game_date: str,
    db: Session = Depends(get_db),
) -> Dict:
    if not IgnoredGameRepository(db).remove(team_id, module_id, game_date):
        raise NotFoundError("Ignored game", f"{team_id}/{module_id}/{game_date}")
    db.commit()
    return {"success": True, "team_id": team_id, "module_id": module_id, "game_date": game_date}
