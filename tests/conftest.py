"""Shared pytest fixtures for sportsrecon tests."""
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="function")
def engine():
    """Isolated in-memory database.

    StaticPool keeps a single connection so every session opened during a
    test (request sessions and bulk job sessions alike) sees the same data.
    """
    from sportsrecon.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create fresh test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
async def async_client(db_session: Session, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing FastAPI endpoints."""
    from sportsrecon.main import app
    from sportsrecon.core.database import get_db, get_session_factory

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# =============================================================================
# DATA HELPERS
# =============================================================================

def create_team(
    db: Session,
    team_id: str,
    team_name: str,
    league: str = "NCAA",
    conference: str = "Big Ten",
    source_ids: dict = None,
    **kwargs,
):
    """Create a team that can run the NCAA football modules by default."""
    from sportsrecon.models import Team

    team = Team(
        team_id=team_id,
        team_name=team_name,
        team_nickname=kwargs.pop("team_nickname", None),
        league=league,
        conference=conference,
        division=kwargs.pop("division", None),
        source_ids=source_ids if source_ids is not None else {
            "scraper": {"football": team_id},
            "oracle": {"football": f"ora-{team_id}"},
        },
        active=kwargs.pop("active", True),
    )
    db.add(team)
    db.commit()
    return team


def create_rule(db: Session, **data):
    """Create and commit a mapping rule from request-style fields."""
    from sportsrecon.repositories.mapping_rules import MappingRuleRepository
    from sportsrecon.schemas.mapping import MappingRuleCreate

    rule = MappingRuleRepository(db).create_rule(MappingRuleCreate(**data))
    db.commit()
    db.refresh(rule)
    return rule


def add_scraped(db: Session, team_id: str, module_id: str, records: list, season: int = 2024):
    from sportsrecon.models import ScrapedRecord

    for record in records:
        db.add(ScrapedRecord(
            id=str(uuid.uuid4()),
            team_id=team_id,
            module_id=module_id,
            season=season,
            payload=record,
            scraped_at=datetime.utcnow(),
        ))
    db.commit()


@pytest.fixture
def sample_team(db_session: Session):
    """One NCAA team with scraper and analytics ids for football."""
    return create_team(
        db_session,
        "ncaa-101",
        "State University",
        team_nickname="Wildcats",
        source_ids={
            "scraper": {"football": "101", "mensBasketball": "201"},
            "oracle": {"football": "9101"},
        },
    )


@pytest.fixture
def sample_teams(db_session: Session):
    """Twelve active NCAA teams plus one inactive and one MLB team."""
    teams = [
        create_team(db_session, f"team-{i:02d}", f"Team {i:02d}")
        for i in range(1, 13)
    ]
    create_team(db_session, "team-inactive", "Retired U", active=False)
    create_team(
        db_session, "mlb-1", "River Cats", league="MILB", conference=None,
        source_ids={"oracle": {"baseball": "5001"}},
    )
    return teams
