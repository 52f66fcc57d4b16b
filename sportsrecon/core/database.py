"""
Database configuration and session management.
"""
import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from sportsrecon.core.config import settings

DATABASE_URL = settings.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    """Pool settings per backend; SQLite needs cross-thread access for background jobs."""
    kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
    }
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = 10
        kwargs["max_overflow"] = 20
    return kwargs


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
    ```python
    @router.get("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        ...
    ```
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Dependency that provides the session factory used by background jobs."""
    return SessionLocal


def init_db():
    """Initialize database tables."""
    from sportsrecon.models import Base
    Base.metadata.create_all(bind=engine, checkfirst=True)
