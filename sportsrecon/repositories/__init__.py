"""
Repository layer for data access.

Usage:
    from sportsrecon.repositories import MappingRuleRepository
    from sportsrecon.core.database import SessionLocal

    db = SessionLocal()
    rules = MappingRuleRepository(db).list_rules(field_type="name")
    db.close()
"""

from sportsrecon.repositories.base import BaseRepository
from sportsrecon.repositories.ignored_games import IgnoredGameRepository
from sportsrecon.repositories.mapping_rules import MappingRuleRepository

__all__ = ["BaseRepository", "IgnoredGameRepository", "MappingRuleRepository"]
