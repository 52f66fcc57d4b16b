"""
Database models for the Sports Data Reconciliation API.

Tables fall into three groups:
- Mapping rules: mapping_rules, mapping_rule_history, mapping_suggestions
- Reconciliation: comparison_results, comparison_jobs, comparison_job_results,
  ignored_schedule_games
- Collaborator data (written by other services, read here): teams,
  scraped_records, baseline_snapshots
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Column, String, Float, Integer, DateTime, ForeignKey, Boolean, Text, Index,
    UniqueConstraint, JSON
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


# ─────────────────────────────────────────────────────────────
# Mapping rules
# ─────────────────────────────────────────────────────────────

class MappingRule(Base):
    """A stored instruction telling the evaluator when two differing values are equal.

    Scope is flattened into scope_* columns; sportsrecon.schemas.scope holds the
    tagged union that validates which of them may be set for each level.
    """
    __tablename__ = "mapping_rules"

    id = Column(String(36), primary_key=True)
    mapping_type = Column(String(16), nullable=False, index=True)  # equivalence, tolerance, transformation, ignore
    field_type = Column(String(32), nullable=False, index=True)
    custom_field = Column(String(64), nullable=True)

    scope_level = Column(String(8), nullable=False, default="global", index=True)
    scope_league = Column(String(32), nullable=True, index=True)
    scope_sport = Column(String(32), nullable=True, index=True)
    scope_team_id = Column(String(64), nullable=True, index=True)
    scope_player_id = Column(String(64), nullable=True, index=True)
    scope_player_name = Column(String(255), nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    rules = Column(JSON, nullable=False, default=dict)  # payload shape depends on mapping_type

    applies_to_scraped = Column(Boolean, nullable=False, default=True)
    applies_to_api = Column(Boolean, nullable=False, default=True)
    applies_to_oracle = Column(Boolean, nullable=False, default=True)

    active = Column(Boolean, nullable=False, default=True, index=True)
    source = Column(String(20), nullable=False, default="manual")  # manual, auto-discovered, imported, system-default
    discovery_metadata = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    times_used = Column(Integer, nullable=False, default=0)
    successful_matches = Column(Integer, nullable=False, default=0)
    last_used = Column(DateTime, nullable=True)

    expires_at = Column(DateTime, nullable=True, index=True)
    created_by = Column(String(64), nullable=True)
    modified_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    history = relationship(
        "MappingRuleHistory",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="MappingRuleHistory.timestamp",
    )

    __table_args__ = (
        Index("ix_mapping_rules_lookup", "field_type", "active", "scope_level"),
    )

    @property
    def scope(self) -> dict:
        """Scope as a plain dict containing only the populated fields."""
        scope = {"level": self.scope_level}
        for key, value in (
            ("league", self.scope_league),
            ("sport", self.scope_sport),
            ("team_id", self.scope_team_id),
            ("player_id", self.scope_player_id),
            ("player_name", self.scope_player_name),
        ):
            if value is not None:
                scope[key] = value
        return scope

    @property
    def applies_to(self) -> dict:
        return {
            "scraped": self.applies_to_scraped,
            "api": self.applies_to_api,
            "oracle": self.applies_to_oracle,
        }

    @property
    def display_name(self) -> str:
        """Human readable summary, e.g. '"Bob Smith Jr." = Smith, Bob'."""
        rules = self.rules or {}
        if self.mapping_type == "equivalence":
            return f"\"{rules.get('primary_value')}\" = {', '.join(rules.get('equivalents', []))}"
        if self.mapping_type == "tolerance":
            unit = "%" if rules.get("tolerance_type") == "percentage" else ""
            return f"{self.field_type} ±{rules.get('tolerance', 0)}{unit}"
        if self.mapping_type == "transformation":
            return f"Transform: {rules.get('transform_function')}"
        if self.mapping_type == "ignore":
            return f"Ignore: {rules.get('primary_value')}"
        return "Unknown mapping"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the rule is past its expiry instant."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())


class MappingRuleHistory(Base):
    """Append-only audit trail of mapping rule lifecycle actions."""
    __tablename__ = "mapping_rule_history"

    id = Column(String(36), primary_key=True)
    rule_id = Column(String(36), ForeignKey("mapping_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(16), nullable=False)  # created, modified, activated, deactivated
    user = Column(String(64), nullable=True)
    changes = Column(JSON, nullable=True)
    timestamp = Column(DateTime, nullable=False)

    rule = relationship("MappingRule", back_populates="history")


class MappingSuggestion(Base):
    """A potential mapping discovered from repeated discrepancies, awaiting review."""
    __tablename__ = "mapping_suggestions"

    id = Column(String(36), primary_key=True)
    field_type = Column(String(32), nullable=False, index=True)
    scraped_value = Column(String(255), nullable=False)
    source_value = Column(String(255), nullable=False)
    league = Column(String(32), nullable=True)
    sport = Column(String(32), nullable=True)
    team_id = Column(String(64), nullable=True, index=True)

    suggested_type = Column(String(16), nullable=False, default="equivalence")
    suggested_rules = Column(JSON, nullable=False, default=dict)
    confidence = Column(Float, nullable=False, default=0.1)
    occurrences = Column(Integer, nullable=False, default=1)
    examples = Column(JSON, nullable=False, default=list)

    status = Column(String(16), nullable=False, default="pending", index=True)  # pending, accepted, rejected
    reviewed_by = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_mapping_id = Column(String(36), nullable=True)

    first_seen = Column(DateTime, nullable=False)
    last_seen = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "field_type", "scraped_value", "source_value", "team_id",
            name="uq_mapping_suggestion_values",
        ),
    )


# ─────────────────────────────────────────────────────────────
# Reconciliation
# ─────────────────────────────────────────────────────────────

class IgnoredScheduleGame(Base):
    """Schedule date an operator excluded from missing-in-source reporting."""
    __tablename__ = "ignored_schedule_games"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(64), nullable=False, index=True)
    module_id = Column(String(64), nullable=False, index=True)
    game_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    opponent = Column(String(255), nullable=True)
    reason = Column(String(255), nullable=False, default="Future tournament game")
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("team_id", "module_id", "game_date", name="uq_ignored_game"),
    )


class ComparisonResultRecord(Base):
    """Stored outcome of one reconciliation unit."""
    __tablename__ = "comparison_results"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(64), nullable=False, index=True)
    module_id = Column(String(64), nullable=False, index=True)
    source = Column(String(16), nullable=False)
    season = Column(Integer, nullable=True)
    total_scraped = Column(Integer, nullable=False, default=0)
    total_source = Column(Integer, nullable=False, default=0)
    match_percentage = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    job_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, index=True)


class ComparisonJob(Base):
    """Bulk comparison job record.

    Progress counters are only ever changed through SQL-level increments so
    concurrent unit completions cannot lose updates.
    """
    __tablename__ = "comparison_jobs"

    id = Column(String(36), primary_key=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    filters = Column(JSON, nullable=False)
    concurrency = Column(Integer, nullable=False)
    batch_delay_seconds = Column(Float, nullable=False)

    total = Column(Integer, nullable=False, default=0)
    completed = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    current_team = Column(String(255), nullable=True)
    current_module = Column(String(64), nullable=True)

    units = Column(JSON, nullable=False, default=list)  # [{team_id, team_name, module_id}]
    overall_summary = Column(JSON, nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    estimated_seconds = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    results = relationship(
        "ComparisonJobResult",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="ComparisonJobResult.completed_at",
    )


class ComparisonJobResult(Base):
    """Outcome of one (team, module) unit inside a bulk job."""
    __tablename__ = "comparison_job_results"

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("comparison_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(String(64), nullable=False)
    team_name = Column(String(255), nullable=True)
    module_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)  # success, failed
    summary = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    comparison_id = Column(String(36), nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    job = relationship("ComparisonJob", back_populates="results")


# ─────────────────────────────────────────────────────────────
# Collaborator data
# ─────────────────────────────────────────────────────────────

class Team(Base):
    """Team metadata maintained by the admin service.

    source_ids maps each authoritative source to its identifiers, e.g.
    {"oracle": {"football": "1234"}, "api": {"football": "abc"}}.
    """
    __tablename__ = "teams"

    team_id = Column(String(64), primary_key=True)
    team_name = Column(String(255), nullable=False)
    team_nickname = Column(String(255), nullable=True)
    league = Column(String(32), nullable=False, index=True)
    conference = Column(String(64), nullable=True, index=True)
    division = Column(String(32), nullable=True, index=True)
    source_ids = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)


class ScrapedRecord(Base):
    """Latest scraper output for a (team, module)."""
    __tablename__ = "scraped_records"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(64), nullable=False, index=True)
    module_id = Column(String(64), nullable=False, index=True)
    season = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=False)  # one player or game
    scraped_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_scraped_team_module", "team_id", "module_id"),
    )


class BaselineSnapshot(Base):
    """Previously captured authoritative records used when the source is unavailable."""
    __tablename__ = "baseline_snapshots"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(64), nullable=False, index=True)
    module_id = Column(String(64), nullable=False, index=True)
    season = Column(Integer, nullable=True)
    records = Column(JSON, nullable=False)
    captured_at = Column(DateTime, nullable=False, index=True)
