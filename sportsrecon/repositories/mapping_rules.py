"""
Rule Store: persistence for mapping rules and their audit history.

The repository never commits; services own transaction boundaries.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, selectinload

from sportsrecon.models import MappingRule, MappingRuleHistory
from sportsrecon.repositories.base import BaseRepository
from sportsrecon.schemas.mapping import (
    MappingRuleCreate, MappingRuleUpdate, validate_rules_payload,
)

SCOPE_COLUMNS = {
    "league": "scope_league",
    "sport": "scope_sport",
    "team_id": "scope_team_id",
    "player_id": "scope_player_id",
    "player_name": "scope_player_name",
}

# Which applies_to flag a source pairing needs; scraped is always implied.
SOURCE_FLAGS = {
    "api": "applies_to_api",
    "oracle": "applies_to_oracle",
    "baseline": "applies_to_oracle",
}


def scope_to_columns(scope) -> Dict[str, Any]:
    """Flatten a scope variant into scope_* column values."""
    values = scope.model_dump()
    columns = {"scope_level": values.pop("level")}
    for key, column in SCOPE_COLUMNS.items():
        columns[column] = values.get(key)
    return columns


class MappingRuleRepository(BaseRepository[MappingRule]):
    """Data access for mapping rules."""

    def __init__(self, db: Session):
        super().__init__(MappingRule, db)

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def create_rule(self, data: MappingRuleCreate, now: Optional[datetime] = None) -> MappingRule:
        """Create a rule from a validated request and record the 'created' history entry."""
        now = now or datetime.utcnow()
        rule = MappingRule(
            id=str(uuid.uuid4()),
            mapping_type=data.mapping_type,
            field_type=data.field_type,
            custom_field=data.custom_field,
            priority=data.priority,
            rules=data.rules,
            applies_to_scraped=data.applies_to.scraped,
            applies_to_api=data.applies_to.api,
            applies_to_oracle=data.applies_to.oracle,
            active=data.active,
            source=data.source,
            discovery_metadata=data.discovery_metadata,
            tags=list(data.tags),
            notes=data.notes,
            expires_at=data.expires_at,
            created_by=data.created_by,
            times_used=0,
            successful_matches=0,
            created_at=now,
            updated_at=now,
            **scope_to_columns(data.scope),
        )
        self.db.add(rule)
        self.add_history(rule, "created", data.created_by, None, now)
        return rule

    def update_rule(
        self,
        rule: MappingRule,
        data: MappingRuleUpdate,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Apply an update and append a history entry describing the changes.

        Args:
            rule: Rule to modify
            data: Validated update request
            now: Timestamp to record

        Returns:
            Dict of changed fields -> {'from', 'to'}

        Raises:
            ValueError: If the rules payload does not fit the rule's mapping type
        """
        now = now or datetime.utcnow()
        fields = data.model_dump(exclude_unset=True, exclude={"modified_by"})
        changes: Dict[str, Any] = {}

        def _set(attr: str, value: Any):
            current = getattr(rule, attr)
            if current != value:
                changes[attr] = {"from": _jsonable(current), "to": _jsonable(value)}
                setattr(rule, attr, value)

        if "rules" in fields and fields["rules"] is not None:
            _set("rules", validate_rules_payload(rule.mapping_type, fields.pop("rules")))
        if "scope" in fields and data.scope is not None:
            fields.pop("scope")
            for column, value in scope_to_columns(data.scope).items():
                _set(column, value)
        if "applies_to" in fields and data.applies_to is not None:
            fields.pop("applies_to")
            _set("applies_to_scraped", data.applies_to.scraped)
            _set("applies_to_api", data.applies_to.api)
            _set("applies_to_oracle", data.applies_to.oracle)
        for attr, value in fields.items():
            if attr == "tags" and value is not None:
                value = list(value)
            _set(attr, value)

        if rule.field_type == "custom" and not rule.custom_field:
            raise ValueError("custom_field is required when field_type is 'custom'")

        if changes:
            rule.modified_by = data.modified_by
            rule.updated_at = now
            action = "modified"
            if set(changes) == {"active"}:
                action = "activated" if rule.active else "deactivated"
            self.add_history(rule, action, data.modified_by, changes, now)
        return changes

    def deactivate(
        self,
        rule: MappingRule,
        user: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Soft delete a rule. Returns False if it was already inactive."""
        if not rule.active:
            return False
        now = now or datetime.utcnow()
        rule.active = False
        rule.modified_by = user
        rule.updated_at = now
        changes = {"active": {"from": True, "to": False}}
        if reason:
            changes["reason"] = reason
        self.add_history(rule, "deactivated", user, changes, now)
        return True

    def add_history(
        self,
        rule: MappingRule,
        action: str,
        user: Optional[str],
        changes: Optional[Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> MappingRuleHistory:
        entry = MappingRuleHistory(
            id=str(uuid.uuid4()),
            action=action,
            user=user,
            changes=changes,
            timestamp=now or datetime.utcnow(),
        )
        rule.history.append(entry)
        return entry

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    def find_candidates(
        self,
        field_type: str,
        custom_field: Optional[str] = None,
        include_inactive: bool = False,
        source_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[MappingRule]:
        """
        Load rules for a field that could apply to a comparison.

        Scope filtering is left to the resolver's predicates; this only narrows
        by field, activity, source pairing and expiry.
        """
        now = now or datetime.utcnow()
        query = self.query().filter(
            MappingRule.field_type == field_type,
            MappingRule.applies_to_scraped.is_(True),
            or_(MappingRule.expires_at.is_(None), MappingRule.expires_at > now),
        )
        if field_type == "custom":
            query = query.filter(MappingRule.custom_field == custom_field)
        if not include_inactive:
            query = query.filter(MappingRule.active.is_(True))
        flag = SOURCE_FLAGS.get(source_type or "")
        if flag:
            query = query.filter(getattr(MappingRule, flag).is_(True))
        return query.all()

    def list_rules(
        self,
        field_type: Optional[str] = None,
        mapping_type: Optional[str] = None,
        level: Optional[str] = None,
        league: Optional[str] = None,
        sport: Optional[str] = None,
        team_id: Optional[str] = None,
        active: Optional[bool] = None,
        source: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MappingRule]:
        """List rules matching the given admin filters, highest priority first."""
        query = self.query().options(selectinload(MappingRule.history))
        for column, value in (
            (MappingRule.field_type, field_type),
            (MappingRule.mapping_type, mapping_type),
            (MappingRule.scope_level, level),
            (MappingRule.scope_league, league),
            (MappingRule.scope_sport, sport),
            (MappingRule.scope_team_id, team_id),
            (MappingRule.active, active),
            (MappingRule.source, source),
        ):
            if value is not None:
                query = query.filter(column == value)
        query = query.order_by(MappingRule.priority.desc(), MappingRule.created_at.desc())
        rules = query.all()
        if tag:
            # Tags live in a JSON array; filtered here to stay portable across backends
            rules = [r for r in rules if tag in (r.tags or [])]
        return rules[offset:offset + limit]

    def find_for_player(self, player_id: str, include_inactive: bool = False) -> List[MappingRule]:
        """All player-level rules for one player id."""
        query = self.query().filter(
            MappingRule.scope_level == "player",
            MappingRule.scope_player_id == player_id,
        )
        if not include_inactive:
            query = query.filter(MappingRule.active.is_(True))
        return query.order_by(MappingRule.priority.desc(), MappingRule.created_at.desc()).all()

    def find_expired(self, now: Optional[datetime] = None) -> List[MappingRule]:
        """Active rules whose expiry instant has passed."""
        now = now or datetime.utcnow()
        return self.query().filter(
            MappingRule.active.is_(True),
            MappingRule.expires_at.isnot(None),
            MappingRule.expires_at <= now,
        ).all()

    # ─────────────────────────────────────────────────────────────
    # Usage counters
    # ─────────────────────────────────────────────────────────────

    def increment_usage(
        self,
        rule_id: str,
        hits: int = 1,
        successful: bool = True,
        now: Optional[datetime] = None,
    ) -> None:
        """Bump usage counters with a single UPDATE statement."""
        values = {
            "times_used": MappingRule.times_used + hits,
            "last_used": now or datetime.utcnow(),
        }
        if successful:
            values["successful_matches"] = MappingRule.successful_matches + hits
        self.db.execute(
            update(MappingRule)
            .where(MappingRule.id == rule_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value
