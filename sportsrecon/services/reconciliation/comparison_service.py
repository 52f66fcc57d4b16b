"""
Comparison service: runs one reconciliation unit (team x module).

Flow:
    scraped records + authoritative records
    -> EntityMatcher -> DiscrepancyBuilder -> aggregator
    -> ComparisonResultRecord
"""
import asyncio
import logging
import time
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from sportsrecon.core import metrics
from sportsrecon.core.config import get_default_season, settings
from sportsrecon.core.exceptions import NotFoundError, ReconciliationError, ValidationError
from sportsrecon.models import ComparisonResultRecord, Team
from sportsrecon.repositories.ignored_games import IgnoredGameRepository
from sportsrecon.services.mapping.evaluator import FieldEquivalenceEvaluator
from sportsrecon.services.mapping.scope import ScopeContext
from sportsrecon.services.mapping.suggestions import MappingSuggestionService
from sportsrecon.services.reconciliation import aggregator
from sportsrecon.services.reconciliation.adapters.http_sources import (
    HttpSourceClient, OracleGatewayClient, StatsApiClient,
)
from sportsrecon.services.reconciliation.adapters.stores import BaselineSource, ScrapedDataStore
from sportsrecon.services.reconciliation.discrepancy_builder import DiscrepancyBuilder
from sportsrecon.services.reconciliation.entity_matcher import EntityMatcher
from sportsrecon.services.reconciliation.modules import ModuleSpec, get_module, team_source_id

logger = logging.getLogger(__name__)

SOURCES = ("oracle", "api", "baseline")


class ComparisonService:
    """Run and retrieve single-unit comparisons."""

    def __init__(
        self,
        db: Session,
        oracle_client: Optional[HttpSourceClient] = None,
        stats_client: Optional[HttpSourceClient] = None,
        record_suggestions: Optional[bool] = None,
    ):
        """
        Args:
            db: SQLAlchemy database session
            oracle_client: Analytics gateway client (defaults to configured client)
            stats_client: Stats API client (defaults to configured client)
            record_suggestions: Record unequal fields as mapping suggestions
                (defaults to RECORD_MAPPING_SUGGESTIONS)
        """
        self.db = db
        self.oracle_client = oracle_client or OracleGatewayClient()
        self.stats_client = stats_client or StatsApiClient()
        self.record_suggestions = (
            settings.RECORD_MAPPING_SUGGESTIONS if record_suggestions is None else record_suggestions
        )

    # ─────────────────────────────────────────────────────────────
    # Running
    # ─────────────────────────────────────────────────────────────

    async def run_comparison(
        self,
        team_id: str,
        module_id: str,
        source: str = "oracle",
        season: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run one reconciliation unit and persist its result.

        Args:
            team_id: Team to reconcile
            module_id: Module (roster or schedule kind) to reconcile
            source: Authoritative side: oracle, api or baseline
            season: Season year (defaults to the current season)
            start_date: Only games on or after this date (schedules)
            end_date: Only games on or before this date (schedules)
            job_id: Bulk job the unit belongs to, if any

        Returns:
            ComparisonResult dict plus comparison_id and the echoed identifiers

        Raises:
            ValidationError: Unknown source
            NotFoundError: Unknown team, module or source team id
            UpstreamError: A data source failed
        """
        if source not in SOURCES:
            raise ValidationError(f"Unknown source '{source}'", invalid_fields={"source": "must be oracle, api or baseline"})
        spec = get_module(module_id)
        # Session work runs in a worker thread so the event loop stays free for other units
        team = await asyncio.to_thread(self.db.get, Team, team_id)
        if team is None:
            raise NotFoundError("Team", team_id)
        team_name = display_team_name(team)
        season = season or get_default_season()

        started = time.perf_counter()
        try:
            scraped = await asyncio.to_thread(
                ScrapedDataStore(self.db).fetch, team_id, module_id, season, start_date, end_date,
            )
            authoritative = await self._fetch_source(team, spec, source, season, start_date, end_date)
            result = await asyncio.to_thread(self.reconcile, team, spec, source, scraped, authoritative)
        except ReconciliationError:
            metrics.record_comparison(module_id, source, "failed", time.perf_counter() - started)
            raise

        comparison_id = str(uuid.uuid4())
        record = ComparisonResultRecord(
            id=comparison_id,
            team_id=team_id,
            module_id=module_id,
            source=source,
            season=season,
            total_scraped=result["total_scraped"],
            total_source=result["total_source"],
            match_percentage=result["match_percentage"],
            payload=result,
            job_id=job_id,
            created_at=datetime.utcnow(),
        )
        await asyncio.to_thread(self._persist, record)

        duration = time.perf_counter() - started
        metrics.record_comparison(module_id, source, "success", duration, result["match_percentage"])
        logger.info(
            f"Compared {team_id}/{module_id} against {source}: {result['match_percentage']}% "
            f"({result['summary']['perfect_matches']}/{result['total_source']} perfect, "
            f"{len(result['discrepancies'])} with discrepancies) in {duration:.2f}s"
        )

        return {
            "comparison_id": comparison_id,
            "team_id": team_id,
            "team_name": team_name,
            "module_id": module_id,
            "source": source,
            "season": season,
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
            **result,
        }

    def reconcile(
        self,
        team: Team,
        spec: ModuleSpec,
        source: str,
        scraped: List[Dict[str, Any]],
        authoritative: List[Dict[str, Any]],
        ignored_dates: Optional[Set[str]] = None,
    ) -> Dict[str, Any]:
        """
        Match, diff and aggregate already-fetched records.

        Rule usage counters are flushed at the end; mapping suggestions are
        left pending in the session for the caller's commit.
        """
        context = ScopeContext(league=team.league, sport=spec.sport, team_id=team.team_id)
        evaluator = FieldEquivalenceEvaluator(self.db, source_type=source)
        matcher = EntityMatcher(evaluator, context)
        suggestions = MappingSuggestionService(self.db) if self.record_suggestions else None

        if spec.is_roster:
            outcome = matcher.match_players(scraped, authoritative)
        else:
            if ignored_dates is None:
                ignored_dates = IgnoredGameRepository(self.db).dates_for(team.team_id, spec.module_id)
            outcome = matcher.match_games(scraped, authoritative, ignored_dates)

        matches = DiscrepancyBuilder(evaluator, spec, suggestions).build(outcome.pairs)

        if suggestions is not None and spec.is_roster:
            suggestions.record_name_candidates(
                [m.label for m in outcome.missing_in_source if not m.is_ignored],
                [m.label for m in outcome.missing_in_scraped if not m.is_ignored],
                context,
            )

        result = aggregator.build_result(
            matches,
            outcome.missing_in_scraped,
            outcome.missing_in_source,
            total_scraped=len(scraped),
            total_source=len(authoritative),
        )
        evaluator.flush_usage()
        return result

    def _persist(self, record: ComparisonResultRecord) -> None:
        self.db.add(record)
        self.db.commit()

    async def _fetch_source(
        self,
        team: Team,
        spec: ModuleSpec,
        source: str,
        season: int,
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> List[Dict[str, Any]]:
        if source == "baseline":
            return await asyncio.to_thread(
                BaselineSource(self.db).fetch, team.team_id, spec.module_id, season, start_date, end_date,
            )

        if source == "oracle":
            client = self.oracle_client
            source_team_id = team_source_id(team, "oracle", spec.sport)
        else:
            client = self.stats_client
            # NCAA teams are keyed by their analytics id in the stats API as well
            source_team_id = team_source_id(team, "stats_api", spec.sport) or team_source_id(team, "oracle", spec.sport)

        if not source_team_id:
            raise NotFoundError(f"{source} team id for {spec.sport}", team.team_id)

        if spec.is_roster:
            return await client.fetch_roster(source_team_id, spec.sport, season)
        return await client.fetch_schedule(source_team_id, spec.sport, season, start_date, end_date)

    # ─────────────────────────────────────────────────────────────
    # Retrieval
    # ─────────────────────────────────────────────────────────────

    def get_result(self, comparison_id: str) -> ComparisonResultRecord:
        record = self.db.get(ComparisonResultRecord, comparison_id)
        if record is None:
            raise NotFoundError("Comparison", comparison_id)
        return record

    def get_differences(self, comparison_id: str) -> List[Dict[str, Any]]:
        record = self.get_result(comparison_id)
        return aggregator.format_differences(record.payload, record.team_id)


def display_team_name(team: Team) -> str:
    return " ".join(part for part in (team.team_name, team.team_nickname) if part)
