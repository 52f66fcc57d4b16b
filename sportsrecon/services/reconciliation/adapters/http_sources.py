"""
HTTP clients for authoritative sources.

- OracleGatewayClient: HTTP gateway in front of the analytics database
- StatsApiClient: paid stats API

Both return plain lists of record dicts (one player or one game each) and
translate every transport, HTTP or payload problem into UpstreamError so a
bulk job can record it against the unit and move on.

Requests run in a worker thread through the source's circuit breaker, with
tenacity retrying connection errors and 5xx responses.
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from sportsrecon.core import metrics
from sportsrecon.core.config import settings
from sportsrecon.core.exceptions import UpstreamError
from sportsrecon.services.reconciliation.adapters.circuit_breaker import (
    oracle_gateway_breaker, stats_api_breaker,
)

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.RequestError)


class HttpSourceClient:
    """
    Base class for JSON-over-HTTP sources.

    Subclasses set ``source_name`` and implement the path builders and auth headers.
    """

    source_name = "http"

    def __init__(
        self,
        base_url: str,
        breaker: CircuitBreaker,
        timeout: Optional[float] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            base_url: Source base URL; an empty URL makes every fetch fail as upstream
            breaker: Circuit breaker guarding this source
            timeout: Request timeout in seconds (defaults to HTTP_TIMEOUT_SECONDS)
            max_attempts: Attempts per request including the first
            backoff_seconds: Exponential backoff multiplier between attempts
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or "").rstrip("/")
        self.breaker = breaker
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=backoff_seconds, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def fetch_roster(self, team_source_id: str, sport: str, season: Optional[int]) -> List[Dict[str, Any]]:
        """Fetch one team's roster for a season."""
        return await self._get_records(self.roster_path(team_source_id, sport), {"season": season})

    async def fetch_schedule(
        self,
        team_source_id: str,
        sport: str,
        season: Optional[int],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch one team's schedule for a season, optionally within a date range."""
        params = {
            "season": season,
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        }
        return await self._get_records(self.schedule_path(team_source_id, sport), params)

    # ─────────────────────────────────────────────────────────────
    # Subclass hooks
    # ─────────────────────────────────────────────────────────────

    def roster_path(self, team_source_id: str, sport: str) -> str:
        raise NotImplementedError

    def schedule_path(self, team_source_id: str, sport: str) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _get_records(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not self.base_url:
            raise UpstreamError(self.source_name, "source URL is not configured")

        params = {key: value for key, value in params.items() if value is not None}
        try:
            payload = await asyncio.to_thread(self.breaker.call, self._get_with_retry, path, params)
        except CircuitBreakerError as e:
            metrics.record_upstream_failure(self.source_name, "circuit_open")
            raise UpstreamError(self.source_name, "circuit breaker is open", {"path": path}) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            metrics.record_upstream_failure(self.source_name, f"http_{status}")
            raise UpstreamError(
                self.source_name, f"HTTP {status} from {path}", {"path": path, "status": status},
            ) from e
        except httpx.RequestError as e:
            metrics.record_upstream_failure(self.source_name, type(e).__name__)
            raise UpstreamError(self.source_name, f"request failed: {e}", {"path": path}) from e
        except ValueError as e:
            metrics.record_upstream_failure(self.source_name, "invalid_json")
            raise UpstreamError(self.source_name, "response was not valid JSON", {"path": path}) from e

        records = self._extract_records(payload)
        if records is None:
            metrics.record_upstream_failure(self.source_name, "malformed")
            raise UpstreamError(self.source_name, "response did not contain a record list", {"path": path})

        logger.debug(f"{self.source_name}: {len(records)} records from {path}")
        return records

    def _get_with_retry(self, path: str, params: Dict[str, Any]) -> Any:
        return self._retrying.copy()(self._get, path, params)

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        with httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers(),
            transport=self.transport,
        ) as client:
            response = client.get(path, params=params)
            response.raise_for_status()
            return response.json()

    @staticmethod
    def _extract_records(payload: Any) -> Optional[List[Dict[str, Any]]]:
        """Accept a bare list or an envelope with ``data`` / ``records``."""
        if isinstance(payload, dict):
            payload = payload.get("data", payload.get("records"))
        if not isinstance(payload, list):
            return None
        return [record for record in payload if isinstance(record, dict)]


class OracleGatewayClient(HttpSourceClient):
    """Analytics database, reached through its HTTP gateway."""

    source_name = "oracle"

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, **kwargs):
        kwargs.setdefault("breaker", oracle_gateway_breaker)
        super().__init__(base_url if base_url is not None else settings.ORACLE_GATEWAY_URL, **kwargs)
        self.token = token if token is not None else settings.ORACLE_GATEWAY_TOKEN

    def roster_path(self, team_source_id: str, sport: str) -> str:
        return f"/rosters/{sport}/{team_source_id}"

    def schedule_path(self, team_source_id: str, sport: str) -> str:
        return f"/schedules/{sport}/{team_source_id}"

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


class StatsApiClient(HttpSourceClient):
    """Paid stats API."""

    source_name = "api"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("breaker", stats_api_breaker)
        super().__init__(base_url if base_url is not None else settings.STATS_API_BASE_URL, **kwargs)
        self.api_key = api_key if api_key is not None else settings.STATS_API_KEY

    def roster_path(self, team_source_id: str, sport: str) -> str:
        return f"/{sport}/teams/{team_source_id}/roster"

    def schedule_path(self, team_source_id: str, sport: str) -> str:
        return f"/{sport}/teams/{team_source_id}/schedule"

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers
