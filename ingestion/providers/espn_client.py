"""
ESPN fantasy API client with cookie authentication and retry logic.

This module provides resilient provider access with:
- Exponential backoff retry logic for transient failures (429, 5xx, timeouts)
- Circuit breaker pattern to prevent hammering a failing upstream
- Typed errors from core.exceptions for the orchestrator's failure policy
- One httpx.AsyncClient per league season, opened as an async context manager
"""

import httpx
import asyncio
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Callable, Sequence, Tuple, Union
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from core.config import settings
from core.exceptions import (
    ProviderError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError
)
from ingestion.providers.credentials import EspnCredentials
from schemas.imports import LeagueRef
import logging

logger = logging.getLogger(__name__)

LEAGUE_VIEWS = ("mTeam", "mRoster", "mSettings", "mSchedule", "mStandings")
SCOREBOARD_VIEWS = ("mScoreboard", "mMatchupScore")

QueryParams = Union[Dict[str, Any], Sequence[Tuple[str, Any]]]


def retry_after_seconds(header: Optional[str], default: float) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)"""
    if header is None:
        return default
    try:
        return max(0.0, float(int(header)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable Retry-After header {header!r}, using {default}s")
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ProviderClient(ABC):
    """
    Season-scoped access to a fantasy provider.

    Instances are used as async context managers so transports are
    opened and closed per season.
    """

    provider_league_id: int
    season: int

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    @abstractmethod
    async def get_league(self) -> Dict[str, Any]:
        """League settings, teams with rosters, schedule and standings"""
        pass

    @abstractmethod
    async def get_scoreboard(self, week: int) -> Dict[str, Any]:
        """Scoreboard (schedule with scores) for one scoring period"""
        pass

    @abstractmethod
    async def get_transactions(self, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        """One page of the transaction log"""
        pass


class EspnClient(ProviderClient):
    """
    ESPN fantasy football v3 API client.

    Attributes:
        max_retries: Maximum number of attempts per request (default: settings.MAX_RETRIES)
        retry_delay: Initial retry delay in seconds (default: settings.RETRY_DELAY)
        timeout: Request timeout in seconds (default: settings.REQUEST_TIMEOUT)
        circuit_breaker_threshold: Failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """

    def __init__(
        self,
        provider_league_id: int,
        season: int,
        credentials: EspnCredentials,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        self.provider_league_id = provider_league_id
        self.season = season
        self.credentials = credentials
        self.base_url = (base_url or settings.ESPN_BASE_URL).rstrip("/")
        self.max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.RETRY_DELAY
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self._client: Optional[httpx.AsyncClient] = None

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    @property
    def league_url(self) -> str:
        return f"{self.base_url}/seasons/{self.season}/segments/0/leagues/{self.provider_league_id}"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Cookie": self.credentials.cookie_header,
            "Accept": "application/json",
        }

    async def __aenter__(self):
        self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ========================================================================
    # Circuit breaker
    # ========================================================================

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for ESPN league {self.provider_league_id}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for ESPN league {self.provider_league_id}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ========================================================================
    # Requests
    # ========================================================================

    def _context(self, url: str, **extra) -> Dict[str, Any]:
        context = {
            "api_url": url,
            "provider_league_id": self.provider_league_id,
            "season": self.season,
        }
        context.update(extra)
        return context

    async def _make_request_with_retry(self, url: str, params: QueryParams) -> Dict[str, Any]:
        """
        GET a provider URL with retry logic and exponential backoff.

        Returns:
            Decoded JSON body

        Raises:
            AuthenticationError: On 401/403 (not retried)
            ResourceNotFoundError: On 404 (not retried)
            RateLimitError: When 429 persists after max retries
            NetworkError: On 5xx, timeouts or transport errors after max retries
            ProviderError: For other failures
        """
        if self._is_circuit_open():
            raise ProviderError(
                f"Circuit breaker is open for ESPN league {self.provider_league_id}",
                context=self._context(url, open_until=self._circuit_breaker_open_until.isoformat())
            )

        if self._client is None:
            raise ProviderError(
                "EspnClient must be used as an async context manager",
                context=self._context(url)
            )

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await self._client.get(url, params=params)

                if response.status_code in (401, 403):
                    self._record_failure()
                    raise AuthenticationError(
                        f"Authentication failed for {url}",
                        context=self._context(url, status_code=response.status_code)
                    )

                if response.status_code == 404:
                    self._record_failure()
                    raise ResourceNotFoundError(
                        f"Resource not found: {url}",
                        context=self._context(url, status_code=404)
                    )

                if response.status_code == 429:
                    retry_after = retry_after_seconds(
                        response.headers.get("Retry-After"), self.retry_delay * (2 ** attempt)
                    )
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")

                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(retry_after)
                        continue
                    self._record_failure()
                    raise RateLimitError(
                        f"Rate limit exceeded for {url}",
                        context=self._context(url, status_code=429, retry_count=attempt + 1),
                        retry_after=int(retry_after)
                    )

                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)  # Exponential backoff
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Server error after {self.max_retries} retries",
                        context=self._context(
                            url,
                            status_code=response.status_code,
                            retry_count=attempt + 1,
                            response_body=response.text[:500]
                        )
                    )

                if response.status_code >= 400:
                    self._record_failure()
                    raise ProviderError(
                        f"ESPN API error: {response.status_code}",
                        context=self._context(url, status_code=response.status_code)
                    )

                try:
                    data = response.json()
                except ValueError as e:
                    raise ProviderError(
                        "Failed to parse JSON response",
                        context=self._context(url, response_body=response.text[:500]),
                        original_exception=e
                    )

                self._record_success()
                return data

            except ProviderError:
                raise

            except httpx.TimeoutException as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} retries",
                    context=self._context(url, timeout=self.timeout, retry_count=attempt + 1),
                    original_exception=e
                )

            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} retries",
                    context=self._context(url, retry_count=attempt + 1),
                    original_exception=e
                )

        raise ProviderError("Max retries exceeded", context=self._context(url))

    async def get_league(self) -> Dict[str, Any]:
        params = [("view", view) for view in LEAGUE_VIEWS]
        return await self._make_request_with_retry(self.league_url, params)

    async def get_scoreboard(self, week: int) -> Dict[str, Any]:
        params = [("view", view) for view in SCOREBOARD_VIEWS]
        params.append(("scoringPeriodId", week))
        return await self._make_request_with_retry(self.league_url, params)

    async def get_transactions(self, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        data = await self._make_request_with_retry(
            f"{self.league_url}/transactions",
            {"offset": offset, "limit": limit}
        )
        if isinstance(data, dict):
            return data.get("transactions") or []
        return data or []


ProviderClientFactory = Callable[[LeagueRef, int, EspnCredentials], ProviderClient]


def espn_client_factory(league: LeagueRef, season: int, credentials: EspnCredentials) -> ProviderClient:
    """Default factory: one EspnClient per league season"""
    return EspnClient(
        provider_league_id=league.provider_league_id,
        season=season,
        credentials=credentials
    )
