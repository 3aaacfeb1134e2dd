"""
Unit tests for the ESPN provider client
"""

import pytest
import httpx
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import Mock, AsyncMock, patch
from core.exceptions import (
    AuthenticationError, ResourceNotFoundError, RateLimitError, NetworkError, ProviderError
)
from ingestion.providers.credentials import EspnCredentials
from ingestion.providers.espn_client import EspnClient, retry_after_seconds


def make_response(status_code=200, json_data=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.headers = headers or {}
    response.text = ""
    return response


@pytest.fixture
def client():
    return EspnClient(
        provider_league_id=12345,
        season=2023,
        credentials=EspnCredentials(swid="ABC-123", espn_s2="s2-cookie"),
        base_url="https://espn.example.com/ffl",
        max_retries=3,
        retry_delay=0
    )


class TestEspnClient:

    def test_league_url(self, client):
        assert client.league_url == "https://espn.example.com/ffl/seasons/2023/segments/0/leagues/12345"

    def test_cookie_header_wraps_swid(self, client):
        assert client.headers["Cookie"] == "SWID={ABC-123}; espn_s2=s2-cookie"
        assert "s2-cookie" not in repr(client.credentials)

    @pytest.mark.asyncio
    async def test_get_league_success(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(json_data={"id": 12345}))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                result = await client.get_league()

            assert result == {"id": 12345}
            _, kwargs = mock_client.return_value.get.call_args
            assert ("view", "mTeam") in kwargs["params"]
            assert ("view", "mSettings") in kwargs["params"]
            mock_client.return_value.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_scoreboard_sends_scoring_period(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(json_data={"schedule": []}))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                await client.get_scoreboard(7)

            _, kwargs = mock_client.return_value.get.call_args
            assert ("scoringPeriodId", 7) in kwargs["params"]
            assert ("view", "mMatchupScore") in kwargs["params"]

    @pytest.mark.asyncio
    async def test_get_transactions_unwraps_page(self, client):
        page = {"transactions": [{"id": "tx-1"}, {"id": "tx-2"}]}
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(json_data=page))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                result = await client.get_transactions(offset=100, limit=50)

            assert [t["id"] for t in result] == ["tx-1", "tx-2"]
            args, kwargs = mock_client.return_value.get.call_args
            assert args[0].endswith("/leagues/12345/transactions")
            assert kwargs["params"] == {"offset": 100, "limit": 50}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure_is_not_retried(self, client, status_code):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(status_code))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                with pytest.raises(AuthenticationError):
                    await client.get_league()

            assert mock_client.return_value.get.await_count == 1

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(404))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                with pytest.raises(ResourceNotFoundError):
                    await client.get_league()

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(side_effect=[
                make_response(503),
                make_response(502),
                make_response(json_data={"id": 12345}),
            ])
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                result = await client.get_league()

            assert result == {"id": 12345}
            assert mock_client.return_value.get.await_count == 3

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(500))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                with pytest.raises(NetworkError):
                    await client.get_league()

            assert mock_client.return_value.get.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(
                return_value=make_response(429, headers={"Retry-After": "0"})
            )
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                with pytest.raises(RateLimitError) as exc_info:
                    await client.get_league()

            assert exc_info.value.context["status_code"] == 429

    @pytest.mark.asyncio
    async def test_transport_error_becomes_network_error(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                with pytest.raises(NetworkError) as exc_info:
                    await client.get_league()

            assert isinstance(exc_info.value.original_exception, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens_after_repeated_failures(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(return_value=make_response(404))
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                for _ in range(5):
                    with pytest.raises(ResourceNotFoundError):
                        await client.get_league()
                with pytest.raises(ProviderError) as exc_info:
                    await client.get_league()

            assert "Circuit breaker is open" in exc_info.value.message
            assert mock_client.return_value.get.await_count == 5

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, client):
        with pytest.raises(ProviderError):
            await client.get_league()

    @pytest.mark.asyncio
    async def test_rate_limit_with_http_date_retry_after(self, client):
        with patch("ingestion.providers.espn_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.get = AsyncMock(side_effect=[
                make_response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
                make_response(429, headers={"Retry-After": "soon"}),
                make_response(json_data={"id": 12345}),
            ])
            mock_client.return_value.aclose = AsyncMock()

            async with client:
                result = await client.get_league()

            assert result == {"id": 12345}
            assert mock_client.return_value.get.await_count == 3


class TestRetryAfterSeconds:

    def test_delta_seconds(self):
        assert retry_after_seconds("120", 1.0) == 120.0

    def test_missing_header_uses_default(self):
        assert retry_after_seconds(None, 4.0) == 4.0

    def test_http_date_in_future(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=60)
        wait = retry_after_seconds(format_datetime(when, usegmt=True), 1.0)
        assert 55.0 <= wait <= 60.0

    def test_http_date_in_past_is_zero(self):
        assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", 1.0) == 0.0

    def test_garbage_uses_default(self):
        assert retry_after_seconds("soon", 2.0) == 2.0
