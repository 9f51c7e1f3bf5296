"""Unit tests for RateLimitService: window counting, IP extraction, fail-open."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import redis.asyncio as redis

from app.core.errors import RateLimitError
from app.services.rate_limit_service import RateLimitService, client_identifier


@pytest.fixture
def service():
    return RateLimitService()


def _make_request(path="/api/v1/verification/verify", xff=None, client_host="1.2.3.4"):
    """Build a minimal mock request."""
    request = MagicMock()
    request.url.path = path
    request.headers = {}
    if xff is not None:
        request.headers["X-Forwarded-For"] = xff
    if client_host is None:
        request.client = None
    else:
        client = MagicMock()
        client.host = client_host
        request.client = client
    return request


def _make_redis(current=None, ttl=42):
    mock_redis = MagicMock()
    mock_redis.get = AsyncMock(return_value=current)
    mock_redis.setex = AsyncMock()
    mock_redis.incr = AsyncMock()
    mock_redis.ttl = AsyncMock(return_value=ttl)
    return mock_redis


class TestClientIdentifier:
    def test_uses_client_host(self):
        assert client_identifier(_make_request()) == "1.2.3.4"

    def test_rightmost_forwarded_entry(self):
        request = _make_request(xff="6.6.6.6, 10.0.0.1, 203.0.113.9")
        assert client_identifier(request) == "203.0.113.9"

    def test_blank_forwarded_header_falls_back(self):
        request = _make_request(xff=" , ")
        assert client_identifier(request) == "1.2.3.4"

    def test_unknown_without_client(self):
        assert client_identifier(_make_request(client_host=None)) == "unknown"


class TestRateLimitKeyGeneration:
    def test_deterministic_key(self, service):
        k1 = service._get_rate_limit_key("1.2.3.4", "/api/v1/team/preauth-check")
        k2 = service._get_rate_limit_key("1.2.3.4", "/api/v1/team/preauth-check")
        assert k1 == k2
        assert k1.startswith("rate_limit:")

    def test_different_endpoints_different_keys(self, service):
        k1 = service._get_rate_limit_key("1.2.3.4", "/api/v1/verification/verify")
        k2 = service._get_rate_limit_key("1.2.3.4", "/api/v1/events/rsvp")
        assert k1 != k2

    def test_different_ips_different_keys(self, service):
        k1 = service._get_rate_limit_key("1.2.3.4", "/api/v1/events/rsvp")
        k2 = service._get_rate_limit_key("5.6.7.8", "/api/v1/events/rsvp")
        assert k1 != k2


class TestCheckRateLimit:
    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_skips_in_development(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "development"
        mock_redis = _make_redis(current="99")
        service.redis_client = mock_redis

        await service.check_rate_limit(_make_request(), max_requests=1)

        mock_redis.get.assert_not_called()

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_skips_unknown_client(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "production"
        mock_redis = _make_redis(current="99")
        service.redis_client = mock_redis

        await service.check_rate_limit(_make_request(client_host=None), max_requests=1)

        mock_redis.get.assert_not_called()

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_first_request_opens_window(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "production"
        mock_redis = _make_redis(current=None)
        service.redis_client = mock_redis

        await service.check_rate_limit(_make_request(), max_requests=5, window_seconds=60)

        key = service._get_rate_limit_key("1.2.3.4", "/api/v1/verification/verify")
        mock_redis.setex.assert_awaited_once_with(key, 60, 1)
        mock_redis.incr.assert_not_called()

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_under_limit_increments(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "production"
        mock_redis = _make_redis(current="3")
        service.redis_client = mock_redis

        await service.check_rate_limit(_make_request(), max_requests=5)

        mock_redis.incr.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.track_rate_limit_hit")
    @patch("app.services.rate_limit_service.settings")
    async def test_over_limit_raises_with_retry_after(self, mock_settings, mock_track, service):
        mock_settings.ENVIRONMENT = "production"
        service.redis_client = _make_redis(current="5", ttl=17)

        with pytest.raises(RateLimitError) as exc_info:
            await service.check_rate_limit(_make_request(), max_requests=5)

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 17
        mock_track.assert_called_once_with("/api/v1/verification/verify")

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.track_rate_limit_hit")
    @patch("app.services.rate_limit_service.settings")
    async def test_retry_after_is_at_least_one(self, mock_settings, mock_track, service):
        mock_settings.ENVIRONMENT = "production"
        service.redis_client = _make_redis(current="5", ttl=-1)

        with pytest.raises(RateLimitError) as exc_info:
            await service.check_rate_limit(_make_request(), max_requests=5)

        assert exc_info.value.retry_after == 1

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_explicit_identifier_overrides_ip(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "production"
        mock_redis = _make_redis(current=None)
        service.redis_client = mock_redis

        await service.check_rate_limit(_make_request(), identifier="grad@example.com", window_seconds=30)

        key = service._get_rate_limit_key("grad@example.com", "/api/v1/verification/verify")
        mock_redis.setex.assert_awaited_once_with(key, 30, 1)

    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_fails_open_when_redis_down(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "production"
        mock_redis = _make_redis()
        mock_redis.get = AsyncMock(side_effect=redis.ConnectionError("refused"))
        service.redis_client = mock_redis

        # Should not raise
        await service.check_rate_limit(_make_request(), max_requests=1)
