"""
Tests unitarios para el cliente de Airtable y el rate limiter compartido.

Verifica:
- Paginación por offset y muestra con maxRecords
- Reintentos en red / 429 / 5xx y fallo inmediato en 4xx
- Que el limiter por servicio acota el throughput entre tareas concurrentes
"""
from __future__ import annotations

import asyncio

import httpx
import pytest

from app.infrastructure.external.airtable_sync.airtable_client import (
    AIRTABLE_SERVICE,
    AirtableClient,
    AirtableCredentials,
    RetryPolicy,
)
from app.infrastructure.external.airtable_sync.rate_limiter import RateLimiterRegistry
from app.shared.exceptions.sync import AirtableApiError


def _records(n: int) -> list:
    return [{"id": f"rec{i}", "fields": {"Form ID": f"a{i}"}} for i in range(n)]


class TestPagination:
    """Tests para iter_records / fetch_table / fetch_sample."""

    @pytest.mark.asyncio
    async def test_fetch_table_follows_offset(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(5))

        records = await airtable_client.fetch_table("forms")

        assert [r.record_id for r in records] == ["rec0", "rec1", "rec2", "rec3", "rec4"]
        requests = fake_airtable.requests_for("forms")
        assert len(requests) == 3
        assert "offset" not in requests[0].url.params
        assert requests[1].url.params["offset"] == "2"
        assert requests[0].url.params["pageSize"] == "2"

    @pytest.mark.asyncio
    async def test_fetch_table_sends_bearer_token(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(1))

        await airtable_client.fetch_table("forms")

        request = fake_airtable.requests_for("forms")[0]
        assert request.headers["Authorization"] == "Bearer patTEST"
        assert request.url.path == "/v0/appTEST/forms"

    @pytest.mark.asyncio
    async def test_fetch_sample_defaults_to_one_page(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(5))

        sample = await airtable_client.fetch_sample("forms")

        assert [rec.fields for rec in sample] == [{"Form ID": "a0"}, {"Form ID": "a1"}]
        assert len(fake_airtable.requests_for("forms")) == 1
        assert fake_airtable.requests_for("forms")[0].url.params["maxRecords"] == "2"

    @pytest.mark.asyncio
    async def test_fetch_sample_with_explicit_size(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(5))

        sample = await airtable_client.fetch_sample("forms", max_records=1)

        assert len(sample) == 1
        assert fake_airtable.requests_for("forms")[0].url.params["maxRecords"] == "1"

    @pytest.mark.asyncio
    async def test_empty_table(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", [])

        assert await airtable_client.fetch_table("forms") == []


class TestRetries:
    """Tests para la política de reintentos de request_json."""

    @pytest.mark.asyncio
    async def test_retries_429_then_succeeds(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(1))
        fake_airtable.scripted_errors["forms"] = [429]

        records = await airtable_client.fetch_table("forms")

        assert len(records) == 1
        assert len(fake_airtable.requests_for("forms")) == 2

    @pytest.mark.asyncio
    async def test_5xx_exhausts_retries(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(1))
        fake_airtable.scripted_errors["forms"] = [503, 502, 500]

        with pytest.raises(AirtableApiError) as exc_info:
            await airtable_client.fetch_table("forms")

        # max_retries=2 -> 3 intentos
        assert len(fake_airtable.requests_for("forms")) == 3
        assert exc_info.value.transient is True
        assert exc_info.value.upstream_status == 500
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_4xx_fails_without_retry(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("forms", _records(1))
        fake_airtable.scripted_errors["forms"] = [403]

        with pytest.raises(AirtableApiError) as exc_info:
            await airtable_client.fetch_table("forms")

        assert len(fake_airtable.requests_for("forms")) == 1
        assert exc_info.value.transient is False
        assert exc_info.value.upstream_status == 403

    @pytest.mark.asyncio
    async def test_unknown_table_is_permanent_error(self, airtable_client) -> None:
        with pytest.raises(AirtableApiError) as exc_info:
            await airtable_client.fetch_table("missing")

        assert exc_info.value.upstream_status == 404

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"records": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = AirtableClient(
                AirtableCredentials(token="t", base_id="app"),
                limiters=RateLimiterRegistry(default_rate=1000),
                http_client=http,
                retry=RetryPolicy(max_retries=1, base_delay_s=0, max_delay_s=0, jitter_ratio=0),
            )
            assert await client.fetch_table("forms") == []

        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_network_error_exhausted_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timeout", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = AirtableClient(
                AirtableCredentials(token="t", base_id="app"),
                limiters=RateLimiterRegistry(default_rate=1000),
                http_client=http,
                retry=RetryPolicy(max_retries=1, base_delay_s=0, max_delay_s=0, jitter_ratio=0),
            )
            with pytest.raises(AirtableApiError) as exc_info:
                await client.fetch_table("forms")

        assert exc_info.value.transient is True
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)

    def test_retry_after_header_is_capped(self) -> None:
        client = AirtableClient(
            AirtableCredentials(token="t", base_id="app"),
            limiters=RateLimiterRegistry(),
            http_client=httpx.AsyncClient(),
            retry=RetryPolicy(max_delay_s=20.0),
        )

        assert client._sleep_for(httpx.Response(429, headers={"Retry-After": "3"}), 0) == 3.0
        assert client._sleep_for(httpx.Response(429, headers={"Retry-After": "120"}), 0) == 20.0


class TestRetryPolicy:
    def test_backoff_is_exponential_without_jitter(self) -> None:
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=20.0, jitter_ratio=0)

        assert [policy.backoff(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_backoff_is_capped(self) -> None:
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=5.0, jitter_ratio=0.3)

        assert policy.backoff(10) == 5.0

    def test_jitter_stays_within_ratio(self) -> None:
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=100.0, jitter_ratio=0.3)

        for _ in range(50):
            assert 4.0 <= policy.backoff(2) <= 4.0 * 1.3


class TestRateLimiter:
    """Tests para RateLimiterRegistry y su uso desde el cliente."""

    def test_registry_returns_same_limiter_per_service(self) -> None:
        registry = RateLimiterRegistry(default_rate=5)

        assert registry.get("airtable") is registry.get("airtable")
        assert registry.get("airtable") is not registry.get("other")
        assert registry.get("other").max_rate == 5

    def test_clients_share_service_limiter(self) -> None:
        registry = RateLimiterRegistry(default_rate=5)
        http = httpx.AsyncClient()
        first = AirtableClient(AirtableCredentials("t", "a"), limiters=registry, http_client=http)
        second = AirtableClient(AirtableCredentials("t", "b"), limiters=registry, http_client=http)

        assert first._limiter is second._limiter is registry.get(AIRTABLE_SERVICE)

    @pytest.mark.asyncio
    async def test_concurrent_requests_respect_rate(self) -> None:
        """20 requests concurrentes a 5 req/s: el burst inicial es 5, el resto espera ~3s."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"records": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = AirtableClient(
                AirtableCredentials(token="t", base_id="app"),
                limiters=RateLimiterRegistry(default_rate=5),
                http_client=http,
            )
            loop = asyncio.get_running_loop()
            started = loop.time()
            await asyncio.gather(*(client.fetch_sample("forms") for _ in range(20)))
            elapsed = loop.time() - started

        assert elapsed >= 2.99  # 15 esperas de 0.2s (tolerancia del reloj)
