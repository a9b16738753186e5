"""Testes unitários para infra/http.py.

Valida retry por classe de falha, orçamentos independentes e contadores.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from server_pool.config.settings import Settings
from server_pool.domain.models import FetchStats
from server_pool.infra.http import (
    HttpClient,
    HttpClientConfig,
    HttpError,
    RetryPolicy,
    _calculate_backoff,
    create_http_client,
)

URL = "https://games.example/v1/games/1/servers/Public"


def _sequence_transport(responses: list[object]) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """Transporte que responde na ordem dada; exceções são levantadas."""
    seen: list[httpx.Request] = []
    pending = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        item = pending.pop(0)
        if isinstance(item, Exception):
            raise item
        return item  # type: ignore[return-value]

    return httpx.MockTransport(handler), seen


class TestRetryPolicy:
    """Tabelas de espera."""

    def test_default_rate_limit_table(self) -> None:
        policy = HttpClientConfig().policies["rate_limited"]
        assert [policy.delay_for(n) for n in range(5)] == [15.0, 30.0, 60.0, 120.0, 120.0]

    def test_fixed_delays(self) -> None:
        config = HttpClientConfig()
        assert config.policies["timeout"].delay_for(2) == 3.0
        assert config.policies["error"].delay_for(1) == 2.0

    def test_calculate_backoff_caps(self) -> None:
        assert _calculate_backoff(0, 1.0, 10.0) == 1.0
        assert _calculate_backoff(3, 1.0, 10.0) == 8.0
        assert _calculate_backoff(4, 1.0, 10.0) == 10.0


class TestHttpError:
    def test_default_kind_is_error(self) -> None:
        error = HttpError("boom", status_code=500)
        assert error.kind == "error"
        assert error.status_code == 500
        assert str(error) == "boom"


class TestHttpClientGetJson:
    """Retry classificado em get_json."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        transport, seen = _sequence_transport([httpx.Response(200, json={"data": []})])
        stats = FetchStats()
        client = HttpClient(stats=stats, transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_json(URL) == {"data": []}

        sleep.assert_not_called()
        assert len(seen) == 1
        assert stats.requests == 1
        assert stats.errors == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limited_then_success(self) -> None:
        transport, seen = _sequence_transport(
            [httpx.Response(429), httpx.Response(429), httpx.Response(200, json={"ok": 1})]
        )
        stats = FetchStats()
        client = HttpClient(stats=stats, transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_json(URL) == {"ok": 1}

        assert [c.args[0] for c in sleep.call_args_list] == [15.0, 30.0]
        assert len(seen) == 3
        assert stats.rate_limited == 2
        assert stats.consecutive_errors == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit_budget_exhausted(self) -> None:
        transport, seen = _sequence_transport([httpx.Response(429)] * 6)
        client = HttpClient(transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(HttpError) as exc_info:
                await client.get_json(URL)

        assert exc_info.value.kind == "rate_limited"
        assert len(seen) == 6
        assert [c.args[0] for c in sleep.call_args_list] == [15.0, 30.0, 60.0, 120.0, 120.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_budget(self) -> None:
        transport, seen = _sequence_transport([httpx.ReadTimeout("slow")] * 4)
        client = HttpClient(transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(HttpError) as exc_info:
                await client.get_json(URL)

        assert exc_info.value.kind == "timeout"
        assert len(seen) == 4
        assert [c.args[0] for c in sleep.call_args_list] == [3.0, 3.0, 3.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_unexpected_status_uses_error_budget(self) -> None:
        transport, seen = _sequence_transport([httpx.Response(503)] * 3)
        client = HttpClient(transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(HttpError) as exc_info:
                await client.get_json(URL)

        assert exc_info.value.kind == "error"
        assert exc_info.value.status_code == 503
        assert len(seen) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 2.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json_is_error(self) -> None:
        transport, _ = _sequence_transport(
            [httpx.Response(200, content=b"<html>"), httpx.Response(200, json=[1])]
        )
        client = HttpClient(transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await client.get_json(URL) == [1]
        await client.close()

    @pytest.mark.asyncio
    async def test_budgets_are_independent(self) -> None:
        """Falhas de classes diferentes não consomem o orçamento umas das outras."""
        transport, seen = _sequence_transport(
            [
                httpx.Response(500),
                httpx.Response(500),
                httpx.ReadTimeout("slow"),
                httpx.Response(429),
                httpx.Response(200, json={}),
            ]
        )
        client = HttpClient(transport=transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_json(URL) == {}

        assert len(seen) == 5
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 2.0, 3.0, 15.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_error_is_error_kind(self) -> None:
        transport, _ = _sequence_transport([httpx.ConnectError("refused")])
        config = HttpClientConfig(policies={**HttpClientConfig().policies, "error": RetryPolicy(0, 0.0)})
        client = HttpClient(config, transport=transport)

        with pytest.raises(HttpError) as exc_info:
            await client.get_json(URL)
        assert exc_info.value.kind == "error"
        await client.close()

    @pytest.mark.asyncio
    async def test_parse_failure_consumes_error_budget(self) -> None:
        transport, seen = _sequence_transport(
            [httpx.Response(200, json=[]), httpx.Response(200, json={"ok": True})]
        )
        stats = FetchStats()
        client = HttpClient(stats=stats, transport=transport)

        def parse(payload: object) -> object:
            if not isinstance(payload, dict):
                raise HttpError("formato inesperado", status_code=200)
            return payload

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_json(URL, parse=parse) == {"ok": True}

        assert len(seen) == 2
        assert [c.args[0] for c in sleep.call_args_list] == [2.0]
        assert stats.errors == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_passes_query_params(self) -> None:
        transport, seen = _sequence_transport([httpx.Response(200, json={})])
        client = HttpClient(transport=transport)

        await client.get_json(URL, params={"limit": "100"})
        assert seen[0].url.params["limit"] == "100"
        await client.close()


class TestHttpClientLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self) -> None:
        transport, _ = _sequence_transport([httpx.Response(200, json={})])
        async with HttpClient(transport=transport) as client:
            await client.get_json(URL)
            inner = client._client
        assert inner is not None
        assert inner.is_closed

    @pytest.mark.asyncio
    async def test_close_without_use(self) -> None:
        client = HttpClient()
        await client.close()


class TestCreateHttpClient:
    """Factory a partir de Settings."""

    def test_policies_from_settings(self) -> None:
        settings = Settings(
            rate_limit_max_retries=2,
            rate_limit_backoff_base_seconds=1.0,
            rate_limit_backoff_max_seconds=4.0,
            timeout_max_retries=1,
            error_max_retries=0,
        )
        client = create_http_client(settings)
        policies = client._config.policies

        assert policies["rate_limited"].max_retries == 2
        assert policies["rate_limited"].delay_for(5) == 4.0
        assert policies["timeout"].max_retries == 1
        assert policies["error"].max_retries == 0

    def test_shares_stats(self) -> None:
        stats = FetchStats()
        client = create_http_client(Settings(), stats=stats)
        assert client.stats is stats
