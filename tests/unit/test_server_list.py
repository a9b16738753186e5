"""Testes para infra/server_list.py."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from server_pool.config.settings import Settings
from server_pool.domain.models import FetchStats
from server_pool.infra.http import HttpClient, HttpError
from server_pool.infra.server_list import (
    ServerListClient,
    ServerPage,
    create_server_list_client,
)

ENDPOINT = "https://games.example/v1/games/1/servers/Public"


class TestServerPage:
    """Extração da página a partir do corpo JSON."""

    def test_from_payload(self) -> None:
        page = ServerPage.from_payload(
            {"data": [{"id": "a"}, "junk", {"id": "b"}], "nextPageCursor": "c1"}
        )
        assert [item["id"] for item in page.data] == ["a", "b"]
        assert page.next_page_cursor == "c1"

    def test_missing_fields(self) -> None:
        page = ServerPage.from_payload({})
        assert page.data == []
        assert page.next_page_cursor is None

    def test_empty_cursor_is_none(self) -> None:
        assert ServerPage.from_payload({"data": [], "nextPageCursor": ""}).next_page_cursor is None

    @pytest.mark.parametrize("payload", [[], "x", {"data": "nope"}])
    def test_bad_shape_raises(self, payload: object) -> None:
        with pytest.raises(HttpError):
            ServerPage.from_payload(payload)


class TestServerListClient:
    """Montagem da requisição e tradução de falhas em None."""

    def _client(self, handler) -> ServerListClient:
        http = HttpClient(transport=httpx.MockTransport(handler))
        return ServerListClient(http, ENDPOINT, place_id=1, page_limit=100)

    def test_build_params_without_cursor(self) -> None:
        client = ServerListClient(HttpClient(), ENDPOINT, place_id=1)
        assert client.build_params(None, "Desc") == {
            "sortOrder": "Desc",
            "limit": "100",
            "excludeFullGames": "true",
        }

    def test_build_params_with_cursor(self) -> None:
        client = ServerListClient(HttpClient(), ENDPOINT, place_id=1, exclude_full_games=False)
        params = client.build_params("abc", "Asc")
        assert params["cursor"] == "abc"
        assert params["sortOrder"] == "Asc"
        assert params["excludeFullGames"] == "false"

    @pytest.mark.asyncio
    async def test_fetch_page_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"data": [{"id": "s1", "playing": 2}], "nextPageCursor": "n"}
            )

        client = self._client(handler)
        page = await client.fetch_page("prev", "Asc")

        assert page is not None
        assert page.data[0]["id"] == "s1"
        assert page.next_page_cursor == "n"
        assert seen[0].url.params["cursor"] == "prev"
        assert seen[0].url.params["sortOrder"] == "Asc"
        await client.close()

    @pytest.mark.asyncio
    async def test_exhausted_failure_is_none(self) -> None:
        client = self._client(lambda request: httpx.Response(500))
        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await client.fetch_page() is None
        await client.close()

    @pytest.mark.asyncio
    async def test_wrong_shape_is_retried_as_error(self) -> None:
        """Corpo 200 fora do formato consome o orçamento de erro genérico."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[1, 2])

        stats = FetchStats()
        http = HttpClient(stats=stats, transport=httpx.MockTransport(handler))
        client = ServerListClient(http, ENDPOINT, place_id=1)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.fetch_page() is None

        assert len(seen) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 2.0]
        assert stats.errors == 3
        assert stats.consecutive_errors == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_wrong_shape_then_valid_page(self) -> None:
        bodies = [{"data": "nope"}, {"data": [{"id": "s1"}]}]
        client = self._client(lambda request: httpx.Response(200, json=bodies.pop(0)))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            page = await client.fetch_page()

        assert page is not None
        assert page.data == [{"id": "s1"}]
        await client.close()


def test_factory_uses_settings() -> None:
    settings = Settings(place_id=42, page_limit=25)
    client = create_server_list_client(settings, HttpClient())
    assert client.place_id == 42
    assert client.build_params(None, "Desc")["limit"] == "25"
