"""Cliente da listagem paginada de servidores públicos do jogo alvo."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from server_pool.infra.http import HttpClient, HttpError
from server_pool.observability.logging import get_logger

if TYPE_CHECKING:
    from server_pool.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

SortOrder = Literal["Asc", "Desc"]


@dataclass(slots=True)
class ServerPage:
    """Uma página da listagem: observações brutas + cursor opcional."""

    data: list[dict[str, Any]] = field(default_factory=list)
    next_page_cursor: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> ServerPage:
        """Extrai a página do corpo JSON, ignorando entradas que não são objetos."""
        if not isinstance(payload, dict):
            raise HttpError("Corpo da página não é um objeto", status_code=200)
        raw_data = payload.get("data") or []
        if not isinstance(raw_data, list):
            raise HttpError("Campo data não é uma lista", status_code=200)
        cursor = payload.get("nextPageCursor")
        return cls(
            data=[item for item in raw_data if isinstance(item, dict)],
            next_page_cursor=cursor if isinstance(cursor, str) and cursor else None,
        )


class ServerListClient:
    """Busca páginas únicas da listagem pública.

    O retry por classe de falha fica no HttpClient; aqui apenas se monta a
    URL e se converte falha esgotada em ``None`` ("página vazia").
    """

    def __init__(
        self,
        http_client: HttpClient,
        endpoint: str,
        place_id: int,
        page_limit: int = 100,
        exclude_full_games: bool = True,
    ) -> None:
        self._http = http_client
        self._endpoint = endpoint
        self._place_id = place_id
        self._page_limit = page_limit
        self._exclude_full_games = exclude_full_games

    @property
    def place_id(self) -> int:
        return self._place_id

    def build_params(self, cursor: str | None, sort_order: SortOrder) -> dict[str, str]:
        """Monta a query da requisição (cursor só quando houver)."""
        params = {
            "sortOrder": sort_order,
            "limit": str(self._page_limit),
            "excludeFullGames": "true" if self._exclude_full_games else "false",
        }
        if cursor:
            params["cursor"] = cursor
        return params

    async def fetch_page(
        self,
        cursor: str | None = None,
        sort_order: SortOrder = "Desc",
    ) -> ServerPage | None:
        """Busca uma página; retorna None quando todas as tentativas falham."""
        params = self.build_params(cursor, sort_order)
        try:
            return await self._http.get_json(
                self._endpoint, parse=ServerPage.from_payload, params=params
            )
        except HttpError as exc:
            logger.warning(
                "Página de servidores indisponível",
                extra={
                    "place_id": self._place_id,
                    "sort_order": sort_order,
                    "has_cursor": cursor is not None,
                    "failure_kind": exc.kind,
                    "status_code": exc.status_code,
                },
            )
            return None

    async def close(self) -> None:
        await self._http.close()


def create_server_list_client(settings: Settings, http_client: HttpClient) -> ServerListClient:
    """Factory a partir das configurações."""
    return ServerListClient(
        http_client,
        endpoint=settings.servers_endpoint,
        place_id=settings.place_id,
        page_limit=settings.page_limit,
        exclude_full_games=settings.exclude_full_games,
    )
