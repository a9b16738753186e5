"""Motor de cache: busca paginada, admissão, ranking e persistência.

Execução cooperativa em um único event loop. Não há paralelismo real: as
únicas suspensões são a resposta HTTP, os timers de espera e a escrita em
disco. Duas flags garantem no máximo um ciclo de busca e no máximo uma
escrita do documento de cache em andamento:

- ``_is_fetching``: um ciclo chamado durante outro retorna na hora
- ``_is_saving`` / ``_save_pending``: rajadas de saves colapsam em uma
  única escrita final, que sempre reflete o estado mais recente

Invariante: nenhum id presente na blacklist fica no cache. O expurgo roda
na entrada de cada ciclo, em toda leitura, em todo save e em cada
``mark_used``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

import httpx
from pydantic import ValidationError

from server_pool.application.blacklist import Blacklist
from server_pool.domain.cache_store import CacheStore
from server_pool.domain.models import (
    CacheInfo,
    CacheMetadata,
    FetchResult,
    FetchStats,
    ServerRecord,
)
from server_pool.domain.priority import compute_priority
from server_pool.infra import (
    JsonDocument,
    ServerListClient,
    create_http_client,
    create_server_list_client,
)
from server_pool.infra.server_list import SortOrder
from server_pool.observability.logging import get_logger

if TYPE_CHECKING:
    from server_pool.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

Admission = Literal["added", "updated", "rejected"]


@dataclass(frozen=True, slots=True)
class CycleLimits:
    """Limites e heurísticas de um ciclo de busca."""

    max_pages: int = 100
    max_cache_size: int = 5000
    min_players: int = 1
    default_capacity: int = 6
    max_record_age_seconds: float = 900.0
    base_page_delay_seconds: float = 5.0
    small_cache_delay_seconds: float = 1.0
    large_cache_delay_seconds: float = 1.2
    small_cache_threshold: int = 500
    incremental_save_every: int = 150
    max_empty_pages: int = 5
    max_cycle_errors: int = 10
    min_pages_at_target: int = 50
    diminishing_returns_pages: int = 30
    descending_pages_per_ten: int = 7


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _is_private(raw: dict[str, Any]) -> bool:
    """Instâncias VIP ou com código de acesso não são públicas."""
    return raw.get("accessCode") is not None or raw.get("vipServerId") is not None


class CacheEngine:
    """Dono exclusivo do CacheStore e único chamador do cliente remoto."""

    def __init__(
        self,
        client: ServerListClient,
        blacklist: Blacklist,
        store: CacheStore,
        document: JsonDocument,
        limits: CycleLimits | None = None,
        stats: FetchStats | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._client = client
        self._blacklist = blacklist
        self._store = store
        self._document = document
        self._limits = limits or CycleLimits()
        self._stats = stats if stats is not None else FetchStats()
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

        self._is_fetching = False
        self._is_saving = False
        self._save_pending = False
        self._prune_deferred = False
        self._background: set[asyncio.Task[Any]] = set()

        self._fetch_count = 0
        self._last_fetch_duration_ms: int | None = None
        self._last_updated: str | None = None
        self._total_cached = 0

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def blacklist(self) -> Blacklist:
        return self._blacklist

    @property
    def stats(self) -> FetchStats:
        return self._stats

    @property
    def limits(self) -> CycleLimits:
        return self._limits

    @property
    def is_fetching(self) -> bool:
        return self._is_fetching

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    # ------------------------------------------------------------------
    # Admissão
    # ------------------------------------------------------------------

    def admit(self, raw: dict[str, Any], now: float | None = None) -> Admission:
        """Aplica a política de admissão a uma observação bruta da API.

        Um id já presente é atualizado no lugar (contador de observações
        incrementado); se deixou de ter vaga, sai do cache.
        """
        server_id = raw.get("id")
        if not isinstance(server_id, str) or not server_id:
            return "rejected"
        if self._blacklist.contains(server_id):
            return "rejected"

        observed_at = self._clock() if now is None else now
        players = _as_int(raw.get("playing"), 0)
        capacity = _as_int(raw.get("maxPlayers"), 0) or self._limits.default_capacity

        existing = self._store.get(server_id)
        if existing is not None:
            existing.observe(players, capacity, observed_at)
            if not existing.is_joinable:
                self._store.remove(server_id)
                return "rejected"
            return "updated"

        if players < self._limits.min_players:
            return "rejected"
        if _is_private(raw):
            return "rejected"
        if players >= capacity or players < 0:
            return "rejected"
        if len(self._store) >= self._limits.max_cache_size:
            return "rejected"

        self._store.put(
            ServerRecord(
                id=server_id,
                observed_at=observed_at,
                players=players,
                capacity=capacity,
                priority=compute_priority(players, capacity),
                observation_count=1,
            )
        )
        return "added"

    # ------------------------------------------------------------------
    # Ciclo de busca
    # ------------------------------------------------------------------

    def _page_delay(self, pages_fetched: int) -> float:
        """Pausa antes da próxima página (freia menos enquanto o pool é pequeno)."""
        lim = self._limits
        if len(self._store) < lim.small_cache_threshold:
            return lim.small_cache_delay_seconds
        if pages_fetched % 5 == 0:
            return lim.base_page_delay_seconds
        return lim.large_cache_delay_seconds

    def _sort_order_for(self, page_index: int) -> SortOrder:
        """Alterna a ordenação: 7 de cada 10 páginas descendentes."""
        if page_index % 10 < self._limits.descending_pages_per_ten:
            return "Desc"
        return "Asc"

    async def fetch_bulk(self) -> FetchResult:
        """Executa um ciclo de busca paginada e salva o resultado.

        Se já existe um ciclo em andamento, retorna imediatamente com o
        tamanho atual e ``added = 0``.
        """
        if self._is_fetching:
            logger.info(
                "Ciclo de busca já em andamento, ignorando nova chamada",
                extra={"total_cached": len(self._store)},
            )
            return FetchResult(
                total_cached=len(self._store), added=0, scanned=0, duration_ms=0
            )

        self._is_fetching = True
        try:
            result = await self._run_cycle()
        finally:
            self._is_fetching = False

        await self._run_deferred_maintenance()
        await self.save()
        return result

    async def _run_cycle(self) -> FetchResult:
        lim = self._limits
        started = time.perf_counter()
        self._blacklist.purge_store()

        logger.info(
            "Iniciando ciclo de busca",
            extra={
                "place_id": self._client.place_id,
                "max_pages": lim.max_pages,
                "max_cache_size": lim.max_cache_size,
                "total_cached": len(self._store),
            },
        )

        cursor: str | None = None
        pages = added = scanned = 0
        empty_pages = errors = 0
        added_since_save = 0

        while pages < lim.max_pages:
            if pages > 0:
                await self._sleep(self._page_delay(pages))

            sort_order = self._sort_order_for(pages)
            page = await self._client.fetch_page(cursor, sort_order)
            pages += 1

            if page is None or not page.data:
                empty_pages += 1
                errors += 1
                logger.info(
                    "Página sem dados",
                    extra={
                        "page": pages,
                        "failed": page is None,
                        "empty_pages": empty_pages,
                        "errors": errors,
                    },
                )
                if empty_pages >= lim.max_empty_pages or errors >= lim.max_cycle_errors:
                    logger.warning(
                        "Ciclo interrompido por páginas vazias/erros",
                        extra={"empty_pages": empty_pages, "errors": errors},
                    )
                    break
                if page is not None:
                    if not page.next_page_cursor:
                        break
                    cursor = page.next_page_cursor
                continue

            empty_pages = 0
            now = self._clock()
            page_added = 0
            for raw in page.data:
                scanned += 1
                if self.admit(raw, now) == "added":
                    page_added += 1

            added += page_added
            added_since_save += page_added
            if added_since_save >= lim.incremental_save_every:
                added_since_save = 0
                self.request_save()

            logger.debug(
                "Página processada",
                extra={
                    "page": pages,
                    "sort_order": sort_order,
                    "page_added": page_added,
                    "total_cached": len(self._store),
                    "scanned": scanned,
                },
            )

            cursor = page.next_page_cursor
            if not cursor:
                logger.info("Sem mais páginas disponíveis", extra={"page": pages})
                break
            if len(self._store) >= lim.max_cache_size and pages >= lim.min_pages_at_target:
                logger.info("Alvo de tamanho atingido", extra={"page": pages})
                break
            if (
                page_added == 0
                and len(self._store) >= lim.small_cache_threshold
                and pages >= lim.diminishing_returns_pages
            ):
                logger.info("Retorno decrescente, encerrando ciclo", extra={"page": pages})
                break

        duration_ms = int((time.perf_counter() - started) * 1000)
        self._fetch_count += 1
        self._last_fetch_duration_ms = duration_ms
        self._total_cached = len(self._store)

        logger.info(
            "Ciclo de busca concluído",
            extra={
                "total_cached": self._total_cached,
                "added": added,
                "scanned": scanned,
                "pages": pages,
                "duration_ms": duration_ms,
            },
        )
        return FetchResult(
            total_cached=self._total_cached,
            added=added,
            scanned=scanned,
            duration_ms=duration_ms,
            pages=pages,
        )

    async def refresh_now(self) -> FetchResult:
        """Dispara um ciclo; o resultado chega quando o ciclo termina."""
        return await self.fetch_bulk()

    # ------------------------------------------------------------------
    # Limpeza e persistência
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Remove registros vetados, sem id, expirados ou sem vaga."""
        now = self._clock()
        max_age = self._limits.max_record_age_seconds
        removed = self._store.remove_where(
            lambda record: not record.id
            or self._blacklist.contains(record.id)
            or record.is_expired(now, max_age)
            or not record.is_joinable
        )
        if removed:
            logger.info("Limpeza do cache", extra={"removed": len(removed)})
        return len(removed)

    def _build_metadata(self) -> CacheMetadata:
        return CacheMetadata(
            last_updated=self._last_updated,
            place_id=self._client.place_id,
            total_count=len(self._store),
            fetch_count=self._fetch_count,
            last_fetch_duration_ms=self._last_fetch_duration_ms,
        )

    def snapshot_document(self) -> dict[str, Any]:
        """Limpa o cache e monta o documento persistido."""
        self.cleanup()
        self._last_updated = datetime.fromtimestamp(self._clock(), tz=UTC).isoformat()
        return {
            "servers": [record.to_document() for record in self._store],
            "metadata": self._build_metadata().model_dump(by_alias=True),
        }

    async def save(self) -> bool:
        """Salva o documento de cache, colapsando pedidos concorrentes.

        Um pedido que chega durante uma escrita apenas marca pendência; a
        escrita em andamento, ao terminar, grava mais uma vez com o estado
        mais recente.

        Returns:
            False se alguma escrita deste laço falhou. Pedidos colapsados
            retornam True; a falha chega a quem conduz o laço.
        """
        if self._is_saving:
            self._save_pending = True
            logger.debug("Save em andamento, pedido colapsado")
            return True

        self._is_saving = True
        ok = True
        try:
            while True:
                self._save_pending = False
                if await self._document.save(self.snapshot_document()):
                    logger.info(
                        "Cache salvo",
                        extra={"total_cached": len(self._store)},
                    )
                else:
                    ok = False
                if not self._save_pending:
                    break
        finally:
            self._is_saving = False
        return ok

    def request_save(self) -> None:
        """Agenda um save sem bloquear quem chamou."""
        task = asyncio.create_task(self.save())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def load_from_disk(self) -> int:
        """Carrega blacklist e cache; retorna o total de registros em cache."""
        self._blacklist.load_from_disk()
        self._store.clear()

        content = self._document.load()
        if content is None:
            return 0
        if not isinstance(content, dict) or not isinstance(content.get("servers"), list):
            logger.warning("Documento de cache com estrutura inválida, iniciando vazio")
            return 0

        metadata = self._load_metadata(content.get("metadata"))
        if metadata is not None and metadata.place_id != self._client.place_id:
            logger.warning(
                "Cache pertence a outro jogo, descartando servidores",
                extra={"cached_place_id": metadata.place_id, "place_id": self._client.place_id},
            )
            return 0

        skipped = 0
        for raw in content["servers"]:
            try:
                record = ServerRecord.from_document(raw)
            except (ValidationError, KeyError, TypeError, ValueError):
                skipped += 1
                continue
            self._store.put(record)

        removed = self.cleanup()
        self._total_cached = len(self._store)
        logger.info(
            "Cache carregado",
            extra={"loaded": len(self._store), "skipped": skipped, "removed": removed},
        )
        return len(self._store)

    def _load_metadata(self, raw: Any) -> CacheMetadata | None:
        if not isinstance(raw, dict):
            return None
        try:
            metadata = CacheMetadata.model_validate(raw)
        except ValidationError:
            logger.warning("Metadados do cache malformados, ignorando")
            return None
        self._fetch_count = metadata.fetch_count
        self._last_fetch_duration_ms = metadata.last_fetch_duration_ms
        self._last_updated = metadata.last_updated
        return metadata

    # ------------------------------------------------------------------
    # Leitura e consumo
    # ------------------------------------------------------------------

    def get_ranked_servers(
        self,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[ServerRecord]:
        """Retorna até ``limit`` instâncias, melhores primeiro.

        Ordem: prioridade, jogadores e recência, todos decrescentes (id como
        último desempate). A lista é uma cópia: alterações no cache depois da
        chamada não a afetam.
        """
        self._stats.cache_hits += 1
        self._blacklist.purge_store()
        if limit <= 0:
            return []

        excluded = {sid.casefold() for sid in exclude_ids if isinstance(sid, str)}
        now = self._clock()
        max_age = self._limits.max_record_age_seconds
        candidates = [
            record
            for record in self._store
            if record.id.casefold() not in excluded
            and not self._blacklist.contains(record.id)
            and not record.is_expired(now, max_age)
            and record.is_joinable
        ]
        candidates.sort(
            key=lambda r: (r.priority, r.players, r.observed_at, r.id), reverse=True
        )
        return [record.model_copy() for record in candidates[:limit]]

    def get_cache_info(self) -> CacheInfo:
        stats = self._stats.as_dict()
        stats["blacklisted"] = len(self._blacklist)
        return CacheInfo(
            count=len(self._store),
            last_updated=self._last_updated,
            place_id=self._client.place_id,
            fetch_count=self._fetch_count,
            last_fetch_duration_ms=self._last_fetch_duration_ms,
            is_fetching=self._is_fetching,
            stats=stats,
        )

    async def mark_used(self, server_ids: Iterable[str]) -> int:
        """Registra ids consumidos; retorna quantos entraram na blacklist."""
        before = len(self._store)
        added = await self._blacklist.mark_used(server_ids)
        self._blacklist.purge_store()
        if len(self._store) != before:
            self.request_save()
        return added

    # ------------------------------------------------------------------
    # Manutenção
    # ------------------------------------------------------------------

    async def prune_blacklist(self) -> int:
        """Poda a blacklist; adiada para o fim do ciclo se houver busca ativa."""
        if self._is_fetching:
            self._prune_deferred = True
            logger.info("Poda da blacklist adiada até o fim do ciclo de busca")
            return 0
        return await self._blacklist.prune_expired()

    async def _run_deferred_maintenance(self) -> None:
        if self._prune_deferred:
            self._prune_deferred = False
            await self._blacklist.prune_expired()

    async def aclose(self, final_save: bool = True) -> None:
        """Aguarda saves em segundo plano, grava o estado final e fecha o cliente."""
        if self._background:
            await asyncio.wait(set(self._background))
        if final_save:
            await self.save()
        await self._client.close()


def build_cycle_limits(settings: Settings) -> CycleLimits:
    return CycleLimits(
        max_pages=settings.max_pages,
        max_cache_size=settings.max_cache_size,
        min_players=settings.min_players,
        default_capacity=settings.default_capacity,
        max_record_age_seconds=settings.max_record_age_seconds,
        base_page_delay_seconds=settings.base_page_delay_seconds,
        incremental_save_every=settings.incremental_save_every,
    )


def create_cache_engine(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> CacheEngine:
    """Monta o motor com blacklist, cliente remoto e documentos.

    Args:
        settings: Configurações da aplicação
        transport: Transporte httpx alternativo (testes)
        clock: Relógio epoch em segundos (testes)
        sleep: Espera entre páginas (testes)
    """
    stats = FetchStats()
    store = CacheStore()
    http_client = create_http_client(settings, stats=stats, transport=transport)
    blacklist = Blacklist(
        JsonDocument(settings.blacklist_path, name="blacklist"),
        store,
        max_age_seconds=settings.blacklist_max_age_seconds,
        clock=clock,
    )
    engine = CacheEngine(
        create_server_list_client(settings, http_client),
        blacklist,
        store,
        JsonDocument(settings.cache_path, name="server_cache"),
        limits=build_cycle_limits(settings),
        stats=stats,
        clock=clock,
        sleep=sleep,
    )
    logger.info(
        "Motor de cache criado",
        extra={
            "place_id": settings.place_id,
            "cache_file": settings.cache_file,
            "blacklist_file": settings.blacklist_file,
        },
    )
    return engine
