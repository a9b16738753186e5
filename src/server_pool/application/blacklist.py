"""Blacklist de instâncias já consumidas.

Um id que entra aqui é um veto permanente (até envelhecer além da idade
máxima): nunca volta a ser admitido no cache e qualquer registro com o
mesmo id é removido imediatamente.

Documento persistido: lista de ``{"id": str, "timestamp": epoch_ms}``.
Na leitura também se aceita o formato legado, uma lista simples de ids
(que recebem o horário do carregamento). A escrita usa sempre o formato
com timestamp.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from server_pool.domain.cache_store import CacheStore
from server_pool.domain.models import from_epoch_ms, to_epoch_ms
from server_pool.infra.persistence import JsonDocument
from server_pool.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)


@dataclass(slots=True)
class BlacklistEntry:
    """Id vetado e o momento (epoch s) em que entrou na blacklist."""

    id: str
    blacklisted_at: float

    def to_document(self) -> dict[str, Any]:
        return {"id": self.id, "timestamp": to_epoch_ms(self.blacklisted_at)}


def decode_entry(item: Any, now: float, max_age_seconds: float) -> BlacklistEntry | None:
    """Decodifica uma entrada em qualquer dos dois formatos aceitos.

    Returns:
        A entrada, ou None se malformada ou já expirada.
    """
    if isinstance(item, str):
        server_id = item.strip()
        return BlacklistEntry(id=server_id, blacklisted_at=now) if server_id else None

    if not isinstance(item, dict):
        return None

    server_id = item.get("id")
    timestamp = item.get("timestamp")
    if not isinstance(server_id, str) or not server_id.strip():
        return None
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return None

    blacklisted_at = from_epoch_ms(timestamp)
    if now - blacklisted_at >= max_age_seconds:
        return None
    return BlacklistEntry(id=server_id.strip(), blacklisted_at=blacklisted_at)


class Blacklist:
    """Mapa id -> momento da exclusão, com expurgo no cache associado.

    A comparação de ids ignora maiúsculas/minúsculas.
    """

    def __init__(
        self,
        document: JsonDocument,
        store: CacheStore,
        max_age_seconds: float = 86400.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._document = document
        self._store = store
        self._max_age = max_age_seconds
        self._clock = clock or time.time
        self._entries: dict[str, BlacklistEntry] = {}
        self._save_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, server_id: object) -> bool:
        return isinstance(server_id, str) and self.contains(server_id)

    @property
    def max_age_seconds(self) -> float:
        return self._max_age

    def contains(self, server_id: str) -> bool:
        return server_id.casefold() in self._entries

    def folded_ids(self) -> set[str]:
        """Ids vetados normalizados (casefold)."""
        return set(self._entries)

    def entries(self) -> list[BlacklistEntry]:
        return list(self._entries.values())

    def purge_store(self) -> int:
        """Remove do cache todo registro cujo id está vetado."""
        if not self._entries:
            return 0
        removed = self._store.remove_where(lambda record: record.id.casefold() in self._entries)
        if removed:
            logger.info(
                "Registros vetados removidos do cache",
                extra={"removed": len(removed)},
            )
        return len(removed)

    async def mark_used(self, server_ids: Iterable[str]) -> int:
        """Veta ids consumidos e expurga-os do cache.

        Returns:
            Quantidade de ids que não estavam na blacklist.
        """
        cleaned = {sid.strip() for sid in server_ids if isinstance(sid, str) and sid.strip()}
        if not cleaned:
            return 0

        now = self._clock()
        added = 0
        for server_id in cleaned:
            key = server_id.casefold()
            if key not in self._entries:
                self._entries[key] = BlacklistEntry(id=server_id, blacklisted_at=now)
                added += 1

        purged = self._store.purge_ids(cleaned)

        logger.info(
            "Ids marcados como usados",
            extra={
                "requested": len(cleaned),
                "added": added,
                "purged_from_cache": purged,
                "sample": [short_id(sid) for sid in sorted(cleaned)[:3]],
            },
        )

        if added:
            await self.save()
        return added

    async def prune_expired(self, max_age_seconds: float | None = None) -> int:
        """Remove entradas mais velhas que a idade máxima; persiste se houve mudança."""
        max_age = self._max_age if max_age_seconds is None else max_age_seconds
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items() if now - entry.blacklisted_at > max_age
        ]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(
                "Entradas expiradas removidas da blacklist",
                extra={"removed": len(expired), "remaining": len(self._entries)},
            )
            await self.save()
        return len(expired)

    def load_from_disk(self) -> int:
        """Carrega o documento aceitando os dois formatos; retorna o total carregado."""
        content = self._document.load()
        self._entries.clear()
        if content is None:
            return 0

        if not isinstance(content, list):
            logger.warning(
                "Documento de blacklist com estrutura inválida, ignorando",
                extra={"type": type(content).__name__},
            )
            return 0

        now = self._clock()
        dropped = 0
        for item in content:
            entry = decode_entry(item, now, self._max_age)
            if entry is None:
                dropped += 1
                continue
            key = entry.id.casefold()
            current = self._entries.get(key)
            if current is None or entry.blacklisted_at > current.blacklisted_at:
                self._entries[key] = entry

        logger.info(
            "Blacklist carregada",
            extra={"loaded": len(self._entries), "dropped": dropped},
        )
        return len(self._entries)

    def to_document(self) -> list[dict[str, Any]]:
        return [entry.to_document() for entry in self._entries.values()]

    async def save(self) -> bool:
        """Persiste a blacklist inteira (sempre no formato com timestamp)."""
        async with self._save_lock:
            return await self._document.save(self.to_document())
