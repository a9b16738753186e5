"""Mapa id -> ServerRecord mantido pelo motor de cache."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator

from server_pool.domain.models import ServerRecord


def _key(server_id: str) -> str:
    return server_id.casefold()


class CacheStore:
    """Armazenamento em memória das instâncias candidatas.

    A API remota devolve o mesmo id com capitalização inconsistente, então
    a chave é o id normalizado (casefold); o registro guarda o id como foi
    observado pela primeira vez. Só o motor de cache (e a blacklist, ao
    expurgar ids consumidos) altera o conteúdo.
    """

    def __init__(self) -> None:
        self._records: dict[str, ServerRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, server_id: object) -> bool:
        return isinstance(server_id, str) and _key(server_id) in self._records

    def __iter__(self) -> Iterator[ServerRecord]:
        return iter(list(self._records.values()))

    def get(self, server_id: str) -> ServerRecord | None:
        return self._records.get(_key(server_id))

    def put(self, record: ServerRecord) -> None:
        self._records[_key(record.id)] = record

    def remove(self, server_id: str) -> bool:
        return self._records.pop(_key(server_id), None) is not None

    def ids(self) -> list[str]:
        return [record.id for record in self._records.values()]

    def clear(self) -> None:
        self._records.clear()

    def purge_ids(self, server_ids: Iterable[str]) -> int:
        """Remove ids sem diferenciar maiúsculas/minúsculas."""
        removed = 0
        for server_id in server_ids:
            if server_id and self.remove(server_id):
                removed += 1
        return removed

    def remove_where(self, predicate: Callable[[ServerRecord], bool]) -> list[str]:
        """Remove registros que satisfazem o predicado; retorna os ids removidos."""
        doomed = [key for key, record in self._records.items() if predicate(record)]
        return [self._records.pop(key).id for key in doomed]
