"""Modelos de domínio (contratos principais do pool de servidores).

Tempos em memória são epoch em segundos (``time.time()``); nos documentos
persistidos são epoch em milissegundos, formato compartilhado com
implantações anteriores.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from server_pool.domain.priority import compute_priority


def to_epoch_ms(seconds: float) -> int:
    """Converte epoch em segundos para milissegundos inteiros."""
    return int(round(seconds * 1000))


def from_epoch_ms(milliseconds: float) -> float:
    """Converte epoch em milissegundos para segundos."""
    return float(milliseconds) / 1000.0


class ServerRecord(BaseModel):
    """Uma instância remota observada e elegível para entrada."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    observed_at: float = Field(alias="observedAt")
    players: int
    capacity: int
    priority: int = Field(default=1, ge=1, le=5)
    observation_count: int = Field(default=1, ge=1, alias="observationCount")

    @property
    def is_joinable(self) -> bool:
        """True enquanto ainda há vaga e os números fazem sentido."""
        return 0 <= self.players < self.capacity

    def is_expired(self, now: float, max_age_seconds: float) -> bool:
        return now - self.observed_at > max_age_seconds

    def observe(self, players: int, capacity: int, observed_at: float) -> None:
        """Atualiza a observação no lugar (id permanece)."""
        self.players = players
        self.capacity = capacity
        self.observed_at = observed_at
        self.priority = compute_priority(players, capacity)
        self.observation_count += 1

    def to_document(self) -> dict[str, Any]:
        """Serializa no formato do documento de cache."""
        data = self.model_dump(by_alias=True)
        data["observedAt"] = to_epoch_ms(self.observed_at)
        return data

    @classmethod
    def from_document(cls, raw: dict[str, Any]) -> ServerRecord:
        """Reconstrói a partir do documento de cache.

        A prioridade é recalculada: é função pura de jogadores/capacidade.

        Raises:
            pydantic.ValidationError, KeyError, TypeError, ValueError:
                se a entrada estiver malformada.
        """
        data = dict(raw)
        data["observedAt"] = from_epoch_ms(raw["observedAt"])
        record = cls.model_validate(data)
        record.priority = compute_priority(record.players, record.capacity)
        return record


class CacheMetadata(BaseModel):
    """Resumo escalar recalculado a cada save (apenas observabilidade)."""

    model_config = ConfigDict(populate_by_name=True)

    last_updated: str | None = Field(default=None, alias="lastUpdated")
    place_id: int = Field(alias="placeId")
    total_count: int = Field(default=0, alias="totalCount")
    fetch_count: int = Field(default=0, alias="fetchCount")
    last_fetch_duration_ms: int | None = Field(default=None, alias="lastFetchDuration")


class CacheInfo(BaseModel):
    """Visão do estado do cache exposta à porta HTTP."""

    model_config = ConfigDict(populate_by_name=True)

    count: int
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    place_id: int = Field(alias="placeId")
    fetch_count: int = Field(alias="fetchCount")
    last_fetch_duration_ms: int | None = Field(default=None, alias="lastFetchDuration")
    is_fetching: bool = Field(alias="isFetching")
    stats: dict[str, int] = Field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class FetchResult:
    """Resultado de um ciclo de busca em massa."""

    total_cached: int
    added: int
    scanned: int
    duration_ms: int
    pages: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class FetchStats:
    """Contadores vitalícios de requisições e leituras."""

    requests: int = 0
    errors: int = 0
    rate_limited: int = 0
    consecutive_errors: int = 0
    cache_hits: int = 0

    def record_success(self) -> None:
        self.requests += 1
        self.consecutive_errors = 0

    def record_failure(self, rate_limited: bool = False) -> None:
        self.requests += 1
        self.errors += 1
        self.consecutive_errors += 1
        if rate_limited:
            self.rate_limited += 1

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
