"""Rotas HTTP da porta de entrada do pool de servidores."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from server_pool.api.dependencies import enforce_rate_limit, get_engine, get_settings
from server_pool.application.cache_engine import CacheEngine
from server_pool.config.settings import Settings
from server_pool.observability.logging import get_logger
from server_pool.observability.middleware import get_correlation_id

logger = get_logger(__name__)

router = APIRouter()

MAX_RANKED_LIMIT = 100


class MarkUsedRequest(BaseModel):
    """Corpo de POST /api/mark-used."""

    ids: list[str] = Field(default_factory=list, max_length=1000)


def _split_ids(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Healthcheck simples."""
    return {"status": "ok", "service": settings.service_name, "version": settings.version}


@router.get("/api/servers", dependencies=[Depends(enforce_rate_limit)])
async def ranked_servers(
    limit: int = Query(10, ge=1, le=MAX_RANKED_LIMIT),
    exclude: str | None = Query(None, description="Ids separados por vírgula"),
    engine: CacheEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Melhores instâncias para entrar agora (nunca acessa a rede)."""
    servers = engine.get_ranked_servers(limit, _split_ids(exclude))
    return {
        "servers": [record.to_document() for record in servers],
        "count": len(servers),
        "correlation_id": get_correlation_id(),
    }


@router.get("/api/cache-info")
async def cache_info(engine: CacheEngine = Depends(get_engine)) -> dict[str, Any]:
    return engine.get_cache_info().model_dump(by_alias=True)


@router.post("/api/refresh", dependencies=[Depends(enforce_rate_limit)])
async def refresh(engine: CacheEngine = Depends(get_engine)) -> dict[str, Any]:
    """Executa um ciclo de busca e responde quando ele termina."""
    result = await engine.refresh_now()
    return {
        "totalCached": result.total_cached,
        "added": result.added,
        "scanned": result.scanned,
        "durationMs": result.duration_ms,
        "pages": result.pages,
    }


@router.post("/api/mark-used", dependencies=[Depends(enforce_rate_limit)])
async def mark_used(
    body: MarkUsedRequest,
    engine: CacheEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Consumidor informa que entrou nas instâncias indicadas."""
    added = await engine.mark_used(body.ids)
    logger.info("mark_used_received", extra={"requested": len(body.ids), "added": added})
    return {"ok": True, "added": added, "correlation_id": get_correlation_id()}
