"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from server_pool.application.cache_engine import CacheEngine
from server_pool.config.settings import Settings
from server_pool.domain.rate_limit import FixedWindowRateLimiter


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_engine(request: Request) -> CacheEngine:
    """Retorna o motor de cache ativo."""

    return request.app.state.engine


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    """Retorna o rate limiter da porta HTTP."""

    return request.app.state.rate_limiter


async def enforce_rate_limit(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    """Aplica o rate limit por chamador (IP do cliente)."""
    caller = request.client.host if request.client else "unknown"
    result = limiter.check_and_record(caller)
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="rate_limited",
            headers={"Retry-After": str(result.retry_after_seconds)},
        )
