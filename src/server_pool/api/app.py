"""Fábrica da aplicação FastAPI (porta HTTP do pool de servidores)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from server_pool.api.routes import router
from server_pool.application.cache_engine import CacheEngine, create_cache_engine
from server_pool.application.maintenance import MaintenanceScheduler
from server_pool.config import Settings, get_settings
from server_pool.domain.rate_limit import FixedWindowRateLimiter
from server_pool.observability.logging import configure_logging, get_logger
from server_pool.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Carrega estado no startup; cancela tarefas e grava estado no shutdown."""
    engine: CacheEngine = app.state.engine
    scheduler: MaintenanceScheduler = app.state.scheduler

    engine.load_from_disk()
    scheduler.start()
    logger.info("server_pool_started", extra={"cached": len(engine.store)})
    try:
        yield
    finally:
        await scheduler.stop()
        await engine.aclose()
        logger.info("server_pool_stopped")


def create_app(
    settings: Settings | None = None,
    engine: CacheEngine | None = None,
) -> FastAPI:
    """Cria a aplicação FastAPI."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name, settings.place_id)

    validation_errors: list[str] = []
    validation_errors.extend(settings.validate_fetch_config())
    validation_errors.extend(settings.validate_schedule_config())
    validation_errors.extend(settings.validate_paths())

    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(router)

    engine = engine or create_cache_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.scheduler = MaintenanceScheduler(
        engine,
        prune_interval_seconds=settings.blacklist_prune_interval_seconds,
        refresh_interval_seconds=settings.refresh_interval_seconds,
        fetch_on_startup=settings.fetch_on_startup,
    )
    app.state.rate_limiter = FixedWindowRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    return app


app = create_app()
