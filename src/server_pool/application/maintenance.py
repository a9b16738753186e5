"""Tarefas periódicas do processo: poda da blacklist e recarga do cache.

As tarefas são criadas no startup e canceladas no shutdown. Uma falha em
uma execução é logada e a próxima execução acontece normalmente.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from server_pool.application.cache_engine import CacheEngine
from server_pool.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class MaintenanceScheduler:
    """Dispara poda da blacklist e ciclos de busca em intervalos fixos."""

    def __init__(
        self,
        engine: CacheEngine,
        prune_interval_seconds: float = 3600.0,
        refresh_interval_seconds: float = 300.0,
        fetch_on_startup: bool = True,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._engine = engine
        self._prune_interval = prune_interval_seconds
        self._refresh_interval = refresh_interval_seconds
        self._fetch_on_startup = fetch_on_startup
        self._sleep = sleep or asyncio.sleep
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Cria as tarefas periódicas (idempotente)."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._every(self._prune_interval, "blacklist_prune", self._prune),
                name="blacklist_prune",
            ),
            asyncio.create_task(
                self._every(
                    self._refresh_interval,
                    "cache_refresh",
                    self._refresh,
                    run_first=self._fetch_on_startup,
                ),
                name="cache_refresh",
            ),
        ]
        logger.info(
            "Manutenção agendada",
            extra={
                "prune_interval_seconds": self._prune_interval,
                "refresh_interval_seconds": self._refresh_interval,
                "fetch_on_startup": self._fetch_on_startup,
            },
        )

    async def stop(self) -> None:
        """Cancela as tarefas e aguarda o encerramento."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("Manutenção encerrada")

    async def _every(
        self,
        interval: float,
        job: str,
        action: Callable[[], Awaitable[Any]],
        run_first: bool = False,
    ) -> None:
        if not run_first:
            await self._sleep(interval)
        while True:
            await self.run_job(job, action)
            await self._sleep(interval)

    async def run_job(self, job: str, action: Callable[[], Awaitable[Any]]) -> Any:
        """Executa uma rodada isolando falhas."""
        try:
            return await action()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Falha em tarefa de manutenção",
                extra={"job": job, "error": type(exc).__name__},
            )
            return None

    async def _prune(self) -> int:
        return await self._engine.prune_blacklist()

    async def _refresh(self) -> Any:
        return await self._engine.fetch_bulk()
