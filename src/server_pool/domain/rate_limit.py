"""Rate limit por chamador para a porta HTTP (janela fixa).

Cada chamador tem um contador que zera quando a janela corrente termina.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from server_pool.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass(slots=True)
class RateLimitResult:
    """Resultado da verificação de rate limit."""

    allowed: bool
    request_count: int
    limit: int
    window_seconds: int
    retry_after_seconds: int


class FixedWindowRateLimiter:
    """Rate limiter em memória, janela fixa por chamador."""

    def __init__(self, limit: int = 60, window_seconds: int = 60) -> None:
        self._limit = limit
        self._window = window_seconds
        self._windows: dict[str, tuple[float, int]] = {}

    def check_and_record(self, caller_id: str, timestamp: float | None = None) -> RateLimitResult:
        """Registra a requisição e informa se está dentro do limite."""
        now = time.time() if timestamp is None else timestamp
        self._evict_stale(now)

        window_start, count = self._windows.get(caller_id, (now, 0))
        if now - window_start >= self._window:
            window_start, count = now, 0

        count += 1
        self._windows[caller_id] = (window_start, count)
        allowed = count <= self._limit
        retry_after = max(0, int(window_start + self._window - now))

        if not allowed:
            logger.warning(
                "Rate limit excedido",
                extra={
                    "caller": caller_id[:16],
                    "request_count": count,
                    "limit": self._limit,
                    "window_seconds": self._window,
                },
            )

        return RateLimitResult(
            allowed=allowed,
            request_count=count,
            limit=self._limit,
            window_seconds=self._window,
            retry_after_seconds=retry_after,
        )

    def _evict_stale(self, now: float) -> None:
        stale = [key for key, (start, _) in self._windows.items() if now - start >= self._window]
        for key in stale:
            del self._windows[key]
