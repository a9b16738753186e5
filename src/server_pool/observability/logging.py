"""Logging estruturado (JSON) do pool de servidores.

Todo registro sai com ``service``, ``place_id`` (jogo alvo) e o
``correlation_id`` da request corrente, vazio fora da porta HTTP (ciclos
agendados, CLI).
"""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from server_pool.observability.middleware import get_correlation_id

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "%(correlation_id)s %(service)s %(place_id)s"
)

# Uma linha por página já sai do ciclo de busca; a do httpx é ruído.
_NOISY_LOGGERS = ("httpx", "httpcore")


class ServiceContextFilter(logging.Filter):
    """Insere service, place_id e correlation_id no record de log."""

    def __init__(self, service_name: str, place_id: int | None = None) -> None:
        super().__init__()
        self._service_name = service_name
        self._place_id = place_id

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        existing = getattr(record, "correlation_id", None)
        record.correlation_id = existing if existing else get_correlation_id()
        record.service = self._service_name
        if getattr(record, "place_id", None) is None:
            record.place_id = self._place_id
        return True


def configure_logging(level: str, service_name: str, place_id: int | None = None) -> None:
    """Configura logging JSON para o serviço e o CLI."""

    formatter = JsonFormatter(
        LOG_FORMAT,
        rename_fields={"levelname": "level", "name": "logger"},
    )

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name, place_id))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def short_id(server_id: str | None) -> str:
    """Trunca ids de instância para logs (8 caracteres)."""

    if not server_id:
        return ""
    return server_id[:8] + "..." if len(server_id) > 8 else server_id
