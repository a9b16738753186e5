"""Busca em massa avulsa: carrega o estado, roda um ciclo e salva.

Uso:
    server-pool-fetch [--place-id ID] [--max-pages N] [--cache-file PATH]

Sai com código 1 apenas se o save final falhar.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

import httpx

from server_pool.application.cache_engine import create_cache_engine
from server_pool.config import Settings, get_settings
from server_pool.domain.models import FetchResult
from server_pool.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="server-pool-fetch",
        description="Preenche o cache de servidores com um ciclo de busca paginada.",
    )
    parser.add_argument("--place-id", type=int, default=None, help="Jogo alvo")
    parser.add_argument("--max-pages", type=int, default=None, help="Páginas por ciclo")
    parser.add_argument("--cache-file", default=None, help="Documento de cache")
    parser.add_argument("--blacklist-file", default=None, help="Documento da blacklist")
    return parser.parse_args(argv)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {
        "place_id": args.place_id,
        "max_pages": args.max_pages,
        "cache_file": args.cache_file,
        "blacklist_file": args.blacklist_file,
    }
    changes = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=changes) if changes else settings


async def run_once(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[FetchResult, bool]:
    """Executa um ciclo completo e o save obrigatório final."""
    engine = create_cache_engine(settings, transport=transport)
    engine.load_from_disk()
    try:
        result = await engine.fetch_bulk()
        saved = await engine.save()
    finally:
        await engine.aclose(final_save=False)
    return result, saved


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = _apply_overrides(get_settings(), args)
    configure_logging(settings.log_level, settings.service_name, settings.place_id)

    errors = settings.validate_fetch_config() + settings.validate_paths()
    if errors:
        logger.error("Configuração inválida", extra={"errors": errors})
        return 2

    result, saved = asyncio.run(run_once(settings))
    if not saved:
        logger.error("Falha ao salvar o cache", extra={"cache_file": settings.cache_file})
        return 1

    print(
        f"Servidores em cache: {result.total_cached} | novos: {result.added} | "
        f"analisados: {result.scanned} | páginas: {result.pages} | "
        f"duração: {result.duration_ms} ms | arquivo: {settings.cache_file}"
    )
    if result.total_cached < settings.max_cache_size:
        logger.warning(
            "Alvo de tamanho não atingido",
            extra={"total_cached": result.total_cached, "target": settings.max_cache_size},
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
