from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from server_pool.config.settings import Settings, get_settings


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings isolados: documentos em tmp_path e sem busca no startup."""
    return Settings(
        cache_file=str(tmp_path / "server_cache.json"),
        blacklist_file=str(tmp_path / "blacklist.json"),
        fetch_on_startup=False,
        refresh_interval_seconds=3600.0,
    )


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
