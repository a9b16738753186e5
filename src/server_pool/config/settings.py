"""Configurações da aplicação via variáveis de ambiente.

Todos os limites do ciclo de busca, das tabelas de retry e dos arquivos
persistidos são ajustáveis sem alterar código.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# -----------------------------------------------------------------------------
# Constantes da API pública de servidores
# -----------------------------------------------------------------------------
SERVERS_API_BASE_URL: str = "https://games.roblox.com"
DEFAULT_PLACE_ID: int = 109983668079237


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "server_pool"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"

    # API remota de listagem
    place_id: int = DEFAULT_PLACE_ID  # Jogo alvo
    servers_api_base_url: str = SERVERS_API_BASE_URL
    page_limit: int = 100  # Resultados por página
    exclude_full_games: bool = True  # Pede à API para ocultar instâncias cheias
    request_timeout_seconds: float = 25.0

    # Tabelas de retry (independentes por classe de falha)
    rate_limit_max_retries: int = 5
    rate_limit_backoff_base_seconds: float = 15.0
    rate_limit_backoff_max_seconds: float = 120.0
    timeout_max_retries: int = 3
    timeout_retry_delay_seconds: float = 3.0
    error_max_retries: int = 2
    error_retry_delay_seconds: float = 2.0

    # Ciclo de busca
    max_pages: int = 100  # Páginas por ciclo
    max_cache_size: int = 5000  # Alvo de tamanho do pool
    min_players: int = 1  # Instâncias abaixo disso não entram
    default_capacity: int = 6  # Usado quando a API omite maxPlayers
    base_page_delay_seconds: float = 5.0  # Pausa a cada 5 páginas com pool grande
    incremental_save_every: int = 150  # Novas admissões entre saves parciais

    # Idades máximas
    max_record_age_seconds: float = 900.0
    blacklist_max_age_seconds: float = 86400.0

    # Agendamento
    blacklist_prune_interval_seconds: float = 3600.0
    refresh_interval_seconds: float = 300.0
    fetch_on_startup: bool = True

    # Persistência
    cache_file: str = "data/server_cache.json"
    blacklist_file: str = "data/blacklist.json"

    # Porta HTTP (rate limit por chamador, janela fixa)
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60

    @property
    def servers_endpoint(self) -> str:
        """Retorna a URL de listagem pública de servidores do jogo alvo."""
        base = self.servers_api_base_url.rstrip("/")
        return f"{base}/v1/games/{self.place_id}/servers/Public"

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_file)

    @property
    def blacklist_path(self) -> Path:
        return Path(self.blacklist_file)

    def validate_fetch_config(self) -> list[str]:
        """Valida limites do ciclo de busca.

        Retorna lista de erros (vazia = OK).
        """
        errors: list[str] = []
        if self.place_id <= 0:
            errors.append("PLACE_ID deve ser positivo")
        if not 1 <= self.page_limit <= 100:
            errors.append("PAGE_LIMIT deve estar entre 1 e 100")
        if self.max_pages < 1:
            errors.append("MAX_PAGES deve ser >= 1")
        if self.max_cache_size < 1:
            errors.append("MAX_CACHE_SIZE deve ser >= 1")
        if self.min_players < 0:
            errors.append("MIN_PLAYERS não pode ser negativo")
        if self.incremental_save_every < 1:
            errors.append("INCREMENTAL_SAVE_EVERY deve ser >= 1")
        if self.request_timeout_seconds <= 0:
            errors.append("REQUEST_TIMEOUT_SECONDS deve ser positivo")
        for name in ("rate_limit_max_retries", "timeout_max_retries", "error_max_retries"):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} não pode ser negativo")
        return errors

    def validate_schedule_config(self) -> list[str]:
        """Valida idades máximas e intervalos de manutenção."""
        errors: list[str] = []
        if self.max_record_age_seconds <= 0:
            errors.append("MAX_RECORD_AGE_SECONDS deve ser positivo")
        if self.blacklist_max_age_seconds <= 0:
            errors.append("BLACKLIST_MAX_AGE_SECONDS deve ser positivo")
        if self.blacklist_prune_interval_seconds <= 0:
            errors.append("BLACKLIST_PRUNE_INTERVAL_SECONDS deve ser positivo")
        if self.refresh_interval_seconds <= 0:
            errors.append("REFRESH_INTERVAL_SECONDS deve ser positivo")
        if self.rate_limit_requests < 1 or self.rate_limit_window_seconds < 1:
            errors.append("RATE_LIMIT_REQUESTS e RATE_LIMIT_WINDOW_SECONDS devem ser >= 1")
        return errors

    def validate_paths(self) -> list[str]:
        """Valida que os dois documentos persistidos não colidem."""
        errors: list[str] = []
        if not self.cache_file or not self.blacklist_file:
            errors.append("CACHE_FILE e BLACKLIST_FILE são obrigatórios")
        elif self.cache_path.resolve() == self.blacklist_path.resolve():
            errors.append("CACHE_FILE e BLACKLIST_FILE devem ser arquivos distintos")
        return errors

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings.

    A cache garante que mesmo múltiplas injeções não criam novos objetos.
    """
    return Settings()
