"""Configurações centralizadas do server_pool.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única
- Constantes da API de servidores (SERVERS_API_BASE_URL, DEFAULT_PLACE_ID)

Uso típico:
    from server_pool.config import get_settings
"""

from server_pool.config.settings import (
    DEFAULT_PLACE_ID,
    SERVERS_API_BASE_URL,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "SERVERS_API_BASE_URL",
    "DEFAULT_PLACE_ID",
]
