"""Camada de infraestrutura: HTTP, listagem remota e documentos em disco.

Uso típico:
    from server_pool.infra import JsonDocument, create_http_client

Infraestrutura não decide regra de negócio: falhas esgotadas viram
``None``/``False`` e a decisão fica com o motor de cache.
"""

from server_pool.infra.http import (
    HttpClient,
    HttpClientConfig,
    HttpError,
    RetryPolicy,
    create_http_client,
)
from server_pool.infra.persistence import JsonDocument
from server_pool.infra.server_list import (
    ServerListClient,
    ServerPage,
    create_server_list_client,
)

__all__ = [
    "HttpClient",
    "HttpClientConfig",
    "HttpError",
    "JsonDocument",
    "RetryPolicy",
    "ServerListClient",
    "ServerPage",
    "create_http_client",
    "create_server_list_client",
]
