"""Cliente HTTP centralizado com retry por classe de falha, timeout e logging.

Cada classe de falha tem seu próprio orçamento de tentativas e sua tabela
de espera:
- rate_limited (HTTP 429): backoff exponencial com teto
- timeout: espera fixa
- error (rede, status inesperado, corpo não-JSON): espera fixa

Os orçamentos são independentes e não se somam dentro de uma mesma
chamada. As tentativas são um laço explícito, nunca recursão.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import httpx

from server_pool.domain.models import FetchStats
from server_pool.observability.logging import get_logger

if TYPE_CHECKING:
    from server_pool.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

FailureKind = Literal["rate_limited", "timeout", "error"]


@dataclass(frozen=True)
class RetryPolicy:
    """Orçamento e espera para uma classe de falha."""

    max_retries: int
    delay_seconds: float
    exponential: bool = False
    max_delay_seconds: float | None = None

    def delay_for(self, attempt: int) -> float:
        """Espera antes do retry ``attempt`` (0 = primeiro retry)."""
        if not self.exponential:
            return self.delay_seconds
        return _calculate_backoff(
            attempt, self.delay_seconds, self.max_delay_seconds or self.delay_seconds
        )


def _default_policies() -> dict[FailureKind, RetryPolicy]:
    return {
        "rate_limited": RetryPolicy(
            max_retries=5, delay_seconds=15.0, exponential=True, max_delay_seconds=120.0
        ),
        "timeout": RetryPolicy(max_retries=3, delay_seconds=3.0),
        "error": RetryPolicy(max_retries=2, delay_seconds=2.0),
    }


@dataclass
class HttpClientConfig:
    """Configuração do cliente HTTP.

    Valores padrão seguem os limites da API pública de servidores.
    """

    timeout_seconds: float = 25.0
    policies: dict[FailureKind, RetryPolicy] = field(default_factory=_default_policies)
    default_headers: dict[str, str] = field(default_factory=dict)


class HttpError(Exception):
    """Falha de requisição classificada por tipo."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        kind: FailureKind = "error",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind


def _calculate_backoff(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
) -> float:
    """Calcula tempo de espera com backoff exponencial."""
    backoff = (2**attempt) * base_seconds
    return min(backoff, max_seconds)


def _classify_exception(exc: Exception) -> HttpError:
    """Converte exceções do httpx em HttpError classificado."""
    if isinstance(exc, httpx.TimeoutException):
        return HttpError("Timeout", kind="timeout")
    if isinstance(exc, httpx.HTTPError):
        return HttpError(f"Erro de transporte: {type(exc).__name__}", kind="error")
    raise exc


def _parse_response(response: httpx.Response) -> Any:
    """Retorna o corpo JSON de uma resposta 200 ou levanta HttpError."""
    if response.status_code == 429:
        raise HttpError("HTTP 429", status_code=429, kind="rate_limited")
    if response.status_code != 200:
        raise HttpError(f"HTTP {response.status_code}", status_code=response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise HttpError("Corpo não é JSON válido", status_code=200) from exc


class HttpClient:
    """Cliente HTTP assíncrono que devolve JSON com retry classificado.

    Uso típico:
        async with HttpClient(config) as client:
            payload = await client.get_json(url, params={...})
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        stats: FetchStats | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Inicializa cliente com configuração e contadores compartilhados."""
        self._config = config or HttpClientConfig()
        self._stats = stats if stats is not None else FetchStats()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def stats(self) -> FetchStats:
        return self._stats

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _attempt(
        self,
        url: str,
        parse: Callable[[Any], Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Executa uma única tentativa, registrando o resultado nos contadores."""
        client = await self._get_client()
        try:
            response = await client.get(url, **kwargs)
            payload = _parse_response(response)
            if parse is not None:
                payload = parse(payload)
        except HttpError as exc:
            self._stats.record_failure(rate_limited=exc.kind == "rate_limited")
            raise
        except Exception as exc:
            self._stats.record_failure()
            raise _classify_exception(exc) from exc

        self._stats.record_success()
        return payload

    async def get_json(
        self,
        url: str,
        parse: Callable[[Any], Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Executa GET e devolve o JSON, com retry por classe de falha.

        Args:
            url: URL da requisição
            parse: Conversão do corpo; HttpError levantado aqui conta como
                falha da tentativa e consome o orçamento da sua classe
            **kwargs: Argumentos passados para httpx (ex.: params)

        Returns:
            Corpo JSON decodificado (já convertido por ``parse``, se houver)

        Raises:
            HttpError: Quando o orçamento da classe de falha se esgota
        """
        retries: dict[str, int] = {}

        while True:
            try:
                return await self._attempt(url, parse, **kwargs)
            except HttpError as exc:
                policy = self._config.policies[exc.kind]
                used = retries.get(exc.kind, 0)
                if used >= policy.max_retries:
                    logger.error(
                        "Esgotou tentativas de retry",
                        extra={
                            "url": url,
                            "failure_kind": exc.kind,
                            "status_code": exc.status_code,
                            "retries": used,
                        },
                    )
                    raise

                delay = policy.delay_for(used)
                retries[exc.kind] = used + 1
                logger.warning(
                    "Falha transitória em requisição HTTP, aguardando retry",
                    extra={
                        "url": url,
                        "failure_kind": exc.kind,
                        "status_code": exc.status_code,
                        "retry": used + 1,
                        "max_retries": policy.max_retries,
                        "backoff_seconds": delay,
                    },
                )
                await asyncio.sleep(delay)


def create_http_client(
    settings: Settings | None = None,
    stats: FetchStats | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpClient:
    """Factory para criar cliente HTTP configurado.

    Args:
        settings: Configurações da aplicação. Se None, usa get_settings()
        stats: Contadores compartilhados com o motor de cache
        transport: Transporte httpx alternativo (testes)
    """
    if settings is None:
        from server_pool.config.settings import get_settings

        settings = get_settings()

    config = HttpClientConfig(
        timeout_seconds=float(settings.request_timeout_seconds),
        policies={
            "rate_limited": RetryPolicy(
                max_retries=settings.rate_limit_max_retries,
                delay_seconds=settings.rate_limit_backoff_base_seconds,
                exponential=True,
                max_delay_seconds=settings.rate_limit_backoff_max_seconds,
            ),
            "timeout": RetryPolicy(
                max_retries=settings.timeout_max_retries,
                delay_seconds=settings.timeout_retry_delay_seconds,
            ),
            "error": RetryPolicy(
                max_retries=settings.error_max_retries,
                delay_seconds=settings.error_retry_delay_seconds,
            ),
        },
        default_headers={
            "User-Agent": f"{settings.service_name}/{settings.version}",
            "Accept": "application/json",
        },
    )

    logger.info(
        "Cliente HTTP criado",
        extra={
            "timeout_seconds": config.timeout_seconds,
            "rate_limit_max_retries": settings.rate_limit_max_retries,
        },
    )

    return HttpClient(config, stats=stats, transport=transport)
