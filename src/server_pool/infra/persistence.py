"""Persistência de documentos JSON em disco.

Cada componente é dono do seu documento (cache ou blacklist). A escrita
substitui o conteúdo inteiro: grava em arquivo temporário no mesmo
diretório e troca com ``os.replace``, de modo que uma falha no meio da
escrita nunca deixa o documento anterior truncado.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import anyio

from server_pool.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class JsonDocument:
    """Leitura/escrita durável de um documento JSON."""

    def __init__(self, path: Path | str, name: str | None = None) -> None:
        self._path = Path(path)
        self._name = name or self._path.stem

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Any | None:
        """Lê o documento.

        Returns:
            Conteúdo decodificado, ou None se o arquivo não existe ou está
            malformado (o erro é logado, nunca propagado).
        """
        if not self._path.exists():
            logger.info(
                "Documento ausente, iniciando vazio",
                extra={"document": self._name, "path": str(self._path)},
            )
            return None

        try:
            raw = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "Falha ao ler documento",
                extra={"document": self._name, "error": type(exc).__name__},
            )
            return None

        if not raw.strip():
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Documento malformado, tratando como vazio",
                extra={"document": self._name, "error": str(exc)},
            )
            return None

    def write(self, content: Any) -> None:
        """Escreve o documento de forma síncrona (temporário + rename).

        Raises:
            OSError, TypeError, ValueError: em falha de serialização ou disco.
        """
        payload = json.dumps(content, ensure_ascii=False, indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def save(self, content: Any) -> bool:
        """Persiste o documento fora do event loop.

        Returns:
            True em sucesso, False em falha (logada).
        """
        try:
            await anyio.to_thread.run_sync(self.write, content)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(
                "Falha ao salvar documento",
                extra={"document": self._name, "error": type(exc).__name__},
            )
            return False

        logger.debug("Documento salvo", extra={"document": self._name})
        return True
