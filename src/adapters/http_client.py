"""Wrapper de httpx.

Por qué un wrapper:
- Estandariza timeouts, headers y el mapeo de errores HTTP a la taxonomía
  del Core (`CollaboratorError`), igual para todos los colaboradores.
- Facilita testeo: cada cliente acepta un `httpx.AsyncClient` ya construido
  (p.ej. con `httpx.MockTransport`).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from core.config import AppSettings
from core.errors import CollaboratorError, RolloutError

logger = logging.getLogger(__name__)


def build_async_client(
    settings: AppSettings | None = None,
    *,
    base_url: str = "",
    timeout: float | None = None,
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` con defaults seguros.

    Por qué un builder:
    - Centraliza timeouts/headers para que todos los colaboradores se comporten igual.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout or settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class JsonApiClient:
    """Base de los clientes REST: JSON de entrada/salida y errores tipados."""

    collaborator = "http"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    def _error(self, cause: BaseException | str) -> RolloutError:
        return CollaboratorError(self.collaborator, cause)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout: float | None = None,
        allow_404: bool = False,
    ) -> Any:
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = httpx.Timeout(timeout)
        try:
            response = await self._client.request(
                method,
                path,
                params=drop_none(params or {}),
                json=json,
                **extra,
            )
        except httpx.HTTPError as exc:
            logger.debug("%s %s %s failed: %s", self.collaborator, method, path, exc)
            raise self._error(exc) from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.is_error:
            raise self._error(f"{method} {path} -> HTTP {response.status_code}: {response.text[:200]}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise self._error(f"{method} {path} returned invalid JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JsonApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
