"""Transporte de ejecución remota sobre un gateway HTTP.

- POST /discover {"nodes": [...], "timeout": s} -> {"nodes": [ids que respondieron]}
- POST /execute  {"node": id, "script": str, "timeout": s} -> {"exit_status", "stdout", "stderr"}

Los fallos del gateway son fallos del canal (`RemoteProtocolError`), no del
nodo; un exit status distinto de cero llega como resultado normal.
"""

from __future__ import annotations

from typing import Sequence

import httpx

from adapters.http_client import JsonApiClient, build_async_client
from core.config import AppSettings
from core.domain.models import CommandResult
from core.errors import OperationTimeoutError, RemoteProtocolError, RolloutError


class HttpRemoteConnection(JsonApiClient):
    collaborator = "remote execution"

    def _error(self, cause: BaseException | str) -> RolloutError:
        return RemoteProtocolError(f"{self.collaborator} error: {cause}")

    async def discover(self, node_ids: Sequence[str], *, timeout: float) -> list[str]:
        data = await self._request(
            "POST",
            "/discover",
            json={"nodes": list(node_ids), "timeout": timeout},
            timeout=timeout + 5,
        )
        return [str(node) for node in (data or {}).get("nodes", [])]

    async def execute(self, node_id: str, command: str, *, timeout: float) -> CommandResult:
        try:
            data = await self._request(
                "POST",
                "/execute",
                json={"node": node_id, "script": command, "timeout": timeout},
                timeout=timeout + 5,
            )
        except RemoteProtocolError as exc:
            # a slow node is a per-node timeout, not a broken channel
            if isinstance(exc.__cause__, httpx.TimeoutException):
                raise OperationTimeoutError(
                    f"command timed out after {timeout:g}s on node {node_id}",
                    target=node_id,
                    timeout=timeout,
                ) from exc.__cause__
            raise
        if data is None:
            raise self._error(f"empty result for node {node_id}")
        return CommandResult.model_validate(data)

    async def close(self) -> None:
        await self.aclose()


class HttpRemoteTransport:
    def __init__(self, settings: AppSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def open_connection(self) -> HttpRemoteConnection:
        client = build_async_client(
            self._settings,
            base_url=self._settings.remote_exec_url,
            transport=self._transport,
        )
        return HttpRemoteConnection(client)
