"""Clientes REST del inventario de la flota y de sus jobs de gestión.

- GET  /servers?setup=&extras=agents
- POST /servers/<id>/<accion>   -> {"id": <task id>}
- GET  /tasks/<id>
"""

from __future__ import annotations

from typing import Any

import httpx

from adapters.http_client import JsonApiClient, build_async_client
from core.config import AppSettings
from core.domain.models import Server, Task
from core.errors import NotFoundError


class HttpFleetInventory(JsonApiClient):
    collaborator = "inventory"

    def __init__(self, settings: AppSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client or build_async_client(settings, base_url=settings.inventory_url))

    async def list_servers(self, *, setup: bool | None = None) -> list[Server]:
        params: dict[str, Any] = {"extras": "agents"}
        if setup is not None:
            params["setup"] = "true" if setup else "false"
        data = await self._request("GET", "/servers", params=params)
        return [Server.model_validate(item) for item in data or []]


class HttpNodeTaskClient(JsonApiClient):
    collaborator = "node tasks"

    def __init__(self, settings: AppSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client or build_async_client(settings, base_url=settings.tasks_url))

    async def submit_task(self, path: str, body: dict[str, Any]) -> str:
        data = await self._request("POST", path, json=body)
        task_id = (data or {}).get("id")
        if not task_id:
            raise self._error(f"POST {path} did not return a task id")
        return str(task_id)

    async def get_task(self, task_id: str) -> Task:
        data = await self._request("GET", f"/tasks/{task_id}", allow_404=True)
        if data is None:
            raise NotFoundError(f'task "{task_id}" not found')
        return Task.model_validate(data)
