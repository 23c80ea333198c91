"""Cliente REST del registro de servicios.

Endpoints:
- GET    /applications?name=
- GET    /services?name=&application_id=
- POST   /services
- PATCH  /services/<id>
- GET    /instances?service_id=
- DELETE /instances/<id>
"""

from __future__ import annotations

from typing import Any

import httpx

from adapters.http_client import JsonApiClient, build_async_client
from core.config import AppSettings
from core.domain.models import Application, Instance, Service


class HttpServiceRegistry(JsonApiClient):
    collaborator = "registry"

    def __init__(self, settings: AppSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client or build_async_client(settings, base_url=settings.registry_url))

    async def get_application(self, name: str) -> Application | None:
        data = await self._request("GET", "/applications", params={"name": name})
        if not data:
            return None
        return Application.model_validate(data[0])

    async def list_services(self, *, name: str | None = None, application_id: str | None = None) -> list[Service]:
        data = await self._request("GET", "/services", params={"name": name, "application_id": application_id})
        return [Service.model_validate(item) for item in data or []]

    async def create_service(self, name: str, application_id: str, spec: dict[str, Any]) -> Service:
        body = {**spec, "name": name, "application_id": application_id}
        return Service.model_validate(await self._request("POST", "/services", json=body))

    async def update_service(self, service_id: str, patch: dict[str, Any]) -> Service:
        return Service.model_validate(await self._request("PATCH", f"/services/{service_id}", json=patch))

    async def list_instances(self, *, service_id: str) -> list[Instance]:
        data = await self._request("GET", "/instances", params={"service_id": service_id})
        return [Instance.model_validate(item) for item in data or []]

    async def delete_instance(self, instance_id: str) -> None:
        await self._request("DELETE", f"/instances/{instance_id}", allow_404=True)
