"""Clientes REST de imágenes: caché local y catálogo remoto por canal.

Caché local:
- GET  /images?name=&version=
- GET  /images/<id>
- GET  /images/<id>/file
- POST /images/<id>?action=import&channel=

Catálogo remoto:
- GET /images?name=&channel=&version=
- GET /images/<id>?channel=
- GET /channels
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from adapters.http_client import JsonApiClient, build_async_client
from core.config import AppSettings
from core.domain.models import Image
from core.errors import NotFoundError

logger = logging.getLogger(__name__)


class HttpImageCache(JsonApiClient):
    collaborator = "image cache"

    def __init__(self, settings: AppSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client or build_async_client(settings, base_url=settings.images_url))

    async def list_images(self, *, name: str, version: str | None = None) -> list[Image]:
        data = await self._request("GET", "/images", params={"name": name, "version": version}, allow_404=True)
        return [Image.model_validate(item) for item in data or []]

    async def get_image(self, image_id: str) -> Image | None:
        data = await self._request("GET", f"/images/{image_id}", allow_404=True)
        return Image.model_validate(data) if data else None

    async def get_image_file(self, image_id: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client.stream("GET", f"/images/{image_id}/file") as response:
                if response.status_code == 404:
                    raise NotFoundError(f'image file for "{image_id}" not found in the local image cache')
                if response.is_error:
                    raise self._error(f"GET /images/{image_id}/file -> HTTP {response.status_code}")
                with destination.open("wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
        except httpx.HTTPError as exc:
            raise self._error(exc) from exc
        logger.debug("saved image %s file to %s", image_id, destination)
        return destination

    async def import_image(self, image: Image, *, channel: str) -> Image:
        data = await self._request(
            "POST",
            f"/images/{image.id}",
            params={"action": "import", "channel": channel},
            json=image.model_dump(mode="json"),
        )
        return Image.model_validate(data) if data else image


class HttpImageCatalog(JsonApiClient):
    collaborator = "updates server"

    def __init__(self, settings: AppSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client or build_async_client(settings, base_url=settings.updates_url))

    async def list_images(self, *, name: str, channel: str, version: str | None = None) -> list[Image]:
        data = await self._request("GET", "/images", params={"name": name, "channel": channel, "version": version})
        return [Image.model_validate(item) for item in data or []]

    async def get_image(self, image_id: str, *, channel: str) -> Image | None:
        data = await self._request("GET", f"/images/{image_id}", params={"channel": channel}, allow_404=True)
        return Image.model_validate(data) if data else None

    async def get_default_channel(self) -> str:
        channels = await self._request("GET", "/channels") or []
        for channel in channels:
            if channel.get("default"):
                return str(channel["name"])
        raise NotFoundError("the updates server has no default channel", remediation="Pass --channel explicitly.")
