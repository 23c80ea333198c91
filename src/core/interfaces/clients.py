"""Contratos de los colaboradores externos.

Por qué Protocol:
- Define un contrato estructural (duck typing) sin herencia rígida.
- Los clientes HTTP reales (`adapters`) y los fakes en memoria de los tests
  son intercambiables sin acoplar el Core a un transporte concreto.

Reglas de diseño:
- Todo método que hace I/O es asíncrono: cada llamada es un punto de
  suspensión del bucle de eventos.
- "No existe" se devuelve como `None`/lista vacía; los fallos del colaborador
  se lanzan como `core.errors.CollaboratorError`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

from core.domain.models import (
    Application,
    CommandResult,
    Image,
    Instance,
    Server,
    Service,
    Task,
)


@runtime_checkable
class ServiceRegistry(Protocol):
    """Registro de aplicaciones, servicios e instancias."""

    async def get_application(self, name: str) -> Application | None: ...

    async def list_services(self, *, name: str | None = None, application_id: str | None = None) -> list[Service]: ...

    async def create_service(self, name: str, application_id: str, spec: dict[str, Any]) -> Service: ...

    async def update_service(self, service_id: str, patch: dict[str, Any]) -> Service: ...

    async def list_instances(self, *, service_id: str) -> list[Instance]: ...

    async def delete_instance(self, instance_id: str) -> None: ...


@runtime_checkable
class ImageCache(Protocol):
    """Caché local de imágenes (lo ya importado en este entorno)."""

    async def list_images(self, *, name: str, version: str | None = None) -> list[Image]: ...

    async def get_image(self, image_id: str) -> Image | None: ...

    async def get_image_file(self, image_id: str, destination: Path) -> Path: ...

    async def import_image(self, image: Image, *, channel: str) -> Image: ...


@runtime_checkable
class ImageCatalog(Protocol):
    """Catálogo remoto de imágenes publicadas, segmentado por canal."""

    async def list_images(self, *, name: str, channel: str, version: str | None = None) -> list[Image]: ...

    async def get_image(self, image_id: str, *, channel: str) -> Image | None: ...

    async def get_default_channel(self) -> str: ...


@runtime_checkable
class FleetInventory(Protocol):
    async def list_servers(self, *, setup: bool | None = None) -> list[Server]: ...


@runtime_checkable
class NodeTaskClient(Protocol):
    """Servicio de gestión de nodos: los jobs se envían y luego se consultan."""

    async def submit_task(self, path: str, body: dict[str, Any]) -> str: ...

    async def get_task(self, task_id: str) -> Task: ...


@runtime_checkable
class RemoteConnection(Protocol):
    """Conexión abierta con el canal de ejecución remota."""

    async def discover(self, node_ids: Sequence[str], *, timeout: float) -> list[str]:
        """Probe de presencia; devuelve los ids que respondieron a tiempo."""

        ...

    async def execute(self, node_id: str, command: str, *, timeout: float) -> CommandResult:
        """Entrega `command` a un nodo y devuelve su resultado (entrega OK)."""

        ...

    async def close(self) -> None: ...


@runtime_checkable
class RemoteTransport(Protocol):
    async def open_connection(self) -> RemoteConnection: ...


@runtime_checkable
class ProgressSink(Protocol):
    """Salida para el operador: mensajes y una barra de progreso."""

    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def bar_start(self, name: str, size: int) -> None: ...

    def bar_advance(self, completed: int) -> None: ...

    def bar_end(self) -> None: ...
