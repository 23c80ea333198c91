"""Modelos del dominio (Pydantic v2).

Por qué Pydantic en el dominio:
- Nos da validación estricta y documentación autocontenida (Field) sin acoplar
  el Core a librerías de I/O.
- Los adaptadores HTTP convierten JSON de registro/catálogo/inventario a estos
  modelos con `model_validate`, y el resto del Core solo ve tipos conocidos.

Nota:
- Estos modelos describen *qué* es el estado de la flota, no *cómo* se obtiene.
- Todo el estado durable vive en los colaboradores externos; aquí solo hay
  copias de lectura tomadas en cada ejecución.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class ServiceKind(str, Enum):
    AGENT = "agent"
    VM = "vm"


class Application(BaseModel):
    """Scope de aplicación: los nombres de servicio son únicos dentro de él."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Identificador de la aplicación.")
    name: str = Field(..., min_length=1, description="Nombre de la aplicación (scope).")


class Service(BaseModel):
    """Servicio registrado en el registro de servicios.

    `image_id` es la versión objetivo del servicio: las instancias nuevas se
    crean con ella.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Identificador del servicio.")
    name: str = Field(..., min_length=1, max_length=128, description="Nombre único en el scope.")
    application_id: str | None = Field(default=None, description="Scope al que pertenece.")
    kind: ServiceKind = Field(default=ServiceKind.AGENT, description="Tipo de servicio.")
    image_id: str | None = Field(default=None, description="Imagen objetivo del servicio.")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Servicios que deben existir antes que este.",
    )
    params: dict[str, Any] = Field(default_factory=dict, description="Parámetros libres del registro.")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadatos libres del registro.")


class Instance(BaseModel):
    """Una instancia de un servicio en exactamente un servidor."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Identificador de la instancia.")
    service_id: str = Field(..., min_length=1, description="Servicio al que pertenece.")
    server_id: str = Field(..., min_length=1, description="Servidor que la aloja.")
    hostname: str | None = Field(default=None, description="Hostname del servidor (si se conoce).")
    image_id: str | None = Field(default=None, description="Imagen instalada actualmente.")


class AgentInfo(BaseModel):
    """Agente instalado en un servidor según el inventario."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(..., min_length=1)
    image_id: str | None = None


class Server(BaseModel):
    """Servidor de la flota según el inventario.

    La alcanzabilidad no se guarda aquí: se determina en cada ejecución con
    discovery.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Identificador del servidor.")
    hostname: str = Field(..., min_length=1, description="Hostname del servidor.")
    setup: bool = Field(default=True, description="Si el servidor ya fue aprovisionado.")
    status: str = Field(default="running", description="Estado reportado por el inventario.")
    agents: tuple[AgentInfo, ...] = Field(default=(), description="Agentes instalados.")

    def agent(self, name: str) -> AgentInfo | None:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    @property
    def label(self) -> str:
        return f"{self.id} ({self.hostname})"


class Image(BaseModel):
    """Imagen (artefacto versionado) de un servicio.

    `channels` solo viene informado cuando la imagen procede del catálogo
    remoto; una imagen de la caché local no lo trae.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Identificador de la imagen.")
    name: str = Field(..., min_length=1, description="Nombre lógico de la imagen.")
    version: str = Field(..., min_length=1, description="Versión publicada.")
    published_at: datetime | None = Field(default=None, description="Fecha de publicación.")
    channels: tuple[str, ...] | None = Field(default=None, description="Canales de origen (catálogo remoto).")
    state: str | None = Field(default=None, description="Estado en la caché local (active, importing...).")

    @property
    def label(self) -> str:
        return f"{self.id} ({self.name}@{self.version})"


class ChangeKind(str, Enum):
    CREATE_SERVICE = "create-service"
    UPDATE_SERVICE = "update-service"
    CREATE_INSTANCES = "create-instances"
    UPDATE_INSTANCE = "update-instance"


class Change(BaseModel):
    """Cambio inmutable producido por `prepare` y consumido por `execute`."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    service_name: str = Field(..., min_length=1)
    service: Service | None = Field(default=None, description="Servicio existente (si lo hay).")
    image: Image
    needs_download: bool = False
    instances: tuple[Instance, ...] = Field(default=(), description="Instancias afectadas.")
    servers: tuple[Server, ...] = Field(default=(), description="Servidores afectados.")


class TaskStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def finished(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILURE)


class TaskEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="event")
    event: dict[str, Any] = Field(default_factory=dict)

    @property
    def error_message(self) -> str | None:
        error = self.event.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            return str(message) if message else None
        if isinstance(error, str) and error:
            return error
        return None


class Task(BaseModel):
    """Job de gestión de nodo seguido por identificador."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    status: TaskStatus = TaskStatus.QUEUED
    history: list[TaskEvent] = Field(default_factory=list)
    result: dict[str, Any] | None = None


class CommandResult(BaseModel):
    """Resultado de un comando entregado a un nodo.

    Recibirlo significa que la *entrega* funcionó; `exit_status` distinto de
    cero es un fallo de aplicación que se interpreta aparte.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    exit_status: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0
