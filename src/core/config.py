"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Permite que adaptadores (HTTP) y procedimientos lean config de forma consistente.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_DIR_NAME = "fleet-rollout"


def get_user_config_dir() -> Path:
    """Directorio de config por usuario: APPDATA, Application Support o XDG."""

    home = Path.home()
    if sys.platform.startswith("win"):
        root = Path(os.environ.get("APPDATA") or home)
    elif sys.platform == "darwin":
        root = home / "Library" / "Application Support"
    else:
        root = Path(os.environ.get("XDG_CONFIG_HOME") or home / ".config")
    return root / APP_DIR_NAME


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def read_env_file(path: Path) -> dict[str, str]:
    """Lee `CLAVE=valor` ignorando comentarios y comillas envolventes."""

    values: dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        values[key] = value.strip().strip("'\"")
    return values


def write_user_env_vars(values: dict[str, str], env_path: Path | None = None) -> Path:
    """Fusiona `values` en el .env de usuario (o `env_path`) y devuelve la ruta."""

    target = env_path or get_user_env_file()
    merged = read_env_file(target)
    merged.update({key: value for key, value in values.items() if value is not None})

    target.parent.mkdir(parents=True, exist_ok=True)
    body = "".join(f"{key}={merged[key]}\n" for key in sorted(merged))
    target.write_text(f"# {APP_DIR_NAME} user config\n{body}", encoding="utf-8")
    return target


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core con lógica.
    - Un único contrato de configuración para CLI/adapters/procedimientos.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEET_ROLLOUT_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    # Colaboradores externos (registro, imágenes, inventario, tareas, ejecución remota)
    registry_url: str = Field(
        default="http://localhost:8081",
        min_length=8,
        description="Base URL del registro de servicios.",
    )
    images_url: str = Field(
        default="http://localhost:8082",
        min_length=8,
        description="Base URL de la caché local de imágenes.",
    )
    updates_url: str = Field(
        default="http://localhost:8083",
        min_length=8,
        description="Base URL del catálogo remoto de imágenes (por canal).",
    )
    inventory_url: str = Field(
        default="http://localhost:8084",
        min_length=8,
        description="Base URL del inventario de servidores de la flota.",
    )
    tasks_url: str = Field(
        default="http://localhost:8084",
        min_length=8,
        description="Base URL del servicio de gestión de nodos (jobs/tareas).",
    )
    remote_exec_url: str = Field(
        default="http://localhost:8085",
        min_length=8,
        description="Base URL del gateway de ejecución remota (discovery + dispatch).",
    )

    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout por request (segundos).",
    )
    user_agent: str = Field(
        default="fleet-rollout/0.1",
        min_length=1,
        description="User-Agent para peticiones a los colaboradores.",
    )

    scope_name: str = Field(
        default="fleet",
        min_length=1,
        description="Aplicación (scope) a la que pertenecen los servicios gestionados.",
    )
    default_channel: str | None = Field(
        default=None,
        description="Canal del catálogo remoto. None = preguntar al catálogo su canal por defecto.",
    )

    concurrency: int = Field(
        default=5,
        ge=1,
        le=500,
        description="Máximo de nodos atendidos en paralelo durante el fan-out.",
    )
    discovery_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Tiempo máximo de espera del probe de presencia (discovery).",
    )
    download_timeout_seconds: float = Field(
        default=10 * 60,
        gt=0,
        description="Timeout por nodo de la fase de descarga del instalador.",
    )
    install_timeout_seconds: float = Field(
        default=20 * 60,
        gt=0,
        description="Timeout por nodo de la fase de instalación.",
    )
    task_timeout_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="Tiempo máximo de espera de un job de gestión de nodo.",
    )
    task_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Intervalo entre consultas de estado de un job.",
    )

    download_dir: Path = Field(
        default=Path("/var/tmp"),
        description="Directorio temporal donde se descargan los artefactos de imagen.",
    )
    assets_dir: Path = Field(
        default=Path("/var/lib/fleet-rollout/assets"),
        description="Directorio servido a los nodos para descargar instaladores.",
    )
    assets_base_url: str = Field(
        default="http://localhost/extra",
        min_length=8,
        description="URL desde la que los nodos descargan `assets_dir`.",
    )

    image_names: dict[str, str] = Field(
        default_factory=dict,
        description="Nombre lógico de imagen por servicio (si falta, se usa el del servicio).",
    )

    log_level: str = Field(
        default="WARNING",
        description="Nivel de logging (DEBUG, INFO, WARNING...).",
    )

    @model_validator(mode="after")
    def _normalize(self) -> "AppSettings":
        self.log_level = self.log_level.upper()
        return self

    def image_name_for(self, service_name: str) -> str:
        """Nombre lógico de imagen esperado para un servicio."""

        return self.image_names.get(service_name, service_name)
