"""Taxonomía de errores del Core.

Por qué una jerarquía propia:
- La CLI solo necesita capturar `RolloutError` para salir limpiamente.
- Distingue fallos fatales (validación, dependencias ausentes, transporte) de
  fallos por nodo, que se acumulan durante el fan-out sin abortar al resto.
"""

from __future__ import annotations

from typing import Sequence


class RolloutError(Exception):
    """Raíz de todos los errores del orquestador."""


class ValidationError(RolloutError):
    """Entrada u opciones mal formadas. Fatal, sin reintento."""


class ImageMismatchError(ValidationError):
    """La imagen resuelta no pertenece al servicio esperado."""

    def __init__(self, image_ref: str, actual_name: str, expected_name: str) -> None:
        super().__init__(f'image "{image_ref}" ({actual_name}) is not a "{expected_name}" image')
        self.image_ref = image_ref
        self.actual_name = actual_name
        self.expected_name = expected_name


class NotFoundError(RolloutError):
    """Falta una dependencia, imagen o servicio requerido.

    `remediation` indica al operador cómo resolverlo (p.ej. qué procedimiento
    ejecutar antes).
    """

    def __init__(self, message: str, remediation: str | None = None) -> None:
        full = f"{message}\n{remediation}" if remediation else message
        super().__init__(full)
        self.remediation = remediation


class RemoteProtocolError(RolloutError):
    """Fallo de discovery o del transporte de ejecución remota."""


class CollaboratorError(RolloutError):
    """Una llamada a un colaborador externo (registro, catálogo...) falló."""

    def __init__(self, collaborator: str, cause: BaseException | str) -> None:
        super().__init__(f"{collaborator} error: {cause}")
        self.collaborator = collaborator
        self.cause = cause


class TaskFailure(RolloutError):
    """Un comando o job remoto terminó en fallo para un nodo concreto."""

    def __init__(self, message: str, *, target: str | None = None, hostname: str | None = None) -> None:
        super().__init__(message)
        self.target = target
        self.hostname = hostname


class OperationTimeoutError(RolloutError):
    """Discovery o polling de un job superó su límite de tiempo."""

    def __init__(self, message: str, *, target: str | None = None, timeout: float | None = None) -> None:
        super().__init__(message)
        self.target = target
        self.timeout = timeout


class AggregateError(RolloutError):
    """Dos o más fallos independientes de un mismo lote de fan-out.

    Conserva cada error subyacente junto a la identidad de su objetivo.
    """

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures: list[tuple[str, BaseException]] = list(failures)
        lines = [f"{len(self.failures)} targets failed:"]
        lines.extend(f"  {target}: {error}" for target, error in self.failures)
        super().__init__("\n".join(lines))

    @property
    def errors(self) -> list[BaseException]:
        return [error for _, error in self.failures]

    @property
    def targets(self) -> list[str]:
        return [target for target, _ in self.failures]


class ProcedureFailedError(RolloutError):
    """Un procedimiento falló y el orquestador abortó los restantes.

    El error original queda encadenado en `__cause__`.
    """

    def __init__(self, failed: str, completed: Sequence[str], skipped: Sequence[str], cause: BaseException) -> None:
        self.failed = failed
        self.completed = list(completed)
        self.skipped = list(skipped)
        done = ", ".join(self.completed) if self.completed else "none"
        super().__init__(f'procedure "{failed}" failed: {cause} (completed before failure: {done})')
