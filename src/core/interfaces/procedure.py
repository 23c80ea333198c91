"""Contrato de un procedimiento de cambio.

Por qué un plan explícito:
- `prepare` devuelve un `ProcedurePlan` inmutable en vez de acumular estado
  en el propio procedimiento; `summarize` y `execute` lo reciben como
  argumento, así que no pueden llamarse sin haber preparado antes.
- El orquestador despacha siempre por estos tres métodos, nunca por tipo.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from core.services.context import RolloutContext


class ProcedurePlan(BaseModel):
    """Base de los planes: valores congelados tras `prepare`."""

    model_config = ConfigDict(frozen=True)

    @property
    def nothing_to_do(self) -> bool:
        raise NotImplementedError


PlanT = TypeVar("PlanT", bound=ProcedurePlan)


@runtime_checkable
class Procedure(Protocol[PlanT]):
    """Reglas de diseño:
    - `prepare` solo consulta a los colaboradores; no muta nada.
    - `summarize` es pura: lista ordenada de acciones legibles.
    - `execute` es idempotente: cada paso solo actúa si el estado difiere del
      deseado, así que re-ejecutar tras un fallo parcial solo hace lo pendiente.
    """

    name: str

    async def prepare(self, ctx: "RolloutContext") -> PlanT: ...

    def summarize(self, plan: PlanT) -> list[str]: ...

    async def execute(self, plan: PlanT, ctx: "RolloutContext") -> None: ...
