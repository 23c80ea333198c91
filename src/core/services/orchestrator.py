"""Rollout orchestration: prepare, summarize and execute procedures in order.

Procedures always run strictly in sequence, since later ones may rely on
side effects of earlier ones (a service must exist before instances are
created on it). The first failed `execute` aborts the rest; the raised
`ProcedureFailedError` lists what already completed so an operator can
re-run safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from core.errors import ProcedureFailedError
from core.interfaces.procedure import Procedure, ProcedurePlan
from core.services.context import RolloutContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedProcedure:
    procedure: Procedure[Any]
    plan: ProcedurePlan

    @property
    def name(self) -> str:
        return self.procedure.name


@dataclass
class RolloutPlan:
    included: list[PreparedProcedure] = field(default_factory=list)
    skipped: list[PreparedProcedure] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return not self.included


@dataclass
class RolloutReport:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False


ConfirmFunc = Callable[[str], Awaitable[bool] | bool]


class RolloutOrchestrator:
    def __init__(self, procedures: Sequence[Procedure[Any]]) -> None:
        self.procedures = list(procedures)

    async def prepare(self, ctx: RolloutContext) -> RolloutPlan:
        plan = RolloutPlan()
        for procedure in self.procedures:
            logger.debug("preparing %s", procedure.name)
            prepared = PreparedProcedure(procedure=procedure, plan=await procedure.prepare(ctx))
            if prepared.plan.nothing_to_do:
                logger.info("%s: nothing to do", procedure.name)
                plan.skipped.append(prepared)
            else:
                plan.included.append(prepared)
        return plan

    def summarize(self, plan: RolloutPlan) -> str:
        lines: list[str] = []
        for prepared in plan.included:
            lines.extend(prepared.procedure.summarize(prepared.plan))
        return "\n".join(lines)

    async def execute(self, plan: RolloutPlan, ctx: RolloutContext) -> RolloutReport:
        report = RolloutReport(skipped=[prepared.name for prepared in plan.skipped])
        for index, prepared in enumerate(plan.included):
            logger.info("executing %s", prepared.name)
            try:
                await prepared.procedure.execute(prepared.plan, ctx)
            except Exception as exc:
                pending = [p.name for p in plan.included[index + 1:]]
                logger.error("%s failed: %s", prepared.name, exc)
                raise ProcedureFailedError(prepared.name, report.completed, pending, exc) from exc
            report.completed.append(prepared.name)
        return report

    async def run(
        self,
        ctx: RolloutContext,
        *,
        confirm: ConfirmFunc | None = None,
        dry_run: bool = False,
    ) -> RolloutReport:
        """Prepare, show the summary, optionally confirm, then execute."""

        plan = await self.prepare(ctx)
        skipped = [prepared.name for prepared in plan.skipped]
        if plan.nothing_to_do:
            ctx.ui.info("Nothing to do.")
            return RolloutReport(skipped=skipped, dry_run=dry_run)

        summary = self.summarize(plan)
        ctx.ui.info("This update will make the following changes:\n" + summary)
        if dry_run:
            ctx.ui.info("[dry-run] done")
            return RolloutReport(skipped=skipped, dry_run=True)

        if confirm is not None:
            answer = confirm(summary)
            if not isinstance(answer, bool):
                answer = await answer
            if not answer:
                ctx.ui.info("Aborting.")
                return RolloutReport(skipped=skipped, cancelled=True)

        report = await self.execute(plan, ctx)
        ctx.ui.info(f"Completed: {', '.join(report.completed)}")
        return report
