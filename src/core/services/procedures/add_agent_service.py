"""Procedure to add an agent service to the fleet.

Creates the service in the registry (or moves an existing one to the
resolved image) and installs the agent on the selected servers through
node-management jobs, using the provided (or latest available) image.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from core.domain.models import Application, Image, Server, Service, ServiceKind
from core.domain.selectors import ImageSelector
from core.errors import OperationTimeoutError, TaskFailure, ValidationError
from core.interfaces.procedure import ProcedurePlan
from core.services.bounded_queue import run_bounded
from core.services.context import RolloutContext
from core.services.image_resolution import resolve_image
from core.services.procedures.common import (
    check_required_services,
    ensure_servers_running,
    plural,
    resolve_channel,
    select_servers,
)
from core.services.procedures.download_images import download_image
from core.services.task_poller import wait_task

logger = logging.getLogger(__name__)


class AddAgentServicePlan(ProcedurePlan):
    service_name: str
    application: Application
    channel: str
    image: Image
    needs_download: bool
    service: Service | None = None
    servers: tuple[Server, ...] = ()

    @property
    def service_outdated(self) -> bool:
        return self.service is not None and self.service.image_id != self.image.id

    @property
    def nothing_to_do(self) -> bool:
        return not (self.service is None or self.needs_download or self.service_outdated or self.servers)


class AddAgentServiceProcedure:
    def __init__(
        self,
        service_name: str,
        *,
        image: str | None = None,
        channel: str | None = None,
        concurrency: int = 5,
        include_servers: Sequence[str] | None = None,
        exclude_servers: Sequence[str] | None = None,
        dependencies: Sequence[str] | None = None,
    ) -> None:
        if not service_name.strip():
            raise ValidationError("service name is required")
        if concurrency < 1:
            raise ValidationError(f"concurrency must be >= 1 (got {concurrency})")
        self.service_name = service_name
        self.selector = ImageSelector.parse(image)
        self.channel_ref = channel
        self.concurrency = concurrency
        self.include_servers = list(include_servers or [])
        self.exclude_servers = list(exclude_servers or [])
        self.dependencies = list(dependencies or [])

    @property
    def name(self) -> str:
        return f"add-agent {self.service_name}"

    def service_spec(self, image: Image) -> dict[str, Any]:
        return {
            "kind": ServiceKind.AGENT.value,
            "image_id": image.id,
            "dependencies": self.dependencies,
            "params": {"tags": {"role": self.service_name, "type": "core"}},
            "metadata": {"SERVICE_NAME": self.service_name},
        }

    async def prepare(self, ctx: RolloutContext) -> AddAgentServicePlan:
        app = await ctx.ensure_application()
        await check_required_services(ctx, app, self.dependencies)
        channel = await resolve_channel(ctx, self.channel_ref)

        services = await ctx.registry.list_services(name=self.service_name, application_id=app.id)
        service = services[0] if services else None

        resolution = await resolve_image(
            selector=self.selector,
            image_name=ctx.settings.image_name_for(self.service_name),
            channel=channel,
            cache=ctx.cache,
            catalog=ctx.catalog,
        )

        selected = select_servers(
            await ctx.inventory.list_servers(),
            include=self.include_servers,
            exclude=self.exclude_servers,
        )
        servers = [server for server in selected if not self._up_to_date(server, resolution.image)]
        ensure_servers_running(servers)

        return AddAgentServicePlan(
            service_name=self.service_name,
            application=app,
            channel=channel,
            image=resolution.image,
            needs_download=resolution.needs_download,
            service=service,
            servers=tuple(servers),
        )

    def _up_to_date(self, server: Server, image: Image) -> bool:
        agent = server.agent(self.service_name)
        return agent is not None and agent.image_id == image.id

    def summarize(self, plan: AddAgentServicePlan) -> list[str]:
        out: list[str] = []
        if plan.service is None:
            out.append(f'create "{plan.service_name}" service in the service registry')
        if plan.needs_download:
            out.append(
                f"download image {plan.image.label}\n"
                f'    from updates server using channel "{plan.channel}"'
            )
        if plan.service_outdated:
            out.append(f'update service "{plan.service_name}" in the service registry\n    to image {plan.image.label}')
        if plan.servers:
            out.append(f'create "{plan.service_name}" service instance on {plural(len(plan.servers), "server")}')
        return out

    async def execute(self, plan: AddAgentServicePlan, ctx: RolloutContext) -> None:
        # Fail-fast prerequisites: any error aborts the procedure.
        app = await ctx.ensure_application()
        if plan.needs_download:
            await download_image(ctx, plan.image, channel=plan.channel)
        await self._create_or_update_service(plan, app, ctx)

        # Fail-tolerant fan-out: every server is attempted before raising.
        await self._install_on_servers(plan, ctx)

    async def _create_or_update_service(self, plan: AddAgentServicePlan, app: Application, ctx: RolloutContext) -> Service:
        services = await ctx.registry.list_services(name=self.service_name, application_id=app.id)
        if not services:
            ctx.ui.info(f'Creating "{self.service_name}" service')
            service = await ctx.registry.create_service(self.service_name, app.id, self.service_spec(plan.image))
            logger.info("created %s service %s", self.service_name, service.id)
            return service

        service = services[0]
        if service.image_id != plan.image.id:
            ctx.ui.info(f'Updating "{self.service_name}" service image')
            service = await ctx.registry.update_service(service.id, {"image_id": plan.image.id})
        return service

    async def _install_on_servers(self, plan: AddAgentServicePlan, ctx: RolloutContext) -> None:
        if not plan.servers:
            return
        if ctx.tasks is None:
            raise ValidationError("a node task client is required to install agents")

        current = {server.id: server for server in await ctx.inventory.list_servers()}
        targets: list[Server] = []
        for server in plan.servers:
            latest = current.get(server.id)
            if latest is None:
                logger.warning("server %s is no longer in the inventory, skipping", server.label)
            elif not self._up_to_date(latest, plan.image):
                targets.append(server)
        if not targets:
            return

        tasks = ctx.tasks
        settings = ctx.settings

        async def install_agent(server: Server) -> None:
            logger.debug("installing %s instance on server %s", self.service_name, server.id)
            task_id = await tasks.submit_task(
                f"/servers/{server.id}/install-agent",
                {"service": self.service_name, "image_id": plan.image.id},
            )
            logger.debug("waiting for install-agent task %s on server %s", task_id, server.id)
            try:
                await wait_task(
                    tasks,
                    task_id,
                    timeout=settings.task_timeout_seconds,
                    interval=settings.task_poll_interval_seconds,
                    target=server.id,
                    hostname=server.hostname,
                )
            except TaskFailure as exc:
                raise TaskFailure(
                    f"install on server {server.label} failed: {exc}",
                    target=server.id,
                    hostname=server.hostname,
                ) from exc
            except OperationTimeoutError as exc:
                raise OperationTimeoutError(
                    f"install on server {server.label} failed: {exc}",
                    target=server.id,
                    timeout=exc.timeout,
                ) from exc

        ctx.ui.bar_start(f"Installing {self.service_name}", len(targets))
        try:
            outcome = await run_bounded(
                targets,
                install_agent,
                concurrency=self.concurrency,
                identify=lambda server: server.label,
                on_complete=lambda _server, completed: ctx.ui.bar_advance(completed),
            )
        finally:
            ctx.ui.bar_end()

        if outcome.failures:
            ctx.ui.info(
                f'"{self.service_name}" install failed on {plural(len(outcome.failures), "server")} '
                f"of {len(targets)}."
            )
        else:
            ctx.ui.info(f'Successfully installed "{self.service_name}" on all servers.')
        outcome.raise_for_errors()
