"""Procedure for updating an agent shipped as a shell installer.

`prepare` diffs the registry and inventory against the resolved image and
produces a list of `Change`s; `execute` applies them one by one. Per
change: prerequisites, image import and service record are fail-fast; the
download and install phases run on every discovered node and only raise
once all of them have been attempted.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Sequence

from core.domain.models import (
    Application,
    Change,
    ChangeKind,
    Image,
    Instance,
    Server,
    Service,
    ServiceKind,
)
from core.domain.selectors import ImageSelector
from core.errors import RolloutError, ValidationError
from core.interfaces.procedure import ProcedurePlan
from core.services.bounded_queue import raise_collected
from core.services.context import RolloutContext
from core.services.image_resolution import resolve_image
from core.services.procedures.common import (
    check_required_services,
    plural,
    resolve_channel,
    select_servers,
)
from core.services.procedures.download_images import download_image
from core.services.remote_execution import RemoteExecutionChannel

logger = logging.getLogger(__name__)

REMOTE_WORK_DIR = "/var/tmp"


def indent(text: str, width: int = 4) -> str:
    return " " * width + text


def _runs_image(server: Server, service_name: str, image: Image) -> bool:
    agent = server.agent(service_name)
    return agent is not None and agent.image_id == image.id


def plan_agent_changes(
    *,
    service_name: str,
    service: Service | None,
    instances: Sequence[Instance],
    servers: Sequence[Server],
    image: Image,
    needs_download: bool,
) -> list[Change]:
    """Compute what must change for `servers` to run `image`.

    - no service: create it, then create instances on every target server;
    - service on another image: update it, with its outdated instances;
    - service already on `image`: update each outdated instance;
    - target servers without an instance: create instances there.

    A server whose installed agent already runs `image` is up to date,
    whatever its registry instance says.
    """

    by_server = {instance.server_id: instance for instance in instances}
    pending = [server for server in servers if not _runs_image(server, service_name, image)]
    hostnames = {server.id: server.hostname for server in servers}
    common: dict[str, Any] = {"service_name": service_name, "image": image, "needs_download": needs_download}

    if service is None:
        changes = [Change(kind=ChangeKind.CREATE_SERVICE, **common)]
        if pending:
            changes.append(Change(kind=ChangeKind.CREATE_INSTANCES, servers=tuple(pending), **common))
        return changes

    outdated = [
        by_server[server.id].model_copy(update={"hostname": hostnames[server.id]})
        for server in pending
        if server.id in by_server and by_server[server.id].image_id != image.id
    ]
    outdated_servers = tuple(server for server in pending if server.id in {i.server_id for i in outdated})
    missing = tuple(server for server in pending if server.id not in by_server)

    changes: list[Change] = []
    if service.image_id != image.id:
        changes.append(
            Change(
                kind=ChangeKind.UPDATE_SERVICE,
                service=service,
                instances=tuple(outdated),
                servers=outdated_servers,
                **common,
            )
        )
    else:
        for instance in outdated:
            server = next(s for s in outdated_servers if s.id == instance.server_id)
            changes.append(
                Change(
                    kind=ChangeKind.UPDATE_INSTANCE,
                    service=service,
                    instances=(instance,),
                    servers=(server,),
                    **common,
                )
            )
    if missing:
        changes.append(Change(kind=ChangeKind.CREATE_INSTANCES, service=service, servers=missing, **common))
    return changes


class UpdateAgentPlan(ProcedurePlan):
    service_name: str
    channel: str
    changes: tuple[Change, ...] = ()

    @property
    def nothing_to_do(self) -> bool:
        return not self.changes


class UpdateAgentProcedure:
    def __init__(
        self,
        service_name: str,
        *,
        image: str | None = None,
        channel: str | None = None,
        concurrency: int = 5,
        include_servers: Sequence[str] | None = None,
        exclude_servers: Sequence[str] | None = None,
        requires: Sequence[str] | None = None,
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
        self.requires = list(requires or [])

    @property
    def name(self) -> str:
        return f"update-agent {self.service_name}"

    async def prepare(self, ctx: RolloutContext) -> UpdateAgentPlan:
        app = await ctx.ensure_application()
        await check_required_services(ctx, app, self.requires)
        channel = await resolve_channel(ctx, self.channel_ref)

        services = await ctx.registry.list_services(name=self.service_name, application_id=app.id)
        service = services[0] if services else None
        instances = await ctx.registry.list_instances(service_id=service.id) if service else []

        resolution = await resolve_image(
            selector=self.selector,
            image_name=ctx.settings.image_name_for(self.service_name),
            channel=channel,
            cache=ctx.cache,
            catalog=ctx.catalog,
        )
        servers = select_servers(
            await ctx.inventory.list_servers(),
            include=self.include_servers,
            exclude=self.exclude_servers,
        )

        changes = plan_agent_changes(
            service_name=self.service_name,
            service=service,
            instances=instances,
            servers=servers,
            image=resolution.image,
            needs_download=resolution.needs_download,
        )
        return UpdateAgentPlan(service_name=self.service_name, channel=channel, changes=tuple(changes))

    def summarize(self, plan: UpdateAgentPlan) -> list[str]:
        out: list[str] = []
        for change in plan.changes:
            img = change.image
            if change.kind is ChangeKind.CREATE_SERVICE:
                lines = [f'create "{change.service_name}" service in the service registry']
                if change.needs_download:
                    lines.append(indent(f'after downloading image {img.label} from channel "{plan.channel}"'))
            elif change.kind is ChangeKind.UPDATE_SERVICE:
                lines = [
                    f'update "{change.service_name}" service to image {img.id}',
                    indent(f"{img.name}@{img.version}"),
                    indent(f"in {plural(len(change.servers), 'server')}"),
                ]
            elif change.kind is ChangeKind.UPDATE_INSTANCE:
                instance = change.instances[0]
                lines = [
                    f'update "{instance.id}" instance of "{change.service_name}" service',
                    indent(f"to image {img.label}"),
                ]
            elif len(change.servers) > 1:
                lines = [
                    f'create new instances of "{change.service_name}" service',
                    indent(f"using image {img.label}"),
                    indent(f"on {len(change.servers)} servers:"),
                    indent(", ".join(server.label for server in change.servers), 8),
                ]
            else:
                lines = [
                    f'create a new instance of "{change.service_name}" service',
                    indent(f"on server {change.servers[0].label}"),
                    indent(f"using image {img.label}"),
                ]
            out.append("\n".join(lines))
        return out

    async def execute(self, plan: UpdateAgentPlan, ctx: RolloutContext) -> None:
        for change in plan.changes:
            logger.debug("applying %s change for %s", change.kind.value, change.service_name)
            await self._apply(change, plan.channel, ctx)

    async def _apply(self, change: Change, channel_name: str, ctx: RolloutContext) -> None:
        app = await ctx.ensure_application()
        await check_required_services(ctx, app, self.requires)
        if change.needs_download:
            await download_image(ctx, change.image, channel=channel_name)
        service = await self._get_or_create_service(change, app, ctx)
        if change.kind is ChangeKind.UPDATE_SERVICE and service.image_id != change.image.id:
            ctx.ui.info(f'Updating "{change.service_name}" service in the service registry')
            service = await ctx.registry.update_service(service.id, {"image_id": change.image.id})

        all_servers = await ctx.inventory.list_servers()
        if change.kind is ChangeKind.UPDATE_SERVICE:
            await self._drop_stale_instances(service, all_servers, ctx)

        targets = self._validate_targets(change, all_servers)
        if not targets:
            return

        if ctx.transport is None:
            raise ValidationError("a remote execution transport is required to update agents")

        settings = ctx.settings
        async with RemoteExecutionChannel.open(ctx.transport, ui=ctx.ui, concurrency=self.concurrency) as remote:
            ctx.ui.info("Checking servers availability")
            discovery = await remote.discover(targets, timeout=settings.discovery_timeout_seconds)
            if not discovery.available:
                return

            filepath = await self._stage_installer(change, ctx)
            try:
                await self._run_installer(change, filepath.name, discovery.available, remote, ctx)
            finally:
                ctx.ui.info(f"Deleting temporary {filepath}")
                try:
                    filepath.unlink(missing_ok=True)
                except OSError as exc:
                    logger.warning("could not unlink %s: %s", filepath, exc)

    async def _get_or_create_service(self, change: Change, app: Application, ctx: RolloutContext) -> Service:
        services = await ctx.registry.list_services(name=change.service_name, application_id=app.id)
        if services:
            return services[0]
        ctx.ui.info(f'Creating "{change.service_name}" service')
        return await ctx.registry.create_service(
            change.service_name,
            app.id,
            {"kind": ServiceKind.AGENT.value, "image_id": change.image.id},
        )

    async def _drop_stale_instances(self, service: Service, all_servers: Sequence[Server], ctx: RolloutContext) -> None:
        """Delete registry instances whose server left the inventory."""

        known = {server.id for server in all_servers}
        stale = [i for i in await ctx.registry.list_instances(service_id=service.id) if i.server_id not in known]
        if not stale:
            return
        ctx.ui.info(f"Removing {plural(len(stale), 'stale instance')} of \"{service.name}\"")
        for instance in stale:
            await ctx.registry.delete_instance(instance.id)

    def _validate_targets(self, change: Change, all_servers: Sequence[Server]) -> list[Server]:
        by_id = {server.id: server for server in all_servers}
        targets: list[Server] = []
        not_found: list[str] = []
        not_setup: list[str] = []
        for planned in change.servers:
            server = by_id.get(planned.id)
            if server is None:
                not_found.append(planned.label)
                continue
            if not server.setup:
                not_setup.append(server.label)
                continue
            agent = server.agent(change.service_name)
            if agent is not None and agent.image_id == change.image.id:
                logger.debug("server %s already runs %s", server.label, change.image.id)
                continue
            if server not in targets:
                targets.append(server)

        total = len(change.servers)
        if not_found:
            logger.error("%d of %d selected servers were not found in the inventory: %s",
                         len(not_found), total, ", ".join(not_found))
        if not_setup:
            logger.error("%d of %d selected servers are not setup: %s", len(not_setup), total, ", ".join(not_setup))
        return targets

    async def _stage_installer(self, change: Change, ctx: RolloutContext) -> Path:
        """Fetch the installer from the local cache and publish it to the assets dir."""

        settings = ctx.settings
        filepath = settings.download_dir / f"{change.service_name}-{change.image.id}.sh"
        ctx.ui.info("Getting image file from local image cache")
        await ctx.cache.get_image_file(change.image.id, filepath)

        assets_dir = settings.assets_dir / change.service_name
        ctx.ui.info(f"Copying {change.service_name} to assets dir: {assets_dir}")
        try:
            await asyncio.to_thread(assets_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, filepath, assets_dir / filepath.name)
        except OSError as exc:
            raise RolloutError(f"error copying {filepath} to {assets_dir}: {exc}") from exc
        return filepath

    async def _run_installer(
        self,
        change: Change,
        fname: str,
        servers: Sequence[Server],
        channel: RemoteExecutionChannel,
        ctx: RolloutContext,
    ) -> None:
        settings = ctx.settings
        svc = change.service_name
        if change.kind is ChangeKind.CREATE_INSTANCES:
            ctx.ui.info(f"Starting {svc} instance creation")
        else:
            ctx.ui.info(f"Starting {svc} update on {plural(len(servers), 'server')}")

        url = f"{settings.assets_base_url.rstrip('/')}/{svc}/{fname}"
        log_file = f"{REMOTE_WORK_DIR}/{fname}_{uuid.uuid4()}_install.log"
        download_cmd = "\n".join([
            f"cd {REMOTE_WORK_DIR};",
            "",
            f"/usr/bin/curl -kOsf {url}",
            'if [[ "$?" -ne "0" ]]; then',
            "   exit 22",
            "fi",
            "",
        ])
        install_cmd = "\n".join([
            f"cd {REMOTE_WORK_DIR};",
            "",
            f"/usr/bin/bash {REMOTE_WORK_DIR}/{fname} </dev/null >{log_file} 2>&1",
            'if [[ "$?" -ne "0" ]]; then',
            "   exit 30",
            "fi",
            "",
        ])

        downloaded = await channel.run_phase(
            servers,
            download_cmd,
            name=f"Downloading {svc}",
            timeout=settings.download_timeout_seconds,
        )
        installed = await channel.run_phase(
            downloaded.succeeded,
            install_cmd,
            name=f"Installing {svc}",
            timeout=settings.install_timeout_seconds,
            log_file=log_file,
        )

        failures = downloaded.failures + installed.failures
        if failures:
            ctx.ui.info(f'"{svc}" update failed on {plural(len(failures), "server")} of {len(servers)}.')
        else:
            ctx.ui.info(f'Successfully updated "{svc}" on {plural(len(servers), "server")}.')
        raise_collected(failures)
