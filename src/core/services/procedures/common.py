"""Helpers shared by the procedures' prepare/execute pipelines."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from core.domain.models import Application, Server
from core.errors import NotFoundError, ValidationError
from core.services.context import RolloutContext

logger = logging.getLogger(__name__)

CLI_NAME = "fleet-rollout"


async def check_required_services(ctx: RolloutContext, app: Application, names: Sequence[str]) -> None:
    """Fail with remediation instructions when a required service is missing."""

    if not names:
        return

    found = await asyncio.gather(
        *(ctx.registry.list_services(name=name, application_id=app.id) for name in names)
    )
    missing = [name for name, services in zip(names, found) if not services]
    if not missing:
        return

    if len(missing) == 1:
        message = f'The "{missing[0]}" service is required'
        remediation = f"Please, install it with `{CLI_NAME} add-agent {missing[0]}`."
    else:
        quoted = '", "'.join(missing)
        message = f'The "{quoted}" services are required'
        lines = ["Please, install them with:"]
        lines.extend(f"`{CLI_NAME} add-agent {name}`" for name in missing)
        remediation = "\n".join(lines)
    raise NotFoundError(message, remediation=remediation)


async def resolve_channel(ctx: RolloutContext, channel: str | None) -> str:
    """Explicit channel, then the configured one, then the catalog default."""

    if channel and channel != "default":
        return channel
    if ctx.settings.default_channel:
        return ctx.settings.default_channel
    return await ctx.catalog.get_default_channel()


def select_servers(
    servers: Sequence[Server],
    *,
    include: Sequence[str] | None = None,
    exclude: Sequence[str] | None = None,
) -> list[Server]:
    """Pick target servers by id or hostname.

    Without `include`, every set-up server is a target. Unknown or not
    set-up names in `include` are rejected.
    """

    if include:
        wanted = list(dict.fromkeys(include))
        by_key: dict[str, Server] = {}
        for server in servers:
            by_key[server.id] = server
            by_key[server.hostname] = server

        unknown = [name for name in wanted if name not in by_key]
        if unknown:
            raise ValidationError(f"unknown servers: {', '.join(unknown)}")

        selected: list[Server] = []
        for name in wanted:
            server = by_key[name]
            if server not in selected:
                selected.append(server)

        not_setup = [server.label for server in selected if not server.setup]
        if not_setup:
            raise ValidationError(f"servers are not setup: {', '.join(not_setup)}")
    else:
        selected = [server for server in servers if server.setup]

    if exclude:
        skip = set(exclude)
        selected = [server for server in selected if server.id not in skip and server.hostname not in skip]

    return selected


def ensure_servers_running(servers: Sequence[Server]) -> None:
    not_running = [server for server in servers if server.status != "running"]
    if not_running:
        details = ", ".join(f"{server.label}: {server.status}" for server in not_running)
        raise ValidationError(f"{len(not_running)} selected servers are not running: {details}")


def plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"
