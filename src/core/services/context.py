"""Execution context shared by every procedure of a rollout."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from core.config import AppSettings
from core.domain.models import Application
from core.errors import NotFoundError
from core.interfaces.clients import (
    FleetInventory,
    ImageCache,
    ImageCatalog,
    NodeTaskClient,
    ProgressSink,
    RemoteTransport,
    ServiceRegistry,
)

logger = logging.getLogger(__name__)


class SilentProgress:
    """ProgressSink that only forwards to the module logger."""

    def info(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def bar_start(self, name: str, size: int) -> None:
        logger.debug("%s: 0/%d", name, size)

    def bar_advance(self, completed: int) -> None:
        logger.debug("progress: %d", completed)

    def bar_end(self) -> None:
        pass


@dataclass
class RolloutContext:
    """Collaborators handed to `prepare`/`execute`.

    The context holds clients only; it never carries plan state between
    procedures.
    """

    settings: AppSettings
    registry: ServiceRegistry
    cache: ImageCache
    catalog: ImageCatalog
    inventory: FleetInventory
    tasks: NodeTaskClient | None = None
    transport: RemoteTransport | None = None
    ui: ProgressSink = field(default_factory=SilentProgress)

    async def ensure_application(self) -> Application:
        """Return the application scope, failing fast when it is missing."""

        app = await self.registry.get_application(self.settings.scope_name)
        if app is None:
            raise NotFoundError(
                f'application "{self.settings.scope_name}" not found in the service registry',
                remediation="Check FLEET_ROLLOUT_SCOPE_NAME or create the application first.",
            )
        return app
