from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Sequence

import pytest

from core.config import AppSettings
from core.domain.models import Image, Server
from core.services.context import RolloutContext
from fakes import (
    APP,
    FakeImageCache,
    FakeImageCatalog,
    FakeInventory,
    FakeRegistry,
    FakeTaskClient,
    FakeTransport,
    RecordingUI,
)


@dataclass
class Fleet:
    settings: AppSettings
    registry: FakeRegistry
    cache: FakeImageCache
    catalog: FakeImageCatalog
    inventory: FakeInventory
    tasks: FakeTaskClient
    transport: FakeTransport
    ui: RecordingUI

    def context(self) -> RolloutContext:
        return RolloutContext(
            settings=self.settings,
            registry=self.registry,
            cache=self.cache,
            catalog=self.catalog,
            inventory=self.inventory,
            tasks=self.tasks,
            transport=self.transport,
            ui=self.ui,
        )

    def installer(self, service_name: str, image_id: str) -> Callable[[str], None]:
        """Hook for `FakeTransport.on_install`: reflect a successful install."""

        def installed(node_id: str) -> None:
            server = self.inventory.install_agent(node_id, service_name, image_id)
            self.registry.set_instance_image(service_name, server, image_id)

        return installed


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        scope_name="fleet",
        download_dir=tmp_path / "downloads",
        assets_dir=tmp_path / "assets",
        assets_base_url="http://assets.test/extra",
        task_timeout_seconds=2,
        task_poll_interval_seconds=0.01,
        discovery_timeout_seconds=1,
        download_timeout_seconds=2,
        install_timeout_seconds=2,
    )


@pytest.fixture
def make_fleet(settings) -> Callable[..., Fleet]:
    def build(
        *,
        servers: Sequence[Server] = (),
        cached: Sequence[Image] = (),
        published: Sequence[Image] = (),
        failing_tasks: Sequence[str] = (),
        **transport_kwargs: Any,
    ) -> Fleet:
        registry = FakeRegistry([APP])
        inventory = FakeInventory(servers)
        return Fleet(
            settings=settings,
            registry=registry,
            cache=FakeImageCache(cached),
            catalog=FakeImageCatalog(published),
            inventory=inventory,
            tasks=FakeTaskClient(inventory, registry, failing=failing_tasks),
            transport=FakeTransport(**transport_kwargs),
            ui=RecordingUI(),
        )

    return build
