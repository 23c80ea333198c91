"""Construcción del `RolloutContext` con los clientes HTTP reales.

Por qué aquí:
- La CLI no debería conocer cada cliente; solo pide un contexto listo.
- Garantiza que todos los `httpx.AsyncClient` se cierran al terminar.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from adapters.images import HttpImageCache, HttpImageCatalog
from adapters.inventory import HttpFleetInventory, HttpNodeTaskClient
from adapters.registry import HttpServiceRegistry
from adapters.remote_exec import HttpRemoteTransport
from core.config import AppSettings
from core.interfaces.clients import ProgressSink
from core.services.context import RolloutContext, SilentProgress


@asynccontextmanager
async def open_context(settings: AppSettings, ui: ProgressSink | None = None) -> AsyncIterator[RolloutContext]:
    async with AsyncExitStack() as stack:
        registry = await stack.enter_async_context(HttpServiceRegistry(settings))
        cache = await stack.enter_async_context(HttpImageCache(settings))
        catalog = await stack.enter_async_context(HttpImageCatalog(settings))
        inventory = await stack.enter_async_context(HttpFleetInventory(settings))
        tasks = await stack.enter_async_context(HttpNodeTaskClient(settings))
        yield RolloutContext(
            settings=settings,
            registry=registry,
            cache=cache,
            catalog=catalog,
            inventory=inventory,
            tasks=tasks,
            transport=HttpRemoteTransport(settings),
            ui=ui or SilentProgress(),
        )
