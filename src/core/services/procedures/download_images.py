"""Procedure to import images from the remote catalog into the local cache."""

from __future__ import annotations

import logging
from typing import Sequence

from core.domain.models import Image
from core.domain.selectors import ImageSelector
from core.interfaces.procedure import ProcedurePlan
from core.services.bounded_queue import run_bounded
from core.services.context import RolloutContext
from core.services.image_resolution import resolve_image
from core.services.procedures.common import resolve_channel

logger = logging.getLogger(__name__)


class DownloadImagesPlan(ProcedurePlan):
    channel: str
    images: tuple[Image, ...] = ()

    @property
    def nothing_to_do(self) -> bool:
        return not self.images


class DownloadImagesProcedure:
    """Download the given images, or the image a selector resolves to.

    Either pass `images`, or `service_name` plus an image selector.
    """

    name = "download-images"

    def __init__(
        self,
        images: Sequence[Image] = (),
        *,
        service_name: str | None = None,
        image: str | None = None,
        channel: str | None = None,
        concurrency: int = 4,
    ) -> None:
        self.images = tuple(images)
        self.service_name = service_name
        self.selector = ImageSelector.parse(image)
        self.channel_ref = channel
        self.concurrency = concurrency

    async def prepare(self, ctx: RolloutContext) -> DownloadImagesPlan:
        channel = await resolve_channel(ctx, self.channel_ref)

        candidates = list(self.images)
        if self.service_name:
            resolution = await resolve_image(
                selector=self.selector,
                image_name=ctx.settings.image_name_for(self.service_name),
                channel=channel,
                cache=ctx.cache,
                catalog=ctx.catalog,
            )
            candidates.append(resolution.image)

        missing: list[Image] = []
        for image in candidates:
            if image in missing:
                continue
            if await ctx.cache.get_image(image.id) is None:
                missing.append(image)
        return DownloadImagesPlan(channel=channel, images=tuple(missing))

    def summarize(self, plan: DownloadImagesPlan) -> list[str]:
        return [
            f"download image {image.label}\n"
            f'    from updates server using channel "{plan.channel}"'
            for image in plan.images
        ]

    async def execute(self, plan: DownloadImagesPlan, ctx: RolloutContext) -> None:
        if plan.nothing_to_do:
            return

        async def import_one(image: Image) -> Image:
            existing = await ctx.cache.get_image(image.id)
            if existing is not None:
                logger.debug("image %s already in local cache", image.id)
                return existing
            ctx.ui.info(f"Importing image {image.label}")
            return await ctx.cache.import_image(image, channel=plan.channel)

        ctx.ui.bar_start("Downloading images", len(plan.images))
        try:
            outcome = await run_bounded(
                plan.images,
                import_one,
                concurrency=self.concurrency,
                identify=lambda image: image.label,
                on_complete=lambda _image, completed: ctx.ui.bar_advance(completed),
            )
        finally:
            ctx.ui.bar_end()
        outcome.raise_for_errors()


async def download_image(ctx: RolloutContext, image: Image, *, channel: str) -> None:
    """Import a single image unless the local cache already has it."""

    if await ctx.cache.get_image(image.id) is not None:
        return
    procedure = DownloadImagesProcedure([image], channel=channel)
    await procedure.execute(DownloadImagesPlan(channel=channel, images=(image,)), ctx)
