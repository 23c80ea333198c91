"""Image resolution: turn an image selector into a concrete image.

Each selector branch sets both the resolved image and whether it has to be
downloaded from the remote catalog into the local cache; a branch that
cannot resolve raises `NotFoundError` (or `ImageMismatchError` for an id
pointing at another service's image).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from core.domain.models import Image
from core.domain.selectors import ImageSelector, SelectorKind
from core.errors import ImageMismatchError, NotFoundError, ValidationError
from core.interfaces.clients import ImageCache, ImageCatalog

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ImageResolution:
    image: Image
    needs_download: bool


def newest(images: list[Image]) -> Image:
    """Highest-published image; ties keep the collaborator's order."""

    def sort_key(item: tuple[int, Image]) -> tuple[datetime, int]:
        index, image = item
        published = image.published_at or _EPOCH
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return published, index

    return max(enumerate(images), key=sort_key)[1]


def _selector_value(selector: ImageSelector) -> str:
    if not selector.value:
        raise ValidationError(f"image selector '{selector.kind.value}' needs a value")
    return selector.value


async def resolve_image(
    *,
    selector: ImageSelector,
    image_name: str,
    channel: str,
    cache: ImageCache,
    catalog: ImageCatalog,
) -> ImageResolution:
    """Resolve `selector` for images named `image_name`.

    - latest: newest image of `channel` in the catalog; download unless cached.
    - current: newest cached image; never downloads.
    - id: cache first, then catalog; the name must match `image_name`.
    - version: cache by (name, version), then catalog by (name, version).
    """

    if selector.kind is SelectorKind.LATEST:
        images = await catalog.list_images(name=image_name, channel=channel)
        if not images:
            raise NotFoundError(f'no "{image_name}" image found in {channel} channel of updates server')
        image = newest(images)
        cached = await cache.get_image(image.id)
        resolution = ImageResolution(image=image, needs_download=cached is None)

    elif selector.kind is SelectorKind.CURRENT:
        images = await cache.list_images(name=image_name)
        if not images:
            raise NotFoundError(f'no "{image_name}" image found in the local image cache')
        resolution = ImageResolution(image=newest(images), needs_download=False)

    elif selector.kind is SelectorKind.ID:
        value = _selector_value(selector)
        image = await cache.get_image(value)
        from_catalog = image is None
        if image is None:
            image = await catalog.get_image(value, channel=channel)
        if image is None:
            raise NotFoundError(
                f'no image "{value}" was found in the local cache '
                f"or in the {channel} channel of the updates server"
            )
        if image.name != image_name:
            raise ImageMismatchError(value, image.name, image_name)
        resolution = ImageResolution(image=image, needs_download=from_catalog)

    elif selector.kind is SelectorKind.VERSION:
        value = _selector_value(selector)
        local = await cache.list_images(name=image_name, version=value)
        if local:
            resolution = ImageResolution(image=newest(local), needs_download=False)
        else:
            remote = await catalog.list_images(name=image_name, channel=channel, version=value)
            if not remote:
                raise NotFoundError(
                    f'no "{image_name}" image with version "{value}" found '
                    f"in the {channel} channel of the updates server"
                )
            resolution = ImageResolution(image=newest(remote), needs_download=True)

    else:
        raise ValidationError(f"unsupported image selector: {selector.kind}")

    logger.debug(
        "resolved %s image %s -> %s (needs_download=%s)",
        image_name,
        selector,
        resolution.image.label,
        resolution.needs_download,
    )
    return resolution
