"""
Tests cover:
- prepare keeps only images missing from the local cache
- summary wording and channel
- execute imports every missing image once
"""

import pytest

from core.errors import AggregateError
from core.services.procedures import DownloadImagesProcedure
from fakes import NEW_ID, NEW_IMAGE, OLD_ID, OLD_IMAGE


@pytest.mark.asyncio
async def test_prepare_skips_cached_images(make_fleet):
    fleet = make_fleet(cached=[OLD_IMAGE], published=[OLD_IMAGE, NEW_IMAGE])
    procedure = DownloadImagesProcedure([OLD_IMAGE, NEW_IMAGE], channel="beta")

    plan = await procedure.prepare(fleet.context())

    assert plan.channel == "beta"
    assert [image.id for image in plan.images] == [NEW_ID]
    assert procedure.summarize(plan) == [f'download image {NEW_IMAGE.label}\n    from updates server using channel "beta"']


@pytest.mark.asyncio
async def test_service_selector_resolves_and_imports(make_fleet):
    fleet = make_fleet(published=[OLD_IMAGE, NEW_IMAGE])
    procedure = DownloadImagesProcedure(service_name="logger", image="1.0")
    ctx = fleet.context()

    plan = await procedure.prepare(ctx)
    await procedure.execute(plan, ctx)

    assert fleet.cache.imports == [(OLD_ID, "stable")]
    assert fleet.ui.bars == [("Downloading images", 1)]
    assert (await procedure.prepare(ctx)).nothing_to_do


@pytest.mark.asyncio
async def test_failed_imports_are_aggregated(make_fleet):
    fleet = make_fleet(published=[OLD_IMAGE, NEW_IMAGE])

    async def broken_import(image, *, channel):
        raise ConnectionError(f"cannot import {image.version}")

    fleet.cache.import_image = broken_import
    procedure = DownloadImagesProcedure([OLD_IMAGE, NEW_IMAGE])
    ctx = fleet.context()

    with pytest.raises(AggregateError) as info:
        await procedure.execute(await procedure.prepare(ctx), ctx)

    assert sorted(info.value.targets) == sorted([OLD_IMAGE.label, NEW_IMAGE.label])
    assert fleet.ui.open_bars == 0
