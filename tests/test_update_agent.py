"""
Tests cover:
- change planning (create / update service / update instance / create instances)
- rollout on 5 servers where one install exits non-zero: one error naming
  the host, the service record updated, the other servers updated
- non-responding servers are skipped and reported
- a failed download skips the install phase on that server
- stale instances are removed when the service moves to a new image
- re-running after success has nothing to do
- a failed image import leaves the registry untouched
- servers already running the image are not planned again
"""

import pytest

from core.domain.models import ChangeKind, Instance, Service
from core.errors import (
    AggregateError,
    CollaboratorError,
    ProcedureFailedError,
    RemoteProtocolError,
    TaskFailure,
    ValidationError,
)
from core.services.orchestrator import RolloutOrchestrator
from core.services.procedures import UpdateAgentProcedure, plan_agent_changes
from fakes import APP, NEW_ID, NEW_IMAGE, OLD_ID, OLD_IMAGE, make_servers


def seed_logger(fleet, servers, image_id=OLD_ID):
    service = fleet.registry.add_service(
        Service(id="svc-logger", name="logger", application_id=APP.id, image_id=image_id)
    )
    for index, server in enumerate(servers, start=1):
        fleet.registry.add_instance(
            Instance(id=f"inst-{index}", service_id=service.id, server_id=server.id, image_id=image_id)
        )
    return service


def old_fleet(make_fleet, count, **kwargs):
    servers = make_servers(count, agent="logger", image_id=OLD_ID)
    fleet = make_fleet(servers=servers, cached=[OLD_IMAGE], published=[OLD_IMAGE, NEW_IMAGE], **kwargs)
    seed_logger(fleet, servers)
    fleet.transport.on_install = fleet.installer("logger", NEW_ID)
    return fleet


def test_plan_without_service():
    servers = make_servers(2)
    changes = plan_agent_changes(
        service_name="logger", service=None, instances=[], servers=servers, image=NEW_IMAGE, needs_download=True
    )

    assert [c.kind for c in changes] == [ChangeKind.CREATE_SERVICE, ChangeKind.CREATE_INSTANCES]
    assert changes[1].servers == tuple(servers)
    assert all(c.needs_download for c in changes)


def test_plan_service_on_another_image():
    servers = make_servers(3)
    service = Service(id="svc-1", name="logger", image_id=OLD_ID)
    instances = [
        Instance(id="i-1", service_id="svc-1", server_id="srv-1", image_id=OLD_ID),
        Instance(id="i-2", service_id="svc-1", server_id="srv-2", image_id=NEW_ID),
    ]

    changes = plan_agent_changes(
        service_name="logger", service=service, instances=instances, servers=servers, image=NEW_IMAGE, needs_download=False
    )

    assert [c.kind for c in changes] == [ChangeKind.UPDATE_SERVICE, ChangeKind.CREATE_INSTANCES]
    assert [i.id for i in changes[0].instances] == ["i-1"]
    assert changes[0].instances[0].hostname == "node-1"
    assert [s.id for s in changes[1].servers] == ["srv-3"]


def test_plan_outdated_instances_of_current_service():
    servers = make_servers(2)
    service = Service(id="svc-1", name="logger", image_id=NEW_ID)
    instances = [
        Instance(id="i-1", service_id="svc-1", server_id="srv-1", image_id=OLD_ID),
        Instance(id="i-2", service_id="svc-1", server_id="srv-2", image_id=OLD_ID),
    ]

    changes = plan_agent_changes(
        service_name="logger", service=service, instances=instances, servers=servers, image=NEW_IMAGE, needs_download=False
    )

    assert [c.kind for c in changes] == [ChangeKind.UPDATE_INSTANCE, ChangeKind.UPDATE_INSTANCE]
    assert [c.servers[0].id for c in changes] == ["srv-1", "srv-2"]


def test_plan_up_to_date():
    servers = make_servers(1)
    service = Service(id="svc-1", name="logger", image_id=NEW_ID)
    instances = [Instance(id="i-1", service_id="svc-1", server_id="srv-1", image_id=NEW_ID)]

    assert plan_agent_changes(
        service_name="logger", service=service, instances=instances, servers=servers, image=NEW_IMAGE, needs_download=False
    ) == []


def test_plan_skips_servers_already_running_the_image():
    servers = make_servers(2, agent="logger", image_id=NEW_ID)
    service = Service(id="svc-1", name="logger", image_id=NEW_ID)
    instances = [Instance(id="i-1", service_id="svc-1", server_id="srv-1", image_id=OLD_ID)]

    assert plan_agent_changes(
        service_name="logger", service=service, instances=instances, servers=servers, image=NEW_IMAGE, needs_download=False
    ) == []


@pytest.mark.asyncio
async def test_summary_for_service_update(make_fleet):
    fleet = old_fleet(make_fleet, 2)
    procedure = UpdateAgentProcedure("logger")

    plan = await procedure.prepare(fleet.context())

    assert procedure.summarize(plan) == [
        f'update "logger" service to image {NEW_ID}\n    logger@2.0\n    in 2 servers'
    ]


@pytest.mark.asyncio
async def test_one_failing_install_out_of_five(make_fleet):
    fleet = old_fleet(make_fleet, 5, exit_statuses={("srv-3", "install"): 30}, delay=0.005)
    procedure = UpdateAgentProcedure("logger", concurrency=2)
    ctx = fleet.context()
    plan = await procedure.prepare(ctx)

    with pytest.raises(TaskFailure) as info:
        await procedure.execute(plan, ctx)

    assert not isinstance(info.value, AggregateError)
    assert info.value.hostname == "node-3"
    assert "node-3" in str(info.value)
    assert "exit status 30" in str(info.value)
    assert fleet.registry.services["svc-logger"].image_id == NEW_ID
    assert fleet.cache.imports == [(NEW_ID, "stable")]
    for server_id, server in fleet.inventory.servers.items():
        expected = OLD_ID if server_id == "srv-3" else NEW_ID
        assert server.agent("logger").image_id == expected
    assert fleet.transport.peak_running <= 2
    assert fleet.transport.connections[0].closed


@pytest.mark.asyncio
async def test_installer_is_staged_and_temp_file_removed(make_fleet, settings):
    fleet = old_fleet(make_fleet, 2)
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()

    await procedure.execute(await procedure.prepare(ctx), ctx)

    fname = f"logger-{NEW_ID}.sh"
    assert (settings.assets_dir / "logger" / fname).exists()
    assert not (settings.download_dir / fname).exists()
    assert sorted(fleet.transport.commands) == [
        ("srv-1", "download"),
        ("srv-1", "install"),
        ("srv-2", "download"),
        ("srv-2", "install"),
    ]


@pytest.mark.asyncio
async def test_unreachable_servers_are_skipped(make_fleet):
    fleet = old_fleet(make_fleet, 3, unreachable=["srv-2"])
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()

    await procedure.execute(await procedure.prepare(ctx), ctx)

    assert all(node != "srv-2" for node, _ in fleet.transport.commands)
    assert any("srv-2 (node-2)" in message for message in fleet.ui.errors)
    assert fleet.inventory.servers["srv-2"].agent("logger").image_id == OLD_ID
    assert fleet.inventory.servers["srv-1"].agent("logger").image_id == NEW_ID


@pytest.mark.asyncio
async def test_failed_download_skips_install(make_fleet):
    fleet = old_fleet(
        make_fleet,
        3,
        exit_statuses={("srv-1", "download"): 22, ("srv-2", "install"): 30},
    )
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()

    with pytest.raises(AggregateError) as info:
        await procedure.execute(await procedure.prepare(ctx), ctx)

    assert ("srv-1", "install") not in fleet.transport.commands
    assert sorted(info.value.targets) == ["srv-1 (node-1)", "srv-2 (node-2)"]
    assert "exit status 22" in str(info.value)


@pytest.mark.asyncio
async def test_stale_instances_are_removed(make_fleet):
    fleet = old_fleet(make_fleet, 2)
    fleet.registry.add_instance(Instance(id="inst-gone", service_id="svc-logger", server_id="srv-99", image_id=OLD_ID))
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()

    await procedure.execute(await procedure.prepare(ctx), ctx)

    assert ("delete_instance", "inst-gone") in fleet.registry.calls
    assert "inst-gone" not in fleet.registry.instances


@pytest.mark.asyncio
async def test_rerun_after_success_has_nothing_to_do(make_fleet):
    fleet = old_fleet(make_fleet, 3)
    ctx = fleet.context()

    await RolloutOrchestrator([UpdateAgentProcedure("logger")]).run(ctx)
    commands = list(fleet.transport.commands)
    calls = list(fleet.registry.calls)

    report = await RolloutOrchestrator([UpdateAgentProcedure("logger")]).run(ctx)

    assert report.completed == []
    assert fleet.ui.infos[-1] == "Nothing to do."
    assert fleet.transport.commands == commands
    assert fleet.registry.calls == calls


@pytest.mark.asyncio
async def test_new_agent_is_created_then_installed(make_fleet):
    fleet = make_fleet(servers=make_servers(2), published=[NEW_IMAGE])
    fleet.transport.on_install = fleet.installer("logger", NEW_ID)
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()

    plan = await procedure.prepare(ctx)
    assert [c.kind for c in plan.changes] == [ChangeKind.CREATE_SERVICE, ChangeKind.CREATE_INSTANCES]

    await procedure.execute(plan, ctx)

    assert fleet.registry.calls == [("create_service", "logger")]
    assert len(fleet.registry.instances) == 2
    assert fleet.cache.imports == [(NEW_ID, "stable")]


@pytest.mark.asyncio
async def test_broken_channel_fails_the_procedure(make_fleet):
    fleet = old_fleet(make_fleet, 2)
    fleet.transport.broken_channel.add("srv-1")

    with pytest.raises(ProcedureFailedError) as info:
        await RolloutOrchestrator([UpdateAgentProcedure("logger", concurrency=1)]).run(fleet.context())

    assert isinstance(info.value.__cause__, RemoteProtocolError)


@pytest.mark.asyncio
async def test_transport_is_required(make_fleet):
    fleet = old_fleet(make_fleet, 1)
    ctx = fleet.context()
    ctx.transport = None
    procedure = UpdateAgentProcedure("logger")

    with pytest.raises(ValidationError, match="transport"):
        await procedure.execute(await procedure.prepare(ctx), ctx)


@pytest.mark.asyncio
async def test_failed_import_leaves_registry_untouched(make_fleet):
    fleet = make_fleet(servers=make_servers(2), published=[NEW_IMAGE])

    async def refused_import(image, *, channel):
        raise CollaboratorError("image cache", "import refused")

    fleet.cache.import_image = refused_import
    procedure = UpdateAgentProcedure("logger")
    ctx = fleet.context()
    plan = await procedure.prepare(ctx)

    with pytest.raises(CollaboratorError):
        await procedure.execute(plan, ctx)

    assert fleet.registry.calls == []
    assert fleet.registry.service_named("logger") is None
    assert fleet.transport.commands == []


@pytest.mark.asyncio
async def test_stale_registry_instance_converges(make_fleet):
    servers = make_servers(1, agent="logger", image_id=NEW_ID)
    fleet = make_fleet(servers=servers, cached=[NEW_IMAGE], published=[NEW_IMAGE])
    fleet.registry.add_service(Service(id="svc-logger", name="logger", application_id=APP.id, image_id=NEW_ID))
    fleet.registry.add_instance(Instance(id="inst-1", service_id="svc-logger", server_id="srv-1", image_id=OLD_ID))
    ctx = fleet.context()

    for _ in range(2):
        report = await RolloutOrchestrator([UpdateAgentProcedure("logger")]).run(ctx)
        assert report.completed == []
        assert fleet.ui.infos[-1] == "Nothing to do."

    assert fleet.transport.commands == []
    assert fleet.registry.calls == []
