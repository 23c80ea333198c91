"""
Tests cover:
- discovery splits available / unreachable servers and reports the latter
- discovery timeouts and transport errors
- per-node failures in a phase are collected, not raised
- a broken channel aborts the stream with RemoteProtocolError
- the connection is always closed
"""

import asyncio

import pytest

from core.errors import OperationTimeoutError, RemoteProtocolError, TaskFailure
from core.services import remote_execution
from core.services.remote_execution import RemoteExecutionChannel
from fakes import FakeTransport, RecordingUI, make_servers


@pytest.mark.asyncio
async def test_discovery_skips_non_responders():
    transport = FakeTransport(unreachable=["srv-2"])
    ui = RecordingUI()
    servers = make_servers(3)

    async with RemoteExecutionChannel.open(transport, ui=ui, concurrency=2) as channel:
        discovery = await channel.discover(servers, timeout=1)

    assert [s.id for s in discovery.available] == ["srv-1", "srv-3"]
    assert [s.id for s in discovery.unreachable] == ["srv-2"]
    assert len(ui.errors) == 1
    assert "srv-2 (node-2)" in ui.errors[0]
    assert transport.connections[0].closed


@pytest.mark.asyncio
async def test_discovery_timeout_marks_everyone_unreachable(monkeypatch):
    monkeypatch.setattr(remote_execution, "_GRACE_SECONDS", 0.0)

    class SlowConnection:
        async def discover(self, node_ids, *, timeout):
            await asyncio.sleep(1)
            return list(node_ids)

        async def close(self):
            pass

    class SlowTransport:
        async def open_connection(self):
            return SlowConnection()

    async with RemoteExecutionChannel.open(SlowTransport(), ui=RecordingUI(), concurrency=1) as channel:
        discovery = await channel.discover(make_servers(2), timeout=0.01)

    assert discovery.available == ()
    assert len(discovery.unreachable) == 2


@pytest.mark.asyncio
async def test_discovery_error_is_a_protocol_error():
    transport = FakeTransport()
    transport.discovery_error = ConnectionError("gateway down")

    with pytest.raises(RemoteProtocolError, match="gateway down"):
        async with RemoteExecutionChannel.open(transport, ui=RecordingUI(), concurrency=1) as channel:
            await channel.discover(make_servers(1), timeout=1)

    assert transport.connections[0].closed


@pytest.mark.asyncio
async def test_open_failure_is_a_protocol_error():
    class BrokenTransport:
        async def open_connection(self):
            raise OSError("no route to host")

    with pytest.raises(RemoteProtocolError, match="no route to host"):
        async with RemoteExecutionChannel.open(BrokenTransport(), ui=RecordingUI(), concurrency=1):
            pass


@pytest.mark.asyncio
async def test_run_phase_collects_node_failures():
    transport = FakeTransport(exit_statuses={("srv-2", "install"): 30}, delay=0.01)
    ui = RecordingUI()
    servers = make_servers(4)

    async with RemoteExecutionChannel.open(transport, ui=ui, concurrency=2) as channel:
        outcome = await channel.run_phase(
            servers,
            "/usr/bin/bash /var/tmp/logger.sh",
            name="Installing logger",
            timeout=1,
            log_file="/var/tmp/logger.log",
        )

    assert sorted(s.id for s in outcome.succeeded) == ["srv-1", "srv-3", "srv-4"]
    assert len(outcome.failures) == 1
    target, error = outcome.failures[0]
    assert target == "srv-2 (node-2)"
    assert isinstance(error, TaskFailure)
    assert error.hostname == "node-2"
    assert "exit status 30" in str(error)
    assert "/var/tmp/logger.log" in str(error)
    assert transport.peak_running <= 2
    assert ui.bars == [("Installing logger", 4)]
    assert ui.advances == [1, 2, 3, 4]
    assert ui.open_bars == 0

    with pytest.raises(TaskFailure):
        outcome.raise_for_errors()


@pytest.mark.asyncio
async def test_run_phase_node_timeout_is_a_failure(monkeypatch):
    monkeypatch.setattr(remote_execution, "_GRACE_SECONDS", 0.0)
    transport = FakeTransport(delay=0.2)

    async with RemoteExecutionChannel.open(transport, ui=RecordingUI(), concurrency=2) as channel:
        outcome = await channel.run_phase(make_servers(2), "true", name="Downloading logger", timeout=0.01)

    assert outcome.succeeded == []
    assert all(isinstance(error, OperationTimeoutError) for _, error in outcome.failures)
    assert "srv-1 (node-1)" in str(dict(outcome.failures)["srv-1 (node-1)"])


@pytest.mark.asyncio
async def test_broken_channel_aborts_the_phase():
    transport = FakeTransport(delay=0.01)
    transport.broken_channel.add("srv-1")
    ui = RecordingUI()

    with pytest.raises(RemoteProtocolError):
        async with RemoteExecutionChannel.open(transport, ui=ui, concurrency=1) as channel:
            await channel.run_phase(make_servers(3), "true", name="Downloading logger", timeout=1)

    assert ui.open_bars == 0
    assert transport.connections[0].closed


@pytest.mark.asyncio
async def test_run_phase_without_servers():
    transport = FakeTransport()
    ui = RecordingUI()

    async with RemoteExecutionChannel.open(transport, ui=ui, concurrency=1) as channel:
        outcome = await channel.run_phase([], "true", name="noop", timeout=1)

    assert outcome.succeeded == [] and outcome.failures == []
    assert ui.bars == []
