"""Remote execution channel: discovery followed by command dispatch.

Discovery filters the requested servers down to the ones that answered the
presence probe in time; non-responders are reported and skipped, not counted
as failures. Dispatch runs one command per discovered node through the
bounded queue and exposes the per-node results as an async stream. A result
event means the command was *delivered*; its exit status is interpreted
separately by `run_phase`.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence

from core.domain.models import CommandResult, Server
from core.errors import OperationTimeoutError, RemoteProtocolError, TaskFailure
from core.interfaces.clients import ProgressSink, RemoteConnection, RemoteTransport
from core.services.bounded_queue import raise_collected, run_bounded

logger = logging.getLogger(__name__)

# extra time granted to the transport before its own timeout is enforced here
_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class DiscoveryResult:
    available: tuple[Server, ...]
    unreachable: tuple[Server, ...]


@dataclass(frozen=True)
class NodeResult:
    server: Server
    result: CommandResult | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.ok


@dataclass
class PhaseOutcome:
    name: str
    succeeded: list[Server] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        raise_collected(self.failures)


class RemoteExecutionChannel:
    def __init__(self, connection: RemoteConnection, *, ui: ProgressSink, concurrency: int) -> None:
        self._conn = connection
        self._ui = ui
        self._concurrency = concurrency

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        transport: RemoteTransport,
        *,
        ui: ProgressSink,
        concurrency: int,
    ) -> AsyncIterator["RemoteExecutionChannel"]:
        try:
            connection = await transport.open_connection()
        except RemoteProtocolError:
            raise
        except Exception as exc:
            logger.debug("remote execution connection error: %s", exc)
            raise RemoteProtocolError(f"remote execution connection failed: {exc}") from exc
        try:
            yield cls(connection, ui=ui, concurrency=concurrency)
        finally:
            await connection.close()

    async def discover(self, servers: Sequence[Server], *, timeout: float) -> DiscoveryResult:
        """Probe `servers` and split them into available and unreachable."""

        if not servers:
            return DiscoveryResult(available=(), unreachable=())

        ids = [server.id for server in servers]
        try:
            responded = await asyncio.wait_for(
                self._conn.discover(ids, timeout=timeout),
                timeout + _GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("discovery of %d servers timed out after %gs", len(ids), timeout)
            responded = []
        except RemoteProtocolError:
            raise
        except Exception as exc:
            raise RemoteProtocolError(f"discovery failed: {exc}") from exc

        seen = set(responded)
        available = tuple(server for server in servers if server.id in seen)
        unreachable = tuple(server for server in servers if server.id not in seen)

        if unreachable:
            self._ui.error(
                f"{len(unreachable)} of {len(servers)} servers did not respond to discovery "
                f"and will be skipped: {', '.join(server.label for server in unreachable)}"
            )
        logger.info("discovery: %d available, %d unreachable", len(available), len(unreachable))
        return DiscoveryResult(available=available, unreachable=unreachable)

    async def stream(
        self,
        servers: Sequence[Server],
        command: str,
        *,
        timeout: float,
    ) -> AsyncIterator[NodeResult]:
        """Dispatch `command` and yield one `NodeResult` per server.

        Results arrive in completion order. A `RemoteProtocolError` from the
        connection is a channel-level failure and ends the stream.
        """

        queue: asyncio.Queue[NodeResult | RemoteProtocolError] = asyncio.Queue()

        async def deliver(server: Server) -> None:
            try:
                result = await asyncio.wait_for(
                    self._conn.execute(server.id, command, timeout=timeout),
                    timeout + _GRACE_SECONDS,
                )
            except RemoteProtocolError as exc:
                queue.put_nowait(exc)
                raise
            except asyncio.TimeoutError:
                error = OperationTimeoutError(
                    f"command timed out after {timeout:g}s on server {server.label}",
                    target=server.id,
                    timeout=timeout,
                )
                queue.put_nowait(NodeResult(server=server, error=error))
            except Exception as exc:
                queue.put_nowait(NodeResult(server=server, error=exc))
            else:
                queue.put_nowait(NodeResult(server=server, result=result))

        producer = asyncio.create_task(
            run_bounded(servers, deliver, concurrency=self._concurrency, identify=lambda s: s.id)
        )
        try:
            received = 0
            while received < len(servers):
                item = await queue.get()
                if isinstance(item, RemoteProtocolError):
                    raise item
                received += 1
                yield item
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    async def run_phase(
        self,
        servers: Sequence[Server],
        command: str,
        *,
        name: str,
        timeout: float,
        log_file: str | None = None,
    ) -> PhaseOutcome:
        """Run one command phase on every server, draining all results.

        Non-zero exit statuses and delivery errors become per-node failures;
        they are returned, not raised, so the caller decides what to do next.
        """

        outcome = PhaseOutcome(name=name)
        if not servers:
            return outcome

        self._ui.bar_start(name, len(servers))
        completed = 0
        try:
            async for event in self.stream(servers, command, timeout=timeout):
                completed += 1
                self._ui.bar_advance(completed)
                server = event.server
                if event.ok:
                    outcome.succeeded.append(server)
                    continue

                if isinstance(event.error, OperationTimeoutError):
                    message = f"{name} failed on server {server.label}: {event.error}"
                    failure: BaseException = OperationTimeoutError(
                        message, target=server.id, timeout=event.error.timeout
                    )
                else:
                    if event.result is not None and event.error is None:
                        output = (event.result.stderr or event.result.stdout).strip()
                        detail = f"exit status {event.result.exit_status}"
                        if output:
                            detail += f": {output}"
                    else:
                        detail = str(event.error)
                    message = f"{name} failed on server {server.label}: {detail}"
                    if log_file:
                        message += f" (log file on server: {log_file})"
                    failure = TaskFailure(message, target=server.id, hostname=server.hostname)

                self._ui.error(message)
                outcome.failures.append((server.label, failure))
        finally:
            self._ui.bar_end()

        logger.info(
            "%s: %d succeeded, %d failed of %d",
            name,
            len(outcome.succeeded),
            len(outcome.failures),
            len(servers),
        )
        return outcome
