"""Polling of node-management jobs until they finish."""

from __future__ import annotations

import asyncio
import logging

from core.domain.models import Task, TaskStatus
from core.errors import OperationTimeoutError, TaskFailure
from core.interfaces.clients import NodeTaskClient

logger = logging.getLogger(__name__)


def task_failure_message(task: Task) -> str:
    message = f"Task {task.id} failed"
    error = next((event.error_message for event in task.history if event.error_message), None)
    if error:
        message += f" with error: {error}"
    return message


async def wait_task(
    client: NodeTaskClient,
    task_id: str,
    *,
    timeout: float,
    interval: float = 1.0,
    target: str | None = None,
    hostname: str | None = None,
) -> Task:
    """Poll `task_id` until it reaches success or failure.

    Raises `TaskFailure` (with the first recorded failure message) when the
    job fails and `OperationTimeoutError` when `timeout` elapses first.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        task = await client.get_task(task_id)
        logger.debug("task %s status=%s", task_id, task.status.value)

        if task.status is TaskStatus.SUCCESS:
            return task
        if task.status is TaskStatus.FAILURE:
            raise TaskFailure(task_failure_message(task), target=target, hostname=hostname)

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise OperationTimeoutError(
                f"timed out after {timeout:g}s waiting for task {task_id}",
                target=target,
                timeout=timeout,
            )
        await asyncio.sleep(min(interval, remaining))
