"""Bounded fan-out over a list of targets.

Every target is attempted exactly once with at most `concurrency` workers
running at a time. Worker errors are collected instead of aborting the
remaining targets; `QueueOutcome.raise_for_errors` decides afterwards how to
surface them (nothing, the single error, or an `AggregateError`).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from core.errors import AggregateError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def raise_collected(failures: Sequence[tuple[str, BaseException]]) -> None:
    """Zero failures: return. One: raise it as is. More: `AggregateError`."""

    if not failures:
        return
    if len(failures) == 1:
        raise failures[0][1]
    raise AggregateError(failures)


@dataclass
class QueueOutcome(Generic[T, R]):
    total: int
    completed: int = 0
    results: list[tuple[T, R]] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)
    peak_running: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_errors(self) -> None:
        raise_collected(self.failures)


async def run_bounded(
    targets: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    identify: Callable[[T], str] = str,
    on_complete: Callable[[T, int], None] | None = None,
) -> QueueOutcome[T, R]:
    """Run `worker` over `targets`, never more than `concurrency` at once.

    `on_complete(target, completed)` fires once per target, success or not,
    in completion order.
    """

    if concurrency < 1:
        raise ValidationError(f"concurrency must be >= 1 (got {concurrency})")

    outcome: QueueOutcome[T, R] = QueueOutcome(total=len(targets))
    sem = asyncio.Semaphore(concurrency)
    running = 0

    async def run_one(target: T) -> None:
        nonlocal running
        async with sem:
            running += 1
            outcome.peak_running = max(outcome.peak_running, running)
            try:
                result = await worker(target)
            except Exception as exc:
                logger.debug("worker failed for %s: %s", identify(target), exc)
                # single event loop: appends never interleave
                outcome.failures.append((identify(target), exc))
            else:
                outcome.results.append((target, result))
            finally:
                running -= 1
                outcome.completed += 1
                if on_complete is not None:
                    on_complete(target, outcome.completed)

    await asyncio.gather(*(run_one(target) for target in targets))
    return outcome
