"""Bounded-concurrency fan-out helper."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ItemFailure:
    """A processor error recorded against the item that raised it."""

    item_id: str
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass
class ParallelResult(Generic[R]):
    """Outcome of :func:`process_in_parallel`, both lists in input order."""

    successful: list[R] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)


async def process_in_parallel(
    items: Sequence[T],
    get_id: Callable[[T], str],
    processor: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> ParallelResult[R]:
    """Run ``processor`` over ``items`` with at most ``concurrency`` in flight.

    A failing item is recorded in ``failed`` and does not stop the others.
    Cancellation is not swallowed.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(item: T) -> tuple[bool, R | ItemFailure]:
        async with semaphore:
            try:
                return True, await processor(item)
            except Exception as exc:
                item_id = get_id(item)
                logger.warning("Processing %s failed: %s", item_id, exc)
                return False, ItemFailure(item_id=item_id, error=exc)

    outcomes = await asyncio.gather(*(_run(item) for item in items))

    result: ParallelResult[R] = ParallelResult()
    for ok, value in outcomes:
        if ok:
            result.successful.append(value)  # type: ignore[arg-type]
        else:
            result.failed.append(value)  # type: ignore[arg-type]
    return result
