"""Background tasks for the sync layer's feed consumers.

A consumer that dies on a snapshot it cannot merge leaves its feed frozen,
so every task started here reports how it ended.
"""

import asyncio
import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


def safe_create_task(coro, *, name: str = None) -> asyncio.Task:
    """Schedule ``coro`` and log its exception if it fails."""
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_report_failure)
    return task


async def wait_stopped(tasks: Iterable[asyncio.Task]) -> None:
    """Wait for consumers whose subscriptions were closed.

    Failures were already logged when the task finished.
    """
    tasks = list(tasks)
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def _report_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Feed consumer '{task.get_name()}' stopped: {exc}", exc_info=exc)
