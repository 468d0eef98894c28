"""Observers notified about every execution record.

A sink is any callable taking an ``ExecutionRecord``. The dispatcher never
waits on a sink: exceptions are logged and dropped, and coroutine results
are scheduled as background tasks.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from hookmanager.models import ExecutionRecord

logger = logging.getLogger(__name__)

ExecutionSink = Callable[[ExecutionRecord], Any]

# Strong references so scheduled sink tasks are not garbage collected early
_background_tasks: set[asyncio.Task] = set()


class LoggingSink:
    """Writes one log line per execution record."""

    def __init__(self, logger_name: str = "hookmanager.executions"):
        self.logger = logging.getLogger(logger_name)

    def __call__(self, record: ExecutionRecord) -> None:
        if record.outcome.success and not record.blocked:
            level = logging.DEBUG if record.skipped else logging.INFO
        else:
            level = logging.WARNING

        self.logger.log(
            level,
            f"{record.event.value} {record.hook_name} ({record.hook_id}) "
            f"state={record.state.value} exit={record.outcome.exit_code} "
            f"blocked={record.blocked} duration={record.duration:.1f}ms attempts={record.attempts}",
        )


def notify_sinks(sinks: Iterable[ExecutionSink], record: ExecutionRecord) -> None:
    """Hand a record to every sink without blocking on any of them."""
    for sink in sinks:
        try:
            result = sink(record)
        except Exception as e:
            logger.error(f"Execution sink {sink!r} failed: {e}")
            continue

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            _background_tasks.add(task)
            task.add_done_callback(_task_done)


def _task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Execution sink task failed: {task.exception()}")
