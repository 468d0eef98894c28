"""Run the hooks selected for one event, sequentially or concurrently."""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime

from hookmanager.exceptions import HandlerExecutionError, HookError
from hookmanager.models import (
    BatchError,
    BatchResult,
    BatchSummary,
    DispatchOptions,
    EventContext,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionState,
    HookDefinition,
)
from hookmanager.sinks import ExecutionSink, notify_sinks
from hookmanager.supervisor import Supervisor

logger = logging.getLogger(__name__)


class BatchRunner:
    """Drives a priority-ordered list of hooks through the supervisor."""

    def __init__(self, supervisor: Supervisor, sinks: Sequence[ExecutionSink] = ()):
        self.supervisor = supervisor
        self.sinks = sinks

    async def run(
        self,
        hooks: Sequence[HookDefinition],
        context: EventContext,
        options: DispatchOptions | None = None,
        *,
        parallel: bool = False,
        continue_on_error: bool = False,
    ) -> BatchResult:
        if parallel:
            records = await self.run_parallel(hooks, context, options)
        else:
            records = await self.run_sequential(
                hooks, context, options, continue_on_error=continue_on_error
            )

        summary = summarize(records)
        logger.info(
            f"Executed {len(records)}/{len(hooks)} hooks for {context.event.value}: "
            f"{summary.successful} successful, {summary.failed} failed, {summary.blocked} blocked"
        )
        return BatchResult(event=context.event, results=records, summary=summary)

    async def run_sequential(
        self,
        hooks: Sequence[HookDefinition],
        context: EventContext,
        options: DispatchOptions | None = None,
        *,
        continue_on_error: bool = False,
    ) -> list[ExecutionRecord]:
        """Run hooks one at a time.

        Stops after the first blocking record, and after the first hard
        failure unless the batch or that hook allows continuing.
        """
        records: list[ExecutionRecord] = []

        for hook in hooks:
            try:
                record = await self.supervisor.run(hook, context, options)
            except HookError as e:
                record = failed_record(hook, context, e)
                self._emit(record)
                records.append(record)
                if continue_on_error or hook.continue_on_error:
                    continue
                logger.error(f"Stopping {context.event.value} batch after failure of hook {hook.name}")
                break

            self._emit(record)
            records.append(record)

            if record.blocked:
                logger.warning(f"Hook {hook.name} blocked {context.event.value}, stopping batch")
                break

        return records

    async def run_parallel(
        self,
        hooks: Sequence[HookDefinition],
        context: EventContext,
        options: DispatchOptions | None = None,
    ) -> list[ExecutionRecord]:
        """Run every hook concurrently and collect all records in input order."""

        async def guarded(hook: HookDefinition) -> ExecutionRecord:
            try:
                record = await self.supervisor.run(hook, context, options)
            except HookError as e:
                record = failed_record(hook, context, e)
            self._emit(record)
            return record

        return list(await asyncio.gather(*(guarded(hook) for hook in hooks)))

    def _emit(self, record: ExecutionRecord) -> None:
        notify_sinks(self.sinks, record)


def failed_record(hook: HookDefinition, context: EventContext, error: HookError) -> ExecutionRecord:
    """Record for a hook whose invocation raised."""
    now = datetime.now()
    message = str(error)
    attempts = error.attempts if isinstance(error, HandlerExecutionError) else 0
    duration = error.duration if isinstance(error, HandlerExecutionError) else 0.0

    return ExecutionRecord(
        hook_id=hook.id,
        hook_name=hook.name,
        event=context.event,
        state=ExecutionState.FAILED_EXHAUSTED,
        start_time=now,
        end_time=now,
        duration=duration,
        attempts=attempts,
        outcome=ExecutionOutcome.failed(message),
        error=message,
    )


def summarize(records: Sequence[ExecutionRecord]) -> BatchSummary:
    """Aggregate counts and mean duration over a batch's records."""
    if not records:
        return BatchSummary()

    return BatchSummary(
        total=len(records),
        successful=sum(1 for r in records if r.outcome.success),
        failed=sum(1 for r in records if not r.outcome.success),
        blocked=sum(1 for r in records if r.blocked),
        average_duration=sum(r.duration for r in records) / len(records),
        errors=[
            BatchError(hook_id=r.hook_id, error=r.error or r.outcome.error or "Unknown error")
            for r in records
            if not r.outcome.success
        ],
    )
