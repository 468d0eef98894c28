"""Runs one hook to completion.

A supervised invocation ends in one of the ``ExecutionState`` values:
skipped (disabled, matcher miss, filter miss), succeeded after some
attempt, or failed once every retry is used up. Only the last one raises.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime

from hookmanager.config import DispatcherSettings, resolve_options
from hookmanager.exceptions import HandlerExecutionError, HandlerTimeoutError, HookError
from hookmanager.handlers import HandlerExecutor, build_executors
from hookmanager.models import (
    DispatchOptions,
    EventContext,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionState,
    HookDefinition,
)
from hookmanager.registry import HookRegistry
from hookmanager.selector import check_filter, check_matcher

logger = logging.getLogger(__name__)

# Linear backoff: the n-th retry waits (n - 1) * BACKOFF_MS
BACKOFF_MS = 1000

Sleep = Callable[[float], Awaitable[None]]


class Supervisor:
    """Applies selection, timeouts, retries and blocking to one hook."""

    def __init__(
        self,
        registry: HookRegistry,
        executors: Mapping[str, HandlerExecutor] | None = None,
        settings: DispatcherSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the supervisor.

        Args:
            registry: Registry receiving execution statistics
            executors: Handler type -> executor (defaults to build_executors())
            settings: Source of the system-wide defaults
            sleep: Coroutine used for retry backoff, in seconds
        """
        self.registry = registry
        self.executors = dict(executors) if executors is not None else build_executors()
        self.settings = settings or DispatcherSettings()
        self._sleep = sleep

    async def run(
        self,
        hook: HookDefinition,
        context: EventContext,
        options: DispatchOptions | None = None,
    ) -> ExecutionRecord:
        """Execute one hook for an event.

        Returns:
            The execution record, including skipped invocations

        Raises:
            HandlerExecutionError: If every attempt failed or timed out
        """
        start_time = datetime.now()
        started = time.perf_counter()

        if not hook.enabled:
            logger.debug(f"Hook {hook.name} is disabled, skipping")
            return self._skipped(hook, context, ExecutionState.SKIPPED_DISABLED, "Hook disabled", start_time)

        if not check_matcher(hook.matcher, context):
            logger.debug(f"Hook {hook.name} matcher did not match, skipping")
            return self._skipped(
                hook, context, ExecutionState.SKIPPED_NO_MATCH, "Matcher did not match", start_time
            )

        if not check_filter(hook.filter, context):
            logger.debug(f"Hook {hook.name} filter did not match, skipping")
            return self._skipped(
                hook, context, ExecutionState.SKIPPED_NO_FILTER, "Filter did not match", start_time
            )

        executor = self.executors.get(hook.handler.type)
        if executor is None:
            raise HookError(f"No executor for handler type: {hook.handler.type}", hook_id=hook.id)

        effective = resolve_options(hook, options, self.settings)
        max_attempts = effective.retries + 1
        last_error: BaseException | None = None

        logger.debug(f"Executing hook: {hook.name} ({hook.id}) for {context.event.value}")

        for attempt in range(max_attempts):
            if attempt > 0:
                logger.info(f"Retrying hook {hook.name} (attempt {attempt + 1}/{max_attempts})")

            try:
                call = executor.execute(hook, context, effective.timeout_ms)
                if getattr(executor, "bounds_own_timeout", False):
                    outcome = await call
                else:
                    outcome = await asyncio.wait_for(call, timeout=effective.timeout_ms / 1000)
            except asyncio.TimeoutError:
                last_error = HandlerTimeoutError(effective.timeout_ms, hook_id=hook.id)
            except Exception as e:
                last_error = e
            else:
                duration = _elapsed_ms(started)
                blocked = outcome.exit_code in effective.exit_code_blocking
                self.registry.record_outcome(hook.id, duration, outcome.success, blocked)

                if blocked:
                    logger.warning(f"Hook {hook.name} is blocking execution (exit code {outcome.exit_code})")

                return ExecutionRecord(
                    hook_id=hook.id,
                    hook_name=hook.name,
                    event=context.event,
                    state=ExecutionState.SUCCEEDED,
                    start_time=start_time,
                    end_time=datetime.now(),
                    duration=duration,
                    attempts=attempt + 1,
                    outcome=outcome,
                    blocked=blocked,
                )

            logger.error(f"Hook {hook.name} execution failed (attempt {attempt + 1}): {last_error}")
            if attempt < effective.retries:
                await self._sleep(BACKOFF_MS * attempt / 1000)

        duration = _elapsed_ms(started)
        self.registry.record_error(hook.id, last_error)
        self.registry.record_outcome(hook.id, duration, False)

        raise HandlerExecutionError(
            hook.id, hook.name, max_attempts, str(last_error), duration=duration
        ) from last_error

    def _skipped(
        self,
        hook: HookDefinition,
        context: EventContext,
        state: ExecutionState,
        reason: str,
        start_time: datetime,
    ) -> ExecutionRecord:
        return ExecutionRecord(
            hook_id=hook.id,
            hook_name=hook.name,
            event=context.event,
            state=state,
            start_time=start_time,
            end_time=start_time,
            outcome=ExecutionOutcome.ok(stdout=reason),
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
