"""Host-facing entry point.

``HookDispatcher`` ties the registry, supervisor and batch runner together
and exposes the operations a host needs: register and manage hooks,
dispatch an event, or run one hook ad hoc.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hookmanager.batch import BatchRunner, failed_record
from hookmanager.config import DispatcherSettings
from hookmanager.decision import DecisionBackend, FailOpenDecisionBackend, create_decision_backend
from hookmanager.exceptions import HandlerExecutionError, ValidationError
from hookmanager.handlers import HandlerExecutor, build_executors
from hookmanager.models import (
    BatchResult,
    DispatchOptions,
    EventContext,
    ExecutionRecord,
    HookDefinition,
    HookEvent,
    HookStats,
)
from hookmanager.registry import HookRegistry
from hookmanager.runners import CommandRunner, ModuleLoader
from hookmanager.sinks import ExecutionSink, notify_sinks
from hookmanager.supervisor import Sleep, Supervisor

logger = logging.getLogger(__name__)


class HookDispatcher:
    """Dispatches lifecycle events to registered hooks."""

    def __init__(
        self,
        registry: HookRegistry | None = None,
        settings: DispatcherSettings | None = None,
        *,
        executors: Mapping[str, HandlerExecutor] | None = None,
        runner: CommandRunner | None = None,
        loader: ModuleLoader | None = None,
        decision_backend: DecisionBackend | None = None,
        sinks: Iterable[ExecutionSink] = (),
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the dispatcher.

        Args:
            registry: Hook registry (a new one is created if omitted)
            settings: Dispatcher settings (loaded from the environment if omitted)
            executors: Handler executors, replacing the defaults entirely
            runner: Command runner for command and script hooks
            loader: Module loader for module hooks
            decision_backend: Backend for prompt hooks (built from settings if omitted)
            sinks: Execution record observers
            sleep: Retry backoff coroutine
        """
        self.registry = registry or HookRegistry()
        self.settings = settings or DispatcherSettings()
        self.sinks: list[ExecutionSink] = list(sinks)

        if executors is None:
            if decision_backend is None:
                decision_backend = create_decision_backend(
                    provider=self.settings.ai_provider,
                    api_key=self.settings.ai_api_key,
                    base_url=self.settings.ai_base_url,
                    timeout_ms=self.settings.ai_timeout_ms,
                    max_tokens=self.settings.ai_max_tokens,
                )
            executors = build_executors(
                runner=runner,
                loader=loader,
                decision_backend=FailOpenDecisionBackend(decision_backend, self.settings.ai_timeout_ms),
                default_model=self.settings.ai_model,
            )

        self.supervisor = Supervisor(self.registry, executors, self.settings, sleep=sleep)
        self.batch = BatchRunner(self.supervisor, self.sinks)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        definition: HookDefinition | Mapping[str, Any],
        scope: str | None = None,
    ) -> HookDefinition:
        """Register a hook, optionally tagging it with a scope."""
        if scope is not None:
            if isinstance(definition, HookDefinition):
                # Fresh metadata dict; callbacks in the handler stay shared
                definition = definition.model_copy(
                    update={"metadata": {**definition.metadata, "_scope": scope}}
                )
            else:
                definition = {
                    **definition,
                    "metadata": {**(definition.get("metadata") or {}), "_scope": scope},
                }
        return self.registry.register(definition)

    def load(self, definitions: Iterable[HookDefinition | Mapping[str, Any]]) -> list[HookDefinition]:
        """Register every definition from a definition source."""
        loaded = [self.registry.register(d) for d in definitions]
        logger.info(f"Loaded {len(loaded)} hooks")
        return loaded

    def unregister(self, hook_id: str) -> HookDefinition:
        return self.registry.unregister(hook_id)

    def enable(self, hook_id: str) -> None:
        self.registry.enable(hook_id)

    def disable(self, hook_id: str) -> None:
        self.registry.disable(hook_id)

    def reprioritize(self, hook_id: str, priority: int) -> None:
        self.registry.update_priority(hook_id, priority)

    def handlers(self, scope: str | None = None) -> list[HookDefinition]:
        """Registered hooks, optionally only those with the given scope tag."""
        hooks = self.registry.all()
        if scope is None:
            return hooks
        return [h for h in hooks if h.scope == scope]

    def stats(self, hook_id: str | None = None) -> HookStats | dict[str, Any] | None:
        """One hook's statistics, or the registry-wide summary."""
        if hook_id is not None:
            return self.registry.stats(hook_id)
        return self.registry.summary()

    def add_sink(self, sink: ExecutionSink) -> None:
        self.sinks.append(sink)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        event: HookEvent | str,
        context: EventContext | Mapping[str, Any] | None = None,
        options: DispatchOptions | Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Run every enabled hook registered for an event.

        Args:
            event: Lifecycle event being emitted
            context: Event context (its event is forced to ``event``)
            options: Per-call overrides

        Returns:
            Records and summary; ``result.blocked`` tells the host to abort
        """
        ctx = _coerce_context(event, context)
        opts = _coerce_options(options)

        hooks = self.registry.for_event(ctx.event)
        if not hooks:
            logger.debug(f"No hooks registered for {ctx.event.value}")
            return BatchResult(event=ctx.event)

        parallel = opts.parallel if opts.parallel is not None else self.settings.parallel
        continue_on_error = (
            opts.continue_on_error
            if opts.continue_on_error is not None
            else self.settings.continue_on_error
        )

        logger.debug(
            f"Dispatching {ctx.event.value} to {len(hooks)} hooks "
            f"({'parallel' if parallel else 'sequential'})"
        )
        return await self.batch.run(
            hooks, ctx, opts, parallel=parallel, continue_on_error=continue_on_error
        )

    async def run_one(
        self,
        hook_id: str,
        context: EventContext | Mapping[str, Any] | None = None,
        options: DispatchOptions | Mapping[str, Any] | None = None,
    ) -> ExecutionRecord:
        """Run a single hook regardless of its events.

        The context event defaults to the hook's first event.

        Raises:
            NotFoundError: If the hook is not registered
            HandlerExecutionError: If every attempt failed
        """
        hook = self.registry.get_or_raise(hook_id)

        if isinstance(context, EventContext):
            ctx = context
        else:
            event = (context or {}).get("event") or hook.events[0]
            ctx = _coerce_context(event, context)

        try:
            record = await self.supervisor.run(hook, ctx, _coerce_options(options))
        except HandlerExecutionError as e:
            notify_sinks(self.sinks, failed_record(hook, ctx, e))
            raise

        notify_sinks(self.sinks, record)
        return record


def _coerce_context(
    event: HookEvent | str,
    context: EventContext | Mapping[str, Any] | None,
) -> EventContext:
    try:
        event = HookEvent(event)
    except ValueError as e:
        raise ValidationError(f"Unknown event: {event}") from e

    if isinstance(context, EventContext):
        if context.event == event:
            return context
        return context.model_copy(update={"event": event})

    try:
        return EventContext.model_validate({**(context or {}), "event": event})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid event context: {e}") from e


def _coerce_options(options: DispatchOptions | Mapping[str, Any] | None) -> DispatchOptions:
    if options is None:
        return DispatchOptions()
    if isinstance(options, DispatchOptions):
        return options
    try:
        return DispatchOptions.model_validate(options)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid dispatch options: {e}") from e
