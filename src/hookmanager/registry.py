"""Registry of hook definitions.

Keeps the definitions keyed by id, an event -> ids index in registration
order, and a per-event list of enabled ids sorted by priority. Execution
statistics live here too and are updated by the supervisor.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hookmanager.exceptions import NotFoundError, ValidationError
from hookmanager.models import ErrorEntry, HookDefinition, HookEvent, HookStats

logger = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 100


class HookRegistry:
    """Registry for hook definitions and their execution statistics.

    Index mutations happen only in the mutation methods and are guarded by a
    registry-wide lock. Statistics for each hook id have their own lock so
    concurrent handlers never contend with each other.
    """

    def __init__(self):
        self._hooks: dict[str, HookDefinition] = {}
        self._event_index: dict[HookEvent, list[str]] = {}
        self._priority_index: dict[HookEvent, list[str]] = {}
        self._stats: dict[str, HookStats] = {}
        self._stats_locks: dict[str, threading.Lock] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, definition: HookDefinition | Mapping[str, Any]) -> HookDefinition:
        """Register a hook definition.

        Raises:
            ValidationError: If the definition is malformed or the id is taken.
        """
        hook = self._validate(definition)

        with self._lock:
            if hook.id in self._hooks:
                raise ValidationError(f"Hook already registered: {hook.id}", hook_id=hook.id)

            self._hooks[hook.id] = hook
            for event in hook.events:
                self._event_index.setdefault(event, []).append(hook.id)
                self._reindex(event)

            self._stats[hook.id] = HookStats(hook_id=hook.id, hook_name=hook.name)
            self._stats_locks[hook.id] = threading.Lock()

        logger.debug(f"Registered hook: {hook.name} ({hook.id})")
        return hook

    def unregister(self, hook_id: str) -> HookDefinition:
        """Remove a hook from every index and drop its statistics."""
        with self._lock:
            hook = self._hooks.pop(hook_id, None)
            if hook is None:
                raise NotFoundError(hook_id)

            self._remove_from_events(hook_id, hook.events)
            self._stats.pop(hook_id, None)
            self._stats_locks.pop(hook_id, None)

        logger.debug(f"Unregistered hook: {hook.name} ({hook_id})")
        return hook

    def clear(self) -> None:
        """Remove all hooks."""
        with self._lock:
            self._hooks.clear()
            self._event_index.clear()
            self._priority_index.clear()
            self._stats.clear()
            self._stats_locks.clear()
        logger.debug("All hooks cleared from registry")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def enable(self, hook_id: str) -> None:
        self._set_enabled(hook_id, True)

    def disable(self, hook_id: str) -> None:
        self._set_enabled(hook_id, False)

    def update_priority(self, hook_id: str, priority: int) -> None:
        """Change a hook's priority and re-sort the events it belongs to."""
        if not 0 <= priority <= 1000:
            raise ValidationError("Priority must be between 0 and 1000", hook_id=hook_id)

        with self._lock:
            hook = self.get_or_raise(hook_id)
            hook.priority = priority
            hook.updated_at = datetime.now()
            for event in hook.events:
                self._reindex(event)

        logger.debug(f"Updated priority for hook: {hook.name} ({hook_id}) -> {priority}")

    def update_events(self, hook_id: str, events: Iterable[HookEvent | str]) -> None:
        """Move a hook to a new set of events."""
        try:
            new_events = list(dict.fromkeys(HookEvent(e) for e in events))
        except ValueError as e:
            raise ValidationError(str(e), hook_id=hook_id) from e
        if not new_events:
            raise ValidationError("Events cannot be empty", hook_id=hook_id)

        with self._lock:
            hook = self.get_or_raise(hook_id)
            self._remove_from_events(hook_id, hook.events)

            hook.events = new_events
            hook.updated_at = datetime.now()
            for event in new_events:
                self._event_index.setdefault(event, []).append(hook_id)
                self._reindex(event)

        logger.debug(f"Updated events for hook: {hook.name} ({hook_id}) -> {[e.value for e in new_events]}")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, hook_id: str) -> HookDefinition | None:
        return self._hooks.get(hook_id)

    def get_or_raise(self, hook_id: str) -> HookDefinition:
        hook = self._hooks.get(hook_id)
        if hook is None:
            raise NotFoundError(hook_id)
        return hook

    def all(self) -> list[HookDefinition]:
        return list(self._hooks.values())

    def for_event(self, event: HookEvent | str) -> list[HookDefinition]:
        """Enabled hooks for an event, lowest priority value first."""
        with self._lock:
            ids = self._priority_index.get(HookEvent(event), [])
            return [self._hooks[hook_id] for hook_id in ids]

    def for_events(self, events: Iterable[HookEvent | str]) -> list[HookDefinition]:
        """Enabled hooks registered for any of the events, priority sorted."""
        with self._lock:
            seen: dict[str, HookDefinition] = {}
            for event in events:
                for hook_id in self._event_index.get(HookEvent(event), []):
                    hook = self._hooks[hook_id]
                    if hook.enabled:
                        seen.setdefault(hook_id, hook)
            return sorted(seen.values(), key=lambda h: h.priority)

    def events_with_handlers(self) -> list[HookEvent]:
        return list(self._event_index.keys())

    def __len__(self) -> int:
        return len(self._hooks)

    def __contains__(self, hook_id: object) -> bool:
        return hook_id in self._hooks

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        hook_id: str,
        duration: float,
        success: bool,
        blocked: bool = False,
    ) -> None:
        """Fold one execution into the hook's statistics."""
        stats, lock = self._stats_entry(hook_id)
        if stats is None:
            return

        with lock:
            stats.executions += 1
            if success:
                stats.successes += 1
            else:
                stats.failures += 1
            if blocked:
                stats.blocked += 1

            n = stats.executions
            stats.average_duration = (stats.average_duration * (n - 1) + duration) / n
            stats.last_execution = datetime.now()

    def record_error(self, hook_id: str, error: BaseException | str) -> None:
        """Append to the hook's bounded error history."""
        stats, lock = self._stats_entry(hook_id)
        if stats is None:
            return

        message = str(error)
        with lock:
            stats.last_error = message
            stats.error_history.append(ErrorEntry(error=message))
            if len(stats.error_history) > MAX_ERROR_HISTORY:
                del stats.error_history[:-MAX_ERROR_HISTORY]

    def stats(self, hook_id: str) -> HookStats | None:
        """Snapshot of one hook's statistics."""
        stats, lock = self._stats_entry(hook_id)
        if stats is None:
            return None
        with lock:
            return stats.model_copy(deep=True)

    def summary(self) -> dict[str, Any]:
        """Totals across every registered hook."""
        with self._lock:
            by_hook = [s.model_copy(deep=True) for s in self._stats.values()]
            return {
                "total_hooks": len(self._hooks),
                "enabled_hooks": sum(1 for h in self._hooks.values() if h.enabled),
                "total_executions": sum(s.executions for s in by_hook),
                "successful_executions": sum(s.successes for s in by_hook),
                "failed_executions": sum(s.failures for s in by_hook),
                "blocked_executions": sum(s.blocked for s in by_hook),
                "by_hook": by_hook,
                "by_event": {e.value: len(ids) for e, ids in self._event_index.items()},
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, definition: HookDefinition | Mapping[str, Any]) -> HookDefinition:
        if isinstance(definition, Mapping):
            try:
                return HookDefinition.model_validate(definition)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid hook definition: {e}", hook_id=definition.get("id")
                ) from e

        if not definition.id:
            raise ValidationError("Hook ID is required")
        if not definition.name:
            raise ValidationError("Hook name is required", hook_id=definition.id)
        if not definition.events:
            raise ValidationError("Hook must have at least one event", hook_id=definition.id)
        if definition.handler is None:
            raise ValidationError("Hook handler is required", hook_id=definition.id)
        if not 0 <= definition.priority <= 1000:
            raise ValidationError("Priority must be between 0 and 1000", hook_id=definition.id)
        return definition

    def _set_enabled(self, hook_id: str, enabled: bool) -> None:
        with self._lock:
            hook = self.get_or_raise(hook_id)
            hook.enabled = enabled
            hook.updated_at = datetime.now()
            for event in hook.events:
                self._reindex(event)

        logger.debug(f"{'Enabled' if enabled else 'Disabled'} hook: {hook.name} ({hook_id})")

    def _reindex(self, event: HookEvent) -> None:
        """Rebuild the enabled, priority-sorted id list for one event.

        sorted() is stable, so equal priorities keep registration order.
        """
        ids = self._event_index.get(event)
        if not ids:
            self._priority_index.pop(event, None)
            return
        enabled = [hook_id for hook_id in ids if self._hooks[hook_id].enabled]
        self._priority_index[event] = sorted(enabled, key=lambda i: self._hooks[i].priority)

    def _remove_from_events(self, hook_id: str, events: Iterable[HookEvent]) -> None:
        for event in events:
            ids = self._event_index.get(event)
            if ids is None:
                continue
            if hook_id in ids:
                ids.remove(hook_id)
            if not ids:
                del self._event_index[event]
            self._reindex(event)

    def _stats_entry(self, hook_id: str) -> tuple[HookStats | None, threading.Lock]:
        with self._lock:
            stats = self._stats.get(hook_id)
            lock = self._stats_locks.get(hook_id)
        if stats is None or lock is None:
            logger.debug(f"No statistics for hook {hook_id}, it may have been unregistered")
            return None, threading.Lock()
        return stats, lock
