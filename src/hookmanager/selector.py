"""Decide whether a hook applies to an event context.

Two checks run in order and both must pass:

1. The *matcher*, a coarse regular expression evaluated against an
   event-specific target (the tool name for tool events, a metadata field for
   session/subagent/notification/compaction events).
2. The *filter*, fine-grained AND-ed predicates over context fields.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache

from hookmanager.models import EventContext, HookEvent, HookFilter

logger = logging.getLogger(__name__)

WILDCARD_MATCHERS = frozenset({"*", "", ".*"})

# Keys consulted, in order, to name the active environment
ENVIRONMENT_KEYS = ("HOOKMANAGER_ENV", "NODE_ENV", "ENV")
DEFAULT_ENVIRONMENT = "development"

_TOOL_NAMES = (
    "Bash", "Edit", "Write", "MultiEdit", "Read", "Glob", "Grep", "LS",
    "WebSearch", "WebFetch", "Task", "TodoWrite", "NotebookEdit", "NotebookRead",
    "mcp__.*",
)


@dataclass(frozen=True)
class MatcherTarget:
    """What a matcher is evaluated against for a given event."""

    field: str
    description: str
    known_values: tuple[str, ...] = ()


EVENT_MATCHER_TARGETS: dict[HookEvent, MatcherTarget] = {
    HookEvent.PRE_TOOL_USE: MatcherTarget("tool", "Tool name", _TOOL_NAMES),
    HookEvent.POST_TOOL_USE: MatcherTarget("tool", "Tool name", _TOOL_NAMES),
    HookEvent.POST_TOOL_USE_FAILURE: MatcherTarget("tool", "Tool name", _TOOL_NAMES),
    HookEvent.PERMISSION_REQUEST: MatcherTarget("tool", "Tool name", _TOOL_NAMES),
    HookEvent.SESSION_START: MatcherTarget(
        "metadata.source", "Session source type", ("startup", "resume", "clear", "compact")
    ),
    HookEvent.SESSION_END: MatcherTarget(
        "metadata.reason",
        "Session end reason",
        ("clear", "logout", "prompt_input_exit", "bypass_permissions_disabled", "other"),
    ),
    HookEvent.SUBAGENT_START: MatcherTarget(
        "metadata.agent_type", "Subagent type", ("Bash", "Explore", "Plan", "Code")
    ),
    HookEvent.SUBAGENT_STOP: MatcherTarget(
        "metadata.agent_type", "Subagent type", ("Bash", "Explore", "Plan", "Code")
    ),
    HookEvent.NOTIFICATION: MatcherTarget(
        "metadata.type",
        "Notification type",
        ("permission_prompt", "idle_prompt", "auth_success", "elicitation_dialog"),
    ),
    HookEvent.PRE_COMPACT: MatcherTarget("metadata.trigger", "Compaction trigger", ("manual", "auto")),
}


def is_wildcard(matcher: str | None) -> bool:
    return matcher is None or matcher in WILDCARD_MATCHERS


def matcher_target(context: EventContext) -> str | None:
    """The string a matcher is tested against, or None if the event has none."""
    target = EVENT_MATCHER_TARGETS.get(context.event)
    if target is None:
        return None

    if target.field == "tool":
        value = context.tool
    else:
        value = context.metadata.get(target.field.removeprefix("metadata."))

    if value is None or value == "":
        return None
    return str(value)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.debug(f"Matcher {pattern!r} is not a valid regex ({e}), using exact match")
        return None


def check_matcher(matcher: str | None, context: EventContext) -> bool:
    """Coarse check: anchored regex against the event's matcher target."""
    if is_wildcard(matcher):
        return True

    target = matcher_target(context)
    if target is None:
        return False

    regex = _compile(matcher)
    if regex is None:
        return target == matcher
    return regex.fullmatch(target) is not None


def environment_name(context: EventContext) -> str:
    """Name of the active environment (e.g. development, production)."""
    env = context.environment or os.environ
    for key in ENVIRONMENT_KEYS:
        if env.get(key):
            return env[key]
    return DEFAULT_ENVIRONMENT


def check_filter(hook_filter: HookFilter | None, context: EventContext) -> bool:
    """Fine-grained check; every configured predicate must hold.

    A ``commands`` predicate requires a command to be present. The other
    context-field predicates only apply when the context carries that field.
    """
    if hook_filter is None:
        return True

    if hook_filter.tools is not None and context.tool:
        if context.tool not in hook_filter.tools:
            return False

    if hook_filter.commands is not None:
        if not context.command:
            return False
        command = str(context.command)
        if not any(cmd in command for cmd in hook_filter.commands):
            return False

    if hook_filter.patterns is not None and context.input is not None:
        serialized = json.dumps(context.input, separators=(",", ":"), default=str)
        if not any(pattern in serialized for pattern in hook_filter.patterns):
            return False

    if hook_filter.users is not None and context.user_id:
        if context.user_id not in hook_filter.users:
            return False

    if hook_filter.projects is not None and context.project_id:
        if context.project_id not in hook_filter.projects:
            return False

    if hook_filter.environments is not None:
        if environment_name(context) not in hook_filter.environments:
            return False

    return True


@dataclass
class MatcherValidation:
    valid: bool
    error: str | None = None
    suggestions: list[str] = field(default_factory=list)


def validate_matcher(event: HookEvent, matcher: str | None) -> MatcherValidation:
    """Check a matcher against what the event can actually match on."""
    if is_wildcard(matcher):
        return MatcherValidation(valid=True)

    target = EVENT_MATCHER_TARGETS.get(event)
    if target is None:
        return MatcherValidation(
            valid=False,
            error=f'Event "{event.value}" does not support matcher.',
        )

    # Anything that looks like a regex is accepted as-is
    if any(ch in matcher for ch in "|.*+?[](){}^$\\"):
        return MatcherValidation(valid=True)

    if matcher in target.known_values:
        return MatcherValidation(valid=True)

    return MatcherValidation(
        valid=False,
        error=f'Matcher "{matcher}" is not a known {target.description.lower()} for {event.value}.',
        suggestions=list(target.known_values[:10]),
    )
