"""Pydantic models for hook definitions, event contexts and execution results."""

import time
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class HookEvent(str, Enum):
    """Lifecycle events emitted by the host application."""

    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    POST_TOOL_USE_FAILURE = "PostToolUseFailure"
    PERMISSION_REQUEST = "PermissionRequest"
    NOTIFICATION = "Notification"
    SUBAGENT_START = "SubagentStart"
    SUBAGENT_STOP = "SubagentStop"
    PRE_COMPACT = "PreCompact"
    STOP = "Stop"
    TEAMMATE_IDLE = "TeammateIdle"
    TASK_COMPLETED = "TaskCompleted"


# Events an AI-prompt handler may decide on
DECISION_EVENTS = frozenset({
    HookEvent.PRE_TOOL_USE,
    HookEvent.POST_TOOL_USE,
    HookEvent.POST_TOOL_USE_FAILURE,
    HookEvent.PERMISSION_REQUEST,
    HookEvent.USER_PROMPT_SUBMIT,
    HookEvent.SUBAGENT_STOP,
})

# Decision events answered with allow/deny instead of continue/block
PERMISSION_EVENTS = frozenset({
    HookEvent.PRE_TOOL_USE,
    HookEvent.PERMISSION_REQUEST,
})

DEFAULT_PRIORITY = 50
DEFAULT_BLOCKING_EXIT_CODES = [2]


class HookModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HookFilter(HookModel):
    """Fine-grained predicates over context fields, all present ones AND-ed."""

    tools: list[str] | None = None
    commands: list[str] | None = None
    patterns: list[str] | None = None
    users: list[str] | None = None
    projects: list[str] | None = None
    environments: list[str] | None = None


class CommandHandler(HookModel):
    """Run a shell command."""

    type: Literal["command"] = "command"
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)


class ScriptHandler(HookModel):
    """Run a script file, resolved against the project directory."""

    type: Literal["script"] = "script"
    path: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    interpreter: str | None = Field(
        default=None,
        description="Program used to run the script (None = run it directly)",
    )
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)


class ModuleHandler(HookModel):
    """Import a Python module (dotted name or .py file) and call a function."""

    type: Literal["module"] = "module"
    module: str = Field(min_length=1)
    function: str = "handle"
    args: list[Any] = Field(default_factory=list)


class CallbackHandler(HookModel):
    """Call an in-process Python callable."""

    type: Literal["callback"] = "callback"
    callback: Callable[..., Any] = Field(exclude=True)


class PromptHandler(HookModel):
    """Ask the decision backend whether the pending action may proceed."""

    type: Literal["prompt"] = "prompt"
    prompt: str = Field(min_length=1)
    model: str | None = None
    system_prompt: str | None = None


HandlerSpec = Annotated[
    Union[CommandHandler, ScriptHandler, ModuleHandler, CallbackHandler, PromptHandler],
    Field(discriminator="type"),
]


class HookDefinition(HookModel):
    """A user-declared handler bound to one or more lifecycle events.

    Timeouts are expressed in milliseconds.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    enabled: bool = True
    events: list[HookEvent] = Field(min_length=1)
    matcher: str | None = None
    filter: HookFilter | None = None
    handler: HandlerSpec
    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=1000)
    timeout: int | None = Field(default=None, gt=0)
    retry: int = Field(default=0, ge=0)
    continue_on_error: bool = False
    exit_code_blocking: list[int] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKING_EXIT_CODES)
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, events: list[HookEvent]) -> list[HookEvent]:
        return list(dict.fromkeys(events))

    @property
    def scope(self) -> str | None:
        """Opaque scope tag set by the definition source (global/project)."""
        return self.metadata.get("_scope")


def _default_session_id() -> str:
    return f"session-{int(time.time() * 1000)}"


class EventContext(HookModel):
    """Everything a handler may inspect about the event being dispatched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event: HookEvent
    timestamp: datetime = Field(default_factory=datetime.now)
    session_id: str = Field(default_factory=_default_session_id)
    user_id: str | None = None
    project_id: str | None = None
    tool: str | None = None
    command: str | None = None
    input: Any = None
    output: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    project_dir: str | None = None
    plugin_root: str | None = None
    env_file: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready representation handed to handlers and the decision backend."""
        return self.model_dump(mode="json", by_alias=True)


class ExecutionOutcome(HookModel):
    """Canonical result of one handler invocation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool
    exit_code: int
    stdout: str | None = None
    stderr: str | None = None
    output: Any = None
    error: str | None = None
    permission_decision: Literal["allow", "deny", "ask"] | None = None
    updated_input: Any = None
    additional_context: Any = None

    @classmethod
    def ok(cls, stdout: str | None = None) -> "ExecutionOutcome":
        return cls(success=True, exit_code=0, stdout=stdout)

    @classmethod
    def failed(cls, error: str, exit_code: int = 1) -> "ExecutionOutcome":
        return cls(success=False, exit_code=exit_code, error=error)


class ExecutionState(str, Enum):
    """Terminal states of a supervised handler invocation."""

    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_NO_MATCH = "skipped_no_match"
    SKIPPED_NO_FILTER = "skipped_no_filter"
    SUCCEEDED = "succeeded"
    FAILED_EXHAUSTED = "failed_exhausted"


class ExecutionRecord(HookModel):
    """One handler's execution within a dispatch. Durations are milliseconds."""

    hook_id: str
    hook_name: str
    event: HookEvent
    state: ExecutionState
    start_time: datetime
    end_time: datetime
    duration: float = 0.0
    attempts: int = 0
    outcome: ExecutionOutcome
    blocked: bool = False
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return self.state in (
            ExecutionState.SKIPPED_DISABLED,
            ExecutionState.SKIPPED_NO_MATCH,
            ExecutionState.SKIPPED_NO_FILTER,
        )


class BatchError(HookModel):
    hook_id: str
    error: str


class BatchSummary(HookModel):
    """Aggregate counts for one dispatch."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    blocked: int = 0
    average_duration: float = 0.0
    errors: list[BatchError] = Field(default_factory=list)


class BatchResult(HookModel):
    """Everything the host needs to decide whether to continue its action."""

    event: HookEvent
    results: list[ExecutionRecord] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)

    @property
    def blocked(self) -> bool:
        return self.summary.blocked > 0


class ErrorEntry(HookModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    error: str


class HookStats(HookModel):
    """Per-handler execution statistics kept by the registry."""

    hook_id: str
    hook_name: str
    executions: int = 0
    successes: int = 0
    failures: int = 0
    blocked: int = 0
    average_duration: float = 0.0
    last_execution: datetime | None = None
    last_error: str | None = None
    error_history: list[ErrorEntry] = Field(default_factory=list)


class DispatchOptions(HookModel):
    """Per-call overrides; None means "use the handler's or system default"."""

    parallel: bool | None = None
    continue_on_error: bool | None = None
    timeout: int | None = Field(default=None, gt=0)
    retry: int | None = Field(default=None, ge=0)
    exit_code_blocking: list[int] | None = None
