"""Executors for the hook handler variants.

Each executor runs one kind of handler and reduces whatever it produced to
an ``ExecutionOutcome``. Executors do not retry or enforce timeouts
themselves; the supervisor does that. They only pass the timeout on to
capabilities that must hard-kill work (the command runner).
"""

import asyncio
import inspect
import json
import logging
import os
import shlex
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

from hookmanager.decision import Decision, FailOpenDecisionBackend, build_prompt
from hookmanager.models import (
    DECISION_EVENTS,
    PERMISSION_EVENTS,
    CallbackHandler,
    CommandHandler,
    EventContext,
    ExecutionOutcome,
    HookDefinition,
    ModuleHandler,
    PromptHandler,
    ScriptHandler,
)
from hookmanager.runners import (
    CommandRunner,
    ImportlibModuleLoader,
    ModuleLoader,
    SubprocessCommandRunner,
    python_command,
)

logger = logging.getLogger(__name__)


class HandlerExecutor(Protocol):
    """Runs one handler variant.

    Executors that set ``bounds_own_timeout`` enforce ``timeout_ms``
    themselves and are not cancelled by the supervisor.
    """

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        ...


def _pick(data: Mapping[str, Any], name: str, alias: str) -> Any:
    return data[name] if name in data else data.get(alias)


def normalize_result(result: Any, include_decisions: bool = False) -> ExecutionOutcome:
    """Reduce a handler's return value to an ExecutionOutcome.

    Args:
        result: Whatever the handler returned
        include_decisions: Also carry permission decision, updated input and
            additional context from mapping results

    Returns:
        bool -> success/failure with exit 0/1, int -> exit code, mapping ->
        pass-through with exit code defaulting to 0 on success else 1,
        anything else -> success with its string form as stdout.
    """
    if isinstance(result, ExecutionOutcome):
        return result

    if isinstance(result, bool):
        return ExecutionOutcome(success=result, exit_code=0 if result else 1)

    if isinstance(result, int):
        return ExecutionOutcome(success=result == 0, exit_code=result)

    if isinstance(result, Mapping):
        success = result.get("success") is not False
        exit_code = _pick(result, "exit_code", "exitCode")
        fields: dict[str, Any] = {
            "success": success,
            "exit_code": exit_code if isinstance(exit_code, int) and exit_code else (0 if success else 1),
            "stdout": result.get("stdout"),
            "stderr": result.get("stderr"),
            "output": result.get("output"),
        }
        if include_decisions:
            fields["permission_decision"] = _pick(result, "permission_decision", "permissionDecision")
            fields["updated_input"] = _pick(result, "updated_input", "updatedInput")
            fields["additional_context"] = _pick(result, "additional_context", "additionalContext")
        return ExecutionOutcome(**fields)

    return ExecutionOutcome.ok(stdout=None if result is None else str(result))


def context_environment(context: EventContext) -> dict[str, str]:
    """Environment variables describing the event for child processes."""
    env = {
        "CLAUDE_EVENT": context.event.value,
        "CLAUDE_SESSION_ID": context.session_id,
        "CLAUDE_USER_ID": context.user_id or "",
        "CLAUDE_PROJECT_ID": context.project_id or "",
        "CLAUDE_TOOL": context.tool or "",
        "CLAUDE_COMMAND": context.command or "",
        "CLAUDE_PROJECT_DIR": context.project_dir or "",
        "CLAUDE_INPUT": json.dumps(context.input, default=str) if context.input is not None else "",
        "CLAUDE_METADATA": json.dumps(context.metadata, default=str),
    }
    if context.plugin_root:
        env["CLAUDE_PLUGIN_ROOT"] = context.plugin_root
    if context.env_file:
        env["CLAUDE_ENV_FILE"] = context.env_file
    return env


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    """Call sync or async user code without blocking the event loop."""
    if inspect.iscoroutinefunction(func):
        result = await func(*args)
    else:
        result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


class CommandExecutor:
    """Runs a shell command with the context as stdin and CLAUDE_* variables."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        handler: CommandHandler = hook.handler
        return await self._run(
            handler.command,
            handler.args,
            cwd=handler.cwd or context.project_dir,
            extra_env=handler.env,
            context=context,
            timeout_ms=timeout_ms,
        )

    async def _run(
        self,
        command: str,
        args: list[str],
        *,
        cwd: str | None,
        extra_env: Mapping[str, str],
        context: EventContext,
        timeout_ms: int,
    ) -> ExecutionOutcome:
        env = {**os.environ, **extra_env, **context_environment(context)}
        payload = json.dumps(context.to_payload())

        result = await self.runner.run(
            command, args, cwd=cwd, env=env, timeout_ms=timeout_ms, stdin=payload
        )

        output = None
        if result.stdout.startswith("{"):
            try:
                output = json.loads(result.stdout)
            except json.JSONDecodeError:
                logger.debug(f"Command output starts with '{{' but is not JSON: {command}")

        return ExecutionOutcome(
            success=result.exit_code == 0,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            output=output,
        )


class ScriptExecutor(CommandExecutor):
    """Resolves a script path against the project directory, then runs it."""

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        handler: ScriptHandler = hook.handler
        path = Path(handler.path)
        if not path.is_absolute():
            path = Path(context.project_dir or os.getcwd()) / path

        command = shlex.quote(str(path))
        args = list(handler.args)
        if handler.interpreter:
            args.insert(0, str(path))
            command = _interpreter_command(handler.interpreter)

        logger.debug(f"Executing script: {path}")
        return await self._run(
            command,
            args,
            cwd=handler.cwd or context.project_dir,
            extra_env=handler.env,
            context=context,
            timeout_ms=timeout_ms,
        )


def _interpreter_command(interpreter: str) -> str:
    # "python" always means the interpreter running the dispatcher
    if interpreter in ("python", "python3"):
        return python_command()
    return interpreter


class ModuleExecutor:
    """Loads ``module.function`` and calls it with the event context.

    Loading runs in a worker thread, so slow module top-level code counts
    against the hook's timeout instead of stalling the event loop.
    """

    def __init__(self, loader: ModuleLoader):
        self.loader = loader

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        handler: ModuleHandler = hook.handler
        func = await asyncio.to_thread(
            self.loader.load, handler.module, handler.function, context.project_dir
        )
        result = await _call(func, context, *handler.args)
        return normalize_result(result)


class CallbackExecutor:
    """Calls an in-process callable registered with the hook.

    Sync callables run in a worker thread. A thread cannot be cancelled:
    after a timeout it keeps running in the background, and every retry
    starts another one. Callbacks that may hang should be coroutines.
    """

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        handler: CallbackHandler = hook.handler
        result = await _call(handler.callback, context)
        return normalize_result(result, include_decisions=True)


class PromptExecutor:
    """Asks the decision backend about the pending action.

    Only decision events are evaluated. Backend trouble never fails the
    handler: the fail-open backend turns it into a continue decision. That
    includes running past the hook's timeout, so the backend call is
    bounded here instead of by the supervisor.
    """

    bounds_own_timeout = True

    def __init__(self, backend: FailOpenDecisionBackend, default_model: str = "haiku"):
        self.backend = backend
        self.default_model = default_model

    async def execute(
        self, hook: HookDefinition, context: EventContext, timeout_ms: int
    ) -> ExecutionOutcome:
        handler: PromptHandler = hook.handler

        if context.event not in DECISION_EVENTS:
            logger.debug(f"Event {context.event.value} does not support prompt handler, skipping")
            return ExecutionOutcome.ok(
                stdout=f"Event {context.event.value} does not support prompt decisions"
            )

        prompt = build_prompt(handler.prompt, context.to_payload())
        decision = await self.backend.complete(
            prompt, handler.model or self.default_model, handler.system_prompt, timeout_ms=timeout_ms
        )

        if decision.failed_open:
            return self._continue(decision.reason)

        logger.info(
            f"Prompt handler {hook.name} decided {'allow' if decision.ok else 'deny'}: "
            f"{decision.reason[:100]}"
        )
        return self._decide(context, decision)

    def _decide(self, context: EventContext, decision: Decision) -> ExecutionOutcome:
        if context.event in PERMISSION_EVENTS:
            verdict = "allow" if decision.ok else "deny"
            output = {
                "hookSpecificOutput": {
                    "permissionDecision": verdict,
                    "permissionDecisionReason": decision.reason,
                }
            }
            return ExecutionOutcome(
                success=True,
                exit_code=0,
                stdout=json.dumps(output),
                output=output,
                permission_decision=verdict,
            )

        output = {"decision": "continue" if decision.ok else "block", "reason": decision.reason}
        return ExecutionOutcome(
            success=True,
            exit_code=0 if decision.ok else 2,
            stdout=json.dumps(output),
            output=output,
        )

    def _continue(self, reason: str) -> ExecutionOutcome:
        output = {"decision": "continue", "reason": reason}
        return ExecutionOutcome(success=True, exit_code=0, stdout=json.dumps(output), output=output)


def build_executors(
    runner: CommandRunner | None = None,
    loader: ModuleLoader | None = None,
    decision_backend: FailOpenDecisionBackend | None = None,
    default_model: str = "haiku",
) -> dict[str, HandlerExecutor]:
    """Map each handler ``type`` to its executor."""
    runner = runner or SubprocessCommandRunner()
    return {
        "command": CommandExecutor(runner),
        "script": ScriptExecutor(runner),
        "module": ModuleExecutor(loader or ImportlibModuleLoader()),
        "callback": CallbackExecutor(),
        "prompt": PromptExecutor(decision_backend or FailOpenDecisionBackend(None), default_model),
    }
