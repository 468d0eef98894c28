"""Shared fixtures for the hook dispatcher tests."""

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from hookmanager.config import DispatcherSettings
from hookmanager.decision import Decision
from hookmanager.exceptions import DecisionBackendError
from hookmanager.models import CallbackHandler, HookDefinition, HookEvent
from hookmanager.registry import HookRegistry
from hookmanager.runners import CommandResult


def make_hook(
    hook_id: str,
    callback: Callable[..., Any] | None = None,
    events: Sequence[HookEvent] = (HookEvent.PRE_TOOL_USE,),
    **kwargs: Any,
) -> HookDefinition:
    """Callback hook with sensible defaults."""
    return HookDefinition(
        id=hook_id,
        name=kwargs.pop("name", hook_id.replace("-", " ").title()),
        events=list(events),
        handler=CallbackHandler(callback=callback or (lambda ctx: True)),
        **kwargs,
    )


class CallCounter:
    """Callable that records invocations and returns or raises a fixed result."""

    def __init__(self, result: Any = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[Any] = []

    def __call__(self, context):
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        return self.result


class FakeRunner:
    """Command runner returning a scripted result."""

    def __init__(self, result: CommandResult | None = None):
        self.result = result or CommandResult(exit_code=0, stdout="", stderr="")
        self.calls: list[dict[str, Any]] = []

    async def run(self, command, args=(), *, cwd=None, env=None, timeout_ms, stdin=None):
        self.calls.append({
            "command": command,
            "args": list(args),
            "cwd": cwd,
            "env": dict(env or {}),
            "timeout_ms": timeout_ms,
            "stdin": stdin,
        })
        return self.result


class FakeDecisionBackend:
    """Decision backend returning a fixed decision or raising, optionally after a delay."""

    def __init__(
        self,
        decision: Decision | None = None,
        error: Exception | None = None,
        delay: float = 0,
    ):
        self.decision = decision or Decision(ok=True, reason="looks fine")
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(self, prompt, model=None, system_prompt=None):
        self.calls.append({"prompt": prompt, "model": model, "system_prompt": system_prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.decision


@pytest.fixture
def registry():
    return HookRegistry()


@pytest.fixture
def settings():
    return DispatcherSettings()


@pytest.fixture
def sleeps():
    """Backoff delays requested by the supervisor, in seconds."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def failing_backend():
    return FakeDecisionBackend(error=DecisionBackendError("service unavailable", status_code=503))


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the host environment out of filter and backend decisions."""
    for key in (
        "HOOKMANAGER_ENV",
        "NODE_ENV",
        "ENV",
        "ANTHROPIC_API_KEY",
        "CLAUDE_API_KEY",
        "OPENAI_API_KEY",
        "HOOKMANAGER_AI_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
