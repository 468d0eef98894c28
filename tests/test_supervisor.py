"""Tests for the supervisor: selection, retries, timeouts and blocking."""

import asyncio
import time

import pytest

from conftest import CallCounter, FakeDecisionBackend, make_hook
from hookmanager.config import DispatcherSettings
from hookmanager.decision import FailOpenDecisionBackend
from hookmanager.exceptions import HandlerExecutionError
from hookmanager.handlers import build_executors
from hookmanager.models import (
    DispatchOptions,
    EventContext,
    ExecutionState,
    HookEvent,
    HookFilter,
)
from hookmanager.supervisor import Supervisor


@pytest.fixture
def supervisor(registry, settings, fake_sleep, fake_runner):
    return Supervisor(registry, build_executors(runner=fake_runner), settings, sleep=fake_sleep)


@pytest.fixture
def context():
    return EventContext(event=HookEvent.PRE_TOOL_USE, tool="Bash", command="ls")


class TestSkipping:
    """Tests for the skip states."""

    async def test_disabled(self, supervisor, registry, context):
        counter = CallCounter()
        hook = registry.register(make_hook("a", counter, enabled=False))

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SKIPPED_DISABLED
        assert record.outcome.success
        assert record.outcome.exit_code == 0
        assert record.outcome.stdout == "Hook disabled"
        assert counter.calls == []

    async def test_matcher_miss(self, supervisor, registry, context):
        counter = CallCounter()
        hook = registry.register(make_hook("a", counter, matcher="Edit"))

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SKIPPED_NO_MATCH
        assert record.outcome.success
        assert record.skipped
        assert counter.calls == []

    async def test_filter_miss(self, supervisor, registry, context):
        counter = CallCounter()
        hook = registry.register(
            make_hook("a", counter, filter=HookFilter(commands=["npm install"]))
        )

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SKIPPED_NO_FILTER
        assert counter.calls == []

    async def test_skips_do_not_touch_stats(self, supervisor, registry, context):
        hook = registry.register(make_hook("a", matcher="Edit"))
        await supervisor.run(hook, context)
        assert registry.stats("a").executions == 0


class TestExecution:
    """Tests for successful runs and blocking."""

    async def test_success(self, supervisor, registry, context):
        counter = CallCounter(result={"stdout": "ok"})
        hook = registry.register(make_hook("a", counter, matcher="Bash"))

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SUCCEEDED
        assert record.attempts == 1
        assert record.outcome.stdout == "ok"
        assert not record.blocked
        assert counter.calls == [context]
        assert registry.stats("a").successes == 1

    async def test_exit_code_two_blocks(self, supervisor, registry, context):
        hook = registry.register(make_hook("a", CallCounter(result={"exitCode": 2})))

        record = await supervisor.run(hook, context)

        assert record.outcome.success
        assert record.outcome.exit_code == 2
        assert record.blocked
        assert registry.stats("a").blocked == 1

    async def test_custom_blocking_codes(self, supervisor, registry, context):
        hook = registry.register(
            make_hook("a", CallCounter(result=3), exit_code_blocking=[3])
        )

        record = await supervisor.run(hook, context)

        assert not record.outcome.success
        assert record.blocked

    async def test_call_override_of_blocking_codes(self, supervisor, registry, context):
        hook = registry.register(make_hook("a", CallCounter(result={"exitCode": 2})))

        record = await supervisor.run(hook, context, DispatchOptions(exit_code_blocking=[7]))

        assert not record.blocked

    async def test_failed_outcome_is_not_retried(self, supervisor, registry, context):
        """A handler that returns failure completed; only raising is retried."""
        counter = CallCounter(result=False)
        hook = registry.register(make_hook("a", counter, retry=3))

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SUCCEEDED
        assert not record.outcome.success
        assert len(counter.calls) == 1
        assert registry.stats("a").failures == 1


class TestRetries:
    """Tests for retry, backoff and exhaustion."""

    async def test_retry_two_invokes_three_times(self, supervisor, registry, context, sleeps):
        counter = CallCounter(error=RuntimeError("boom"))
        hook = registry.register(make_hook("a", counter, retry=2))

        with pytest.raises(HandlerExecutionError) as exc_info:
            await supervisor.run(hook, context)

        assert len(counter.calls) == 3
        assert sleeps == [0, 1.0]
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error == "boom"
        assert exc_info.value.hook_id == "a"

    async def test_exhaustion_recorded_in_stats(self, supervisor, registry, context):
        hook = registry.register(make_hook("a", CallCounter(error=ValueError("bad input"))))

        with pytest.raises(HandlerExecutionError):
            await supervisor.run(hook, context)

        stats = registry.stats("a")
        assert stats.executions == 1
        assert stats.failures == 1
        assert stats.last_error == "bad input"
        assert len(stats.error_history) == 1

    async def test_recovers_on_later_attempt(self, supervisor, registry, context, sleeps):
        attempts = []

        def flaky(ctx):
            attempts.append(ctx)
            if len(attempts) < 2:
                raise RuntimeError("transient")
            return True

        hook = registry.register(make_hook("a", flaky, retry=3))

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SUCCEEDED
        assert record.attempts == 2
        assert sleeps == [0]

    async def test_call_retry_overrides_definition(self, supervisor, registry, context):
        counter = CallCounter(error=RuntimeError("boom"))
        hook = registry.register(make_hook("a", counter, retry=5))

        with pytest.raises(HandlerExecutionError):
            await supervisor.run(hook, context, DispatchOptions(retry=1))

        assert len(counter.calls) == 2

    async def test_settings_retry_used_when_definition_silent(
        self, registry, fake_sleep, context
    ):
        supervisor = Supervisor(
            registry, build_executors(), DispatcherSettings(default_retry=1), sleep=fake_sleep
        )
        counter = CallCounter(error=RuntimeError("boom"))
        hook = registry.register(make_hook("a", counter))

        with pytest.raises(HandlerExecutionError):
            await supervisor.run(hook, context)

        assert len(counter.calls) == 2


class TestTimeouts:
    """Tests for the per-attempt timeout."""

    async def test_timeout_counts_as_failure(self, supervisor, registry, context):
        async def slow(ctx):
            await asyncio.sleep(5)

        hook = registry.register(make_hook("a", slow, timeout=50))

        with pytest.raises(HandlerExecutionError, match="timed out after 50ms"):
            await supervisor.run(hook, context)

    async def test_call_timeout_overrides_definition(self, supervisor, registry, context):
        async def slow(ctx):
            await asyncio.sleep(5)

        hook = registry.register(make_hook("a", slow, timeout=60000))

        with pytest.raises(HandlerExecutionError, match="timed out after 20ms"):
            await supervisor.run(hook, context, DispatchOptions(timeout=20))

    async def test_timeout_passed_to_command_runner(self, supervisor, registry, context, fake_runner):
        hook = registry.register({
            "id": "cmd",
            "name": "Cmd",
            "events": ["PreToolUse"],
            "handler": {"type": "command", "command": "true"},
            "timeout": 1234,
        })

        await supervisor.run(hook, context)

        assert fake_runner.calls[0]["timeout_ms"] == 1234

    async def test_default_timeout_from_settings(self, supervisor, registry, context, fake_runner):
        hook = registry.register({
            "id": "cmd",
            "name": "Cmd",
            "events": ["PreToolUse"],
            "handler": {"type": "command", "command": "true"},
        })

        await supervisor.run(hook, context)

        assert fake_runner.calls[0]["timeout_ms"] == 30000

    async def test_slow_module_import_times_out(self, supervisor, registry, context, tmp_path):
        module = tmp_path / "slow_import.py"
        module.write_text(
            "import time\n"
            "time.sleep(1)\n"
            "\n"
            "def handle(ctx):\n"
            "    return True\n"
        )
        hook = registry.register({
            "id": "mod",
            "name": "Mod",
            "events": ["PreToolUse"],
            "handler": {"type": "module", "module": str(module)},
            "timeout": 100,
        })

        started = time.perf_counter()
        with pytest.raises(HandlerExecutionError, match="timed out after 100ms"):
            await supervisor.run(hook, context)

        assert time.perf_counter() - started < 0.8

    async def test_slow_decision_backend_fails_open(self, registry, settings, context):
        backend = FailOpenDecisionBackend(FakeDecisionBackend(delay=5), timeout_ms=30000)
        supervisor = Supervisor(registry, build_executors(decision_backend=backend), settings)
        hook = registry.register({
            "id": "review",
            "name": "Review",
            "events": ["PreToolUse"],
            "handler": {"type": "prompt", "prompt": "ok?"},
            "timeout": 100,
        })

        record = await supervisor.run(hook, context)

        assert record.state == ExecutionState.SUCCEEDED
        assert record.outcome.success
        assert record.outcome.output["decision"] == "continue"
        assert "timed out after 100ms" in record.outcome.output["reason"]
        assert not record.blocked

    async def test_blocking_sync_callback_still_times_out(self, supervisor, registry, context):
        def stuck(ctx):
            time.sleep(0.5)
            return True

        hook = registry.register(make_hook("a", stuck, timeout=50))

        started = time.perf_counter()
        with pytest.raises(HandlerExecutionError, match="timed out after 50ms"):
            await supervisor.run(hook, context)

        assert time.perf_counter() - started < 0.4
