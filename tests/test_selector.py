"""Tests for matcher and filter selection."""

import pytest

from hookmanager.models import EventContext, HookEvent, HookFilter
from hookmanager.selector import (
    check_filter,
    check_matcher,
    environment_name,
    matcher_target,
    validate_matcher,
)


def ctx(event=HookEvent.PRE_TOOL_USE, **kwargs):
    return EventContext(event=event, **kwargs)


class TestMatcher:
    """Tests for the coarse matcher check."""

    @pytest.mark.parametrize("matcher", [None, "*", "", ".*"])
    @pytest.mark.parametrize(
        "context",
        [
            ctx(tool="Bash"),
            ctx(event=HookEvent.STOP),
            ctx(event=HookEvent.SESSION_START),
        ],
    )
    def test_wildcards_always_pass(self, matcher, context):
        assert check_matcher(matcher, context)

    def test_tool_name_anchored(self):
        assert check_matcher("Bash", ctx(tool="Bash"))
        assert not check_matcher("Bash", ctx(tool="BashOutput"))
        assert not check_matcher("ash", ctx(tool="Bash"))

    def test_alternation(self):
        assert check_matcher("Edit|Write", ctx(tool="Write"))
        assert not check_matcher("Edit|Write", ctx(tool="Read"))

    def test_regex_prefix(self):
        assert check_matcher("mcp__.*", ctx(tool="mcp__github__create_issue"))

    def test_invalid_regex_falls_back_to_equality(self):
        assert check_matcher("Bash(", ctx(tool="Bash("))
        assert not check_matcher("Bash(", ctx(tool="Bash"))

    def test_missing_target_fails(self):
        assert not check_matcher("Bash", ctx(tool=None))

    def test_metadata_targets(self):
        start = ctx(event=HookEvent.SESSION_START, metadata={"source": "resume"})
        assert check_matcher("resume", start)
        assert not check_matcher("startup", start)

        end = ctx(event=HookEvent.SESSION_END, metadata={"reason": "logout"})
        assert check_matcher("logout|clear", end)

        subagent = ctx(event=HookEvent.SUBAGENT_STOP, metadata={"agent_type": "Explore"})
        assert check_matcher("Explore", subagent)

        notification = ctx(event=HookEvent.NOTIFICATION, metadata={"type": "idle_prompt"})
        assert check_matcher("idle_prompt", notification)

        compact = ctx(event=HookEvent.PRE_COMPACT, metadata={"trigger": "auto"})
        assert check_matcher("auto", compact)

    def test_metadata_target_ignores_tool(self):
        """Session events match on metadata even when a tool is present."""
        context = ctx(event=HookEvent.SESSION_START, tool="Bash", metadata={"source": "startup"})
        assert matcher_target(context) == "startup"
        assert not check_matcher("Bash", context)

    def test_event_without_target_fails(self):
        assert not check_matcher("anything", ctx(event=HookEvent.STOP, tool="Bash"))
        assert not check_matcher("x", ctx(event=HookEvent.USER_PROMPT_SUBMIT))


class TestFilter:
    """Tests for the fine-grained filter check."""

    def test_no_filter_passes(self):
        assert check_filter(None, ctx())
        assert check_filter(HookFilter(), ctx())

    def test_commands_require_a_command(self):
        hook_filter = HookFilter(commands=["npm install"])
        assert not check_filter(hook_filter, ctx())
        assert not check_filter(hook_filter, ctx(command=""))
        assert check_filter(hook_filter, ctx(command="npm install lodash"))
        assert not check_filter(hook_filter, ctx(command="npm test"))

    def test_tools(self):
        hook_filter = HookFilter(tools=["Edit", "Write"])
        assert check_filter(hook_filter, ctx(tool="Edit"))
        assert not check_filter(hook_filter, ctx(tool="Bash"))

    def test_patterns_search_serialized_input(self):
        hook_filter = HookFilter(patterns=['"file_path":"/etc/'])
        assert check_filter(hook_filter, ctx(input={"file_path": "/etc/hosts"}))
        assert not check_filter(hook_filter, ctx(input={"file_path": "/home/me/x"}))

    def test_users_and_projects(self):
        hook_filter = HookFilter(users=["alice"], projects=["web"])
        assert check_filter(hook_filter, ctx(user_id="alice", project_id="web"))
        assert not check_filter(hook_filter, ctx(user_id="bob", project_id="web"))
        assert not check_filter(hook_filter, ctx(user_id="alice", project_id="api"))

    def test_environments(self):
        hook_filter = HookFilter(environments=["production"])
        assert check_filter(hook_filter, ctx(environment={"NODE_ENV": "production"}))
        assert not check_filter(hook_filter, ctx(environment={"NODE_ENV": "staging"}))

    def test_environment_defaults_to_development(self, monkeypatch):
        assert environment_name(ctx()) == "development"
        monkeypatch.setenv("ENV", "ci")
        assert environment_name(ctx()) == "ci"
        monkeypatch.setenv("HOOKMANAGER_ENV", "production")
        assert environment_name(ctx()) == "production"

    def test_all_predicates_must_hold(self):
        hook_filter = HookFilter(tools=["Bash"], commands=["rm"])
        assert check_filter(hook_filter, ctx(tool="Bash", command="rm -rf build"))
        assert not check_filter(hook_filter, ctx(tool="Bash", command="ls"))
        assert not check_filter(hook_filter, ctx(tool="Edit", command="rm x"))


class TestValidateMatcher:
    """Tests for matcher validation."""

    def test_wildcard_valid_everywhere(self):
        assert validate_matcher(HookEvent.STOP, "*").valid

    def test_known_tool(self):
        assert validate_matcher(HookEvent.PRE_TOOL_USE, "Bash").valid

    def test_regex_accepted(self):
        assert validate_matcher(HookEvent.PRE_TOOL_USE, "Edit|Write").valid

    def test_unknown_value_has_suggestions(self):
        result = validate_matcher(HookEvent.SESSION_START, "boot")
        assert not result.valid
        assert "startup" in result.suggestions

    def test_event_without_matcher_support(self):
        result = validate_matcher(HookEvent.STOP, "Bash")
        assert not result.valid
        assert "does not support matcher" in result.error
