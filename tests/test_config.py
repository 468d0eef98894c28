"""Tests for settings and effective-option resolution."""

from pathlib import Path

import pytest

from conftest import make_hook
from hookmanager.config import DispatcherSettings, load_settings, resolve_options
from hookmanager.exceptions import ConfigError
from hookmanager.models import DispatchOptions


class TestSettings:
    """Tests for DispatcherSettings and load_settings()."""

    def test_defaults(self):
        settings = DispatcherSettings()
        assert settings.default_timeout_ms == 30000
        assert settings.default_retry == 0
        assert settings.parallel is False
        assert settings.continue_on_error is False
        assert settings.ai_model == "haiku"
        assert settings.global_config_dir == Path("~/.claude/hooks/hookmanager").expanduser()

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("HOOKMANAGER_DEFAULT_TIMEOUT_MS", "5000")
        monkeypatch.setenv("HOOKMANAGER_PARALLEL", "true")
        settings = DispatcherSettings()
        assert settings.default_timeout_ms == 5000
        assert settings.parallel is True

    def test_yaml_overlay(self, tmp_path):
        config = tmp_path / "hookmanager.yaml"
        config.write_text("default_retry: 2\nai_provider: openai\nproject_dir: /work/app\n")

        settings = load_settings(config)

        assert settings.default_retry == 2
        assert settings.ai_provider == "openai"
        assert settings.project_dir == Path("/work/app")

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_settings(tmp_path / "absent.yaml").default_retry == 0
        assert load_settings(None).default_retry == 0

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_settings(config)


class TestResolveOptions:
    """Tests for the call > definition > settings precedence."""

    def test_settings_defaults(self):
        settings = DispatcherSettings(default_timeout_ms=1000, default_retry=4)
        options = resolve_options(make_hook("a"), None, settings)

        assert options.timeout_ms == 1000
        assert options.retries == 4
        assert options.exit_code_blocking == (2,)

    def test_definition_beats_settings(self):
        settings = DispatcherSettings(default_timeout_ms=1000, default_retry=4)
        hook = make_hook("a", timeout=250, retry=0, exit_code_blocking=[9])

        options = resolve_options(hook, DispatchOptions(), settings)

        assert options.timeout_ms == 250
        assert options.retries == 0
        assert options.exit_code_blocking == (9,)

    def test_call_beats_definition(self):
        hook = make_hook("a", timeout=250, retry=3)

        options = resolve_options(
            hook,
            DispatchOptions(timeout=50, retry=1, exit_code_blocking=[5]),
            DispatcherSettings(),
        )

        assert options.timeout_ms == 50
        assert options.retries == 1
        assert options.exit_code_blocking == (5,)
