"""File-based hook definition source.

Reads the global config (``~/.claude/hooks/hookmanager/config.json``) and
the project config (``<project>/.claude/hooks/hookmanager/config.json``).
YAML files (``config.yaml``) are accepted too. Both files hold a ``hooks``
list; the project file may also list ``excludeGlobalHooks`` ids.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from hookmanager.config import DispatcherSettings
from hookmanager.exceptions import ConfigError
from hookmanager.models import HookDefinition
from hookmanager.selector import validate_matcher

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("config.json", "config.yaml", "config.yml")
PROJECT_CONFIG_DIR = Path(".claude") / "hooks" / "hookmanager"

GLOBAL_SCOPE = "global"
PROJECT_SCOPE = "project"

# Substrings that earn a warning in command hooks
DANGEROUS_COMMANDS = ("sudo", "rm -rf")


@dataclass
class ConfigValidation:
    """Problems found in the loaded configuration."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class HookConfigLoader:
    """Loads hook definitions from global and project config files."""

    def __init__(self, global_dir: Path | str | None = None, project_dir: Path | str | None = None):
        self.global_dir = Path(global_dir).expanduser() if global_dir else None
        self.project_dir = Path(project_dir).expanduser() if project_dir else None

    @classmethod
    def from_settings(cls, settings: DispatcherSettings) -> "HookConfigLoader":
        return cls(settings.global_config_dir, settings.project_dir)

    @property
    def project_config_dir(self) -> Path | None:
        if self.project_dir is None:
            return None
        return self.project_dir / PROJECT_CONFIG_DIR

    def load(self) -> list[HookDefinition]:
        """Validated hook definitions, global ones first."""
        hooks = []
        for raw in self.raw_definitions():
            try:
                hooks.append(HookDefinition.model_validate(raw))
            except PydanticValidationError as e:
                raise ConfigError(
                    f"Invalid hook {raw.get('id', '<no id>')}: {e}",
                    path=raw.get("metadata", {}).get("_source"),
                ) from e

        logger.info(f"Loaded {len(hooks)} hooks from configuration")
        return hooks

    def raw_definitions(self) -> list[dict[str, Any]]:
        """Scope-tagged hook mappings after exclusions.

        A project hook replaces a global hook with the same id.
        """
        global_hooks = self._read_hooks(self.global_dir, GLOBAL_SCOPE)

        project_hooks: list[dict[str, Any]] = []
        excluded: set[str] = set()
        if self.project_config_dir is not None:
            project_data = self._read_dir(self.project_config_dir)
            project_hooks = self._tag(project_data, PROJECT_SCOPE)
            excluded = set(project_data.get("excludeGlobalHooks") or [])

        project_ids = {h.get("id") for h in project_hooks}
        merged = []
        for hook in global_hooks:
            if hook.get("id") in excluded:
                logger.debug(f"Global hook {hook.get('id')} excluded by project config")
                continue
            if hook.get("id") in project_ids:
                logger.debug(f"Global hook {hook.get('id')} overridden by project config")
                continue
            merged.append(hook)

        return merged + project_hooks

    def validate(self) -> ConfigValidation:
        """Check definitions and matchers without registering anything."""
        result = ConfigValidation()
        try:
            raw_hooks = self.raw_definitions()
        except ConfigError as e:
            result.valid = False
            result.errors.append(str(e))
            return result

        names: set[str] = set()
        for raw in raw_hooks:
            try:
                hook = HookDefinition.model_validate(raw)
            except PydanticValidationError as e:
                result.errors.append(f"Hook {raw.get('id', '<no id>')} is invalid: {e}")
                continue

            if hook.name in names:
                result.errors.append(f"Duplicate hook name: {hook.name}")
            names.add(hook.name)

            for event in hook.events:
                check = validate_matcher(event, hook.matcher)
                if not check.valid:
                    message = f"Hook {hook.name}: {check.error}"
                    if check.suggestions:
                        message += f" Try one of: {', '.join(check.suggestions)}"
                    result.warnings.append(message)

            if hook.handler.type == "command":
                command = hook.handler.command
                if any(bad in command for bad in DANGEROUS_COMMANDS):
                    result.warnings.append(
                        f"Hook {hook.name} uses potentially dangerous command: {command}"
                    )

        result.valid = not result.errors
        return result

    def _read_hooks(self, directory: Path | None, scope: str) -> list[dict[str, Any]]:
        if directory is None:
            return []
        return self._tag(self._read_dir(directory), scope)

    def _tag(self, data: dict[str, Any], scope: str) -> list[dict[str, Any]]:
        hooks = data.get("hooks") or []
        if not isinstance(hooks, list):
            raise ConfigError("'hooks' must be a list", path=data.get("_path"))

        tagged = []
        for hook in hooks:
            if not isinstance(hook, dict):
                raise ConfigError("Each hook must be a mapping", path=data.get("_path"))
            metadata = {**(hook.get("metadata") or {}), "_scope": scope}
            if data.get("_path"):
                metadata["_source"] = data["_path"]
            tagged.append({**hook, "metadata": metadata})
        return tagged

    def _read_dir(self, directory: Path) -> dict[str, Any]:
        for name in CONFIG_FILENAMES:
            path = directory / name
            if path.exists():
                data = read_config_file(path)
                data["_path"] = str(path)
                return data
        logger.debug(f"No hook config in {directory}")
        return {}


def read_config_file(path: Path | str) -> dict[str, Any]:
    """Parse a JSON or YAML config file into a mapping."""
    path = Path(path)
    try:
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path=str(path)) from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse {path}: {e}", path=str(path)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}", path=str(path))
    return data
