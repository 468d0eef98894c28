"""Process and module execution capabilities used by hook handlers.

Both are small protocols so hosts and tests can substitute their own.
"""

import asyncio
import importlib
import importlib.util
import logging
import os
import shlex
import signal
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol

from hookmanager.exceptions import HandlerTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit status and captured output of a finished process."""

    exit_code: int
    stdout: str
    stderr: str


class CommandRunner(Protocol):
    """Runs a command and hard-kills it when the timeout expires."""

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout_ms: int,
        stdin: str | None = None,
    ) -> CommandResult:
        ...


class ModuleLoader(Protocol):
    """Resolves a callable from a module reference."""

    def load(self, module: str, function: str, base_dir: str | None = None) -> Callable[..., Any]:
        ...


class SubprocessCommandRunner:
    """Runs commands through the system shell with asyncio subprocesses.

    The child gets its own process group on POSIX so a timeout kills the
    whole tree, not just the shell.
    """

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout_ms: int,
        stdin: str | None = None,
    ) -> CommandResult:
        cmdline = " ".join([command, *(shlex.quote(str(a)) for a in args)])
        logger.debug(f"Running command: {cmdline[:200]} (cwd={cwd}, timeout={timeout_ms}ms)")

        proc = await asyncio.create_subprocess_shell(
            cmdline,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            start_new_session=os.name == "posix",
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin.encode() if stdin is not None else None),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise HandlerTimeoutError(timeout_ms) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        return CommandResult(
            exit_code=proc.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
        logger.debug(f"Killed process {proc.pid}")


class ImportlibModuleLoader:
    """Loads functions from dotted module names or ``.py`` file paths.

    File paths are resolved against ``base_dir`` (the project directory)
    when relative. Loaded files are cached by absolute path.
    """

    def __init__(self):
        self._file_modules: dict[str, ModuleType] = {}

    def load(self, module: str, function: str, base_dir: str | None = None) -> Callable[..., Any]:
        mod = self._load_module(module, base_dir)
        func = getattr(mod, function, None)
        if func is None or not callable(func):
            raise AttributeError(f"Function not found in module {module}: {function}")
        return func

    def _load_module(self, module: str, base_dir: str | None) -> ModuleType:
        if not (module.endswith(".py") or os.sep in module or "/" in module):
            return importlib.import_module(module)

        path = Path(module)
        if not path.is_absolute():
            path = Path(base_dir or os.getcwd()) / path
        path = path.resolve()
        key = str(path)

        if key in self._file_modules:
            return self._file_modules[key]

        if not path.exists():
            raise FileNotFoundError(f"Module file not found: {path}")

        spec = importlib.util.spec_from_file_location(f"hookmanager_user_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {path}")

        mod = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(mod)
        self._file_modules[key] = mod
        logger.debug(f"Loaded hook module from {path}")
        return mod


def python_command() -> str:
    """Shell-quoted path of the running interpreter."""
    return shlex.quote(sys.executable)
