from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from pydantic import ValidationError

from .config import DEFAULT_EXECUTABLE, RunnerConfig
from .errors import (
    EmptyScriptError,
    ExecutionCancelledError,
    ExecutionFailedError,
    ScriptNotFoundError,
    ScriptReadError,
    ScriptTimeoutError,
    ToolNotFoundError,
    UnmarshalFailedError,
)
from .result import ExecutionResult, StructuredResult
from .structured import decode_output, validate_json_print

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

logger = logging.getLogger(__name__)

T = TypeVar("T")

STDIN_SENTINEL = "-"
_CANCEL_POLL_SECONDS = 0.05


def _resolve_config(config: RunnerConfig | None, config_file: str | None) -> RunnerConfig:
    """Resolve the effective configuration for a runner.

    Example:
        ```python
        config = _resolve_config(None, "/tmp/uv_runner.toml")
        ```
    """
    if config is not None and config_file is not None:
        raise ValueError("Provide either 'config' or 'config_file', not both")
    if config_file is not None:
        return RunnerConfig.from_file(config_file)
    if config is None:
        return RunnerConfig()
    return config


def _merge_env(overrides: Sequence[str]) -> dict[str, str] | None:
    """Apply KEY=VALUE overrides on top of the inherited environment.

    Returns None when there is nothing to override so the child simply
    inherits. Later entries win; an entry without '=' sets an empty value.

    Example:
        ```python
        env = _merge_env(["DEBUG=1", "DEBUG=2"])  # env["DEBUG"] == "2"
        ```
    """
    if not overrides:
        return None
    env = dict(os.environ)
    for entry in overrides:
        key, _, value = entry.partition("=")
        env[key] = value
    return env


def _children_cpu_times() -> tuple[float, float]:
    """Return (user, system) CPU seconds consumed by reaped children.

    Example:
        ```python
        user, system = _children_cpu_times()
        ```
    """
    if _resource is None:
        return 0.0, 0.0
    usage = _resource.getrusage(_resource.RUSAGE_CHILDREN)
    return usage.ru_utime, usage.ru_stime


def _decode(data: bytes | None) -> str:
    """Decode captured bytes without newline translation.

    Example:
        ```python
        text = _decode(b"hello\\r\\n")  # "hello\\r\\n"
        ```
    """
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    """Force-kill the child and anything it spawned in its session.

    Example:
        ```python
        _kill_process_group(process)
        ```
    """
    if not hasattr(os, "killpg"):
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()


class Runner:
    """Run Python scripts through `uv run` with a fixed configuration.

    The uv executable is resolved once at construction. Each call spawns one
    subprocess, waits for it (bounded by the configured timeout) and returns
    the captured output, or raises a `RunnerError` carrying it.

    Example:
        ```python
        runner = Runner(RunnerConfig(python_version="3.12", dependencies=["requests"]))
        result = runner.run("fetch.py", "https://example.com")
        ```
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        *,
        config_file: str | None = None,
        executable: str = DEFAULT_EXECUTABLE,
    ) -> None:
        """Locate the uv executable and store the resolved configuration.

        Example:
            ```python
            runner = Runner(config_file="uv_runner.toml")
            ```
        """
        resolved = shutil.which(executable)
        if resolved is None:
            raise ToolNotFoundError(f"{executable} not found in PATH")
        self._executable = resolved
        self._config = _resolve_config(config, config_file)

    @property
    def config(self) -> RunnerConfig:
        """Return the immutable configuration of this runner.

        Example:
            ```python
            timeout = runner.config.timeout_seconds
            ```
        """
        return self._config

    @property
    def executable(self) -> str:
        """Return the absolute path of the uv executable in use.

        Example:
            ```python
            print(runner.executable)  # /usr/local/bin/uv
            ```
        """
        return self._executable

    def build_command(self, source: str, args: Sequence[str] = ()) -> list[str]:
        """Build the full `uv run` argv for a script source and arguments.

        Call-site arguments replace the configured default arguments; they
        are never merged.

        Example:
            ```python
            cmd = runner.build_command("script.py", ["--verbose"])
            ```
        """
        config = self._config
        cmd = [self._executable, "run"]
        if config.python_version:
            cmd.extend(["--python", config.python_version])
        for dep in config.dependencies:
            cmd.extend(["--with", dep])
        cmd.extend(config.extra_flags)
        cmd.append(source)
        cmd.extend(args if args else config.script_args)
        return cmd

    def run(
        self,
        script_path: str | os.PathLike[str],
        *args: str,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute a script file and return its captured output.

        Example:
            ```python
            result = runner.run("scripts/report.py", "--month", "2024-05")
            ```
        """
        path = os.fspath(script_path)
        if not os.path.exists(path):
            raise ScriptNotFoundError(f"script file does not exist: {path}")
        return self._execute(path, None, args, cancel)

    def run_string(
        self,
        script: str,
        *args: str,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute inline script text by feeding it to `uv run -` on stdin.

        Example:
            ```python
            result = runner.run_string("print('hello')")
            ```
        """
        if not script.strip():
            raise EmptyScriptError("empty script provided")
        return self._execute(STDIN_SENTINEL, script, args, cancel)

    def run_structured(
        self,
        script_path: str | os.PathLike[str],
        *args: str,
        into: type[T] | Callable[[Any], T] | None = None,
        cancel: threading.Event | None = None,
    ) -> StructuredResult[T]:
        """Execute a script file and decode its JSON output.

        The script must end with `print(json.dumps(...))`; this is checked
        before anything is run.

        Example:
            ```python
            structured = runner.run_structured("stats.py", into=Stats)
            print(structured.data.total)
            ```
        """
        path = Path(script_path)
        try:
            source = path.read_bytes().decode("utf-8", errors="replace")
        except FileNotFoundError as exc:
            raise ScriptNotFoundError(f"script file does not exist: {path}") from exc
        except OSError as exc:
            raise ScriptReadError(f"failed to read script file: {exc}") from exc
        validate_json_print(source)
        result = self.run(path, *args, cancel=cancel)
        return self._decode_structured(result, into)

    def run_structured_string(
        self,
        script: str,
        *args: str,
        into: type[T] | Callable[[Any], T] | None = None,
        cancel: threading.Event | None = None,
    ) -> StructuredResult[T]:
        """Execute inline script text and decode its JSON output.

        Example:
            ```python
            structured = runner.run_structured_string("import json\\nprint(json.dumps([1, 2]))", into=list)
            ```
        """
        validate_json_print(script)
        result = self.run_string(script, *args, cancel=cancel)
        return self._decode_structured(result, into)

    def _decode_structured(
        self,
        result: ExecutionResult,
        into: type[T] | Callable[[Any], T] | None,
    ) -> StructuredResult[T]:
        """Decode stdout of a finished run into a structured result.

        Example:
            ```python
            structured = runner._decode_structured(result, dict)
            ```
        """
        try:
            data = decode_output(result.stdout, into)
        except (ValidationError, ValueError, TypeError) as exc:
            raise UnmarshalFailedError(
                f"failed to unmarshal script output: {exc}", result=result
            ) from exc
        return StructuredResult(result=result, data=data)

    def _execute(
        self,
        source: str,
        stdin_text: str | None,
        args: Sequence[str],
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        """Spawn uv, wait for it within the deadline and classify the outcome.

        Example:
            ```python
            result = runner._execute("-", "print(1)", (), None)
            ```
        """
        config = self._config
        cmd = self.build_command(source, args)
        deadline = time.monotonic() + config.timeout_seconds
        input_bytes = stdin_text.encode("utf-8") if stdin_text is not None else None
        logger.debug("running %s (timeout %ss)", cmd, config.timeout_seconds)

        cpu_before = _children_cpu_times()
        started = time.monotonic()
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if input_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=config.work_dir or None,
                env=_merge_env(config.env),
                start_new_session=True,
            )
        except OSError as exc:
            raise ExecutionFailedError(f"script execution failed: {exc}") from exc

        timed_out = False
        cancelled = False
        timeout_exc: subprocess.TimeoutExpired | None = None
        with process:
            pending_input = input_bytes
            while True:
                remaining = deadline - time.monotonic()
                wait = remaining if cancel is None else min(remaining, _CANCEL_POLL_SECONDS)
                try:
                    stdout, stderr = process.communicate(pending_input, timeout=max(wait, 0))
                    break
                except subprocess.TimeoutExpired as exc:
                    # communicate() keeps feeding stdin across retries
                    pending_input = None
                    if time.monotonic() >= deadline:
                        timed_out = True
                        timeout_exc = exc
                    elif cancel is not None and cancel.is_set():
                        cancelled = True
                    else:
                        continue
                    _kill_process_group(process)
                    stdout, stderr = process.communicate()
                    break

        duration = time.monotonic() - started
        cpu_after = _children_cpu_times()
        result = ExecutionResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=process.returncode,
            duration_seconds=duration,
            user_time=max(cpu_after[0] - cpu_before[0], 0.0),
            system_time=max(cpu_after[1] - cpu_before[1], 0.0),
            timed_out=timed_out,
            command=tuple(cmd),
        )
        logger.debug("exit code %s after %.3fs", result.exit_code, duration)

        if timed_out:
            raise ScriptTimeoutError(
                f"script execution timed out after {config.timeout_seconds}s",
                result=result,
            ) from timeout_exc
        if cancelled:
            raise ExecutionCancelledError("script execution cancelled", result=result)
        if result.exit_code != 0:
            if result.stderr:
                raise ExecutionFailedError(
                    result.stderr, exit_code=result.exit_code, result=result
                )
            raise ExecutionFailedError(
                f"script execution failed with exit code {result.exit_code}",
                exit_code=result.exit_code,
                result=result,
            )
        return result


def structured_output(
    runner: Runner,
    script_path: str | os.PathLike[str],
    *args: str,
    into: type[T] | Callable[[Any], T] | None = None,
    cancel: threading.Event | None = None,
) -> StructuredResult[T]:
    """Run a script file with `runner` and decode its JSON output.

    Example:
        ```python
        structured = structured_output(runner, "stats.py", into=dict)
        ```
    """
    return runner.run_structured(script_path, *args, into=into, cancel=cancel)


def structured_output_from_string(
    runner: Runner,
    script: str,
    *args: str,
    into: type[T] | Callable[[Any], T] | None = None,
    cancel: threading.Event | None = None,
) -> StructuredResult[T]:
    """Run inline script text with `runner` and decode its JSON output.

    Example:
        ```python
        structured = structured_output_from_string(runner, "import json\\nprint(json.dumps(1))", into=int)
        ```
    """
    return runner.run_structured_string(script, *args, into=into, cancel=cancel)
