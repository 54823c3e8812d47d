from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .result import ExecutionResult


class RunnerError(RuntimeError):
    """Base class for every error raised by the uv runner.

    Errors raised after the subprocess was started carry the captured
    `ExecutionResult` in `result`; pre-execution errors leave it as `None`.

    Example:
        ```python
        try:
            runner.run("script.py")
        except RunnerError as exc:
            print(exc.result.stderr if exc.result else exc)
        ```
    """

    def __init__(self, message: str, *, result: ExecutionResult | None = None) -> None:
        """Store the message and the (possibly partial) execution result.

        Example:
            ```python
            err = RunnerError("boom", result=None)
            ```
        """
        super().__init__(message)
        self.result = result


class ToolNotFoundError(RunnerError):
    """The uv executable could not be found on PATH."""


class ScriptNotFoundError(RunnerError):
    """The script file passed to file-mode execution does not exist."""


class ScriptReadError(RunnerError):
    """A structured-mode script file exists but could not be read."""


class EmptyScriptError(RunnerError):
    """Inline script text was empty or whitespace only."""


class InvalidScriptFormatError(RunnerError):
    """A structured-output script does not end with `print(json.dumps(...))`."""


class ScriptTimeoutError(RunnerError):
    """The script ran longer than the configured timeout and was killed."""


class ExecutionCancelledError(RunnerError):
    """The caller's cancel event fired before the script finished."""


class ExecutionFailedError(RunnerError):
    """The script exited with a non-zero status or could not be started.

    Example:
        ```python
        err = ExecutionFailedError("boom", exit_code=7)
        ```
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        result: ExecutionResult | None = None,
    ) -> None:
        """Store the exit code alongside the message and result.

        Example:
            ```python
            err = ExecutionFailedError("script execution failed with exit code 7", exit_code=7)
            ```
        """
        super().__init__(message, result=result)
        self.exit_code = exit_code


class UnmarshalFailedError(RunnerError):
    """Script stdout could not be decoded into the requested type."""
