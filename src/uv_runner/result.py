from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Captured output and timings of one `uv run` invocation.

    Example:
        ```python
        result = ExecutionResult(stdout="hi\\n", stderr="", exit_code=0)
        ```
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float = 0.0
    user_time: float = 0.0
    system_time: float = 0.0
    timed_out: bool = False
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        """Return True when the script exited cleanly within its deadline.

        Example:
            ```python
            if result.ok:
                print(result.stdout)
            ```
        """
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True, slots=True)
class StructuredResult(Generic[T]):
    """Execution result plus the value decoded from the script's JSON output.

    Example:
        ```python
        structured = StructuredResult(result=result, data={"a": 1})
        ```
    """

    result: ExecutionResult
    data: T | None = None
