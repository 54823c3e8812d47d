from .config import RunnerConfig
from .errors import (
    EmptyScriptError,
    ExecutionCancelledError,
    ExecutionFailedError,
    InvalidScriptFormatError,
    RunnerError,
    ScriptNotFoundError,
    ScriptReadError,
    ScriptTimeoutError,
    ToolNotFoundError,
    UnmarshalFailedError,
)
from .result import ExecutionResult, StructuredResult
from .runner import Runner, structured_output, structured_output_from_string
from .structured import decode_output, validate_json_print

__all__ = [
    "Runner",
    "RunnerConfig",
    "ExecutionResult",
    "StructuredResult",
    "structured_output",
    "structured_output_from_string",
    "decode_output",
    "validate_json_print",
    "RunnerError",
    "ToolNotFoundError",
    "ScriptNotFoundError",
    "ScriptReadError",
    "EmptyScriptError",
    "InvalidScriptFormatError",
    "ScriptTimeoutError",
    "ExecutionCancelledError",
    "ExecutionFailedError",
    "UnmarshalFailedError",
]
