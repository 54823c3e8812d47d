from __future__ import annotations

import json
import typing
from typing import Any, Callable, TypeVar, cast

from pydantic import TypeAdapter

from .errors import InvalidScriptFormatError

T = TypeVar("T")

JSON_PRINT_MARKER = "print(json.dumps"


def validate_json_print(script: str) -> None:
    """Check that a script ends by printing a JSON dump.

    Only the last non-blank line is inspected, and only for the marker
    substring, so a marker inside a comment or string literal also passes.

    Example:
        ```python
        validate_json_print("import json\\nprint(json.dumps({'a': 1}))\\n")
        ```
    """
    if not script.strip():
        raise InvalidScriptFormatError("empty script provided")
    last_line = ""
    for line in reversed(script.split("\n")):
        if line.strip():
            last_line = line.strip()
            break
    if JSON_PRINT_MARKER not in last_line:
        raise InvalidScriptFormatError(
            "script must end with print(json.dumps(...)) for structured output"
        )


def _parse_json(stdout: str) -> Any:
    """Parse stdout as one JSON document, falling back to its last line.

    Example:
        ```python
        value = _parse_json("loading...\\n{\\"a\\": 1}\\n")
        ```
    """
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        lines = [line for line in stdout.splitlines() if line.strip()]
        if len(lines) < 2:
            raise
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError:
            raise exc from None


def _is_type_target(into: object) -> bool:
    """Return whether `into` is a type or type expression pydantic can validate.

    Example:
        ```python
        _is_type_target(list[int])  # True
        ```
    """
    return isinstance(into, type) or typing.get_origin(into) is not None


def decode_output(stdout: str, into: type[T] | Callable[[Any], T] | None = None) -> T:
    """Decode script stdout as JSON and convert it to the requested type.

    `into` may be None (raw JSON value), any type or type expression
    pydantic can validate (dataclasses, models, `list[int]`, ...), or a
    plain callable taking the parsed value. Unknown object keys are ignored.

    Example:
        ```python
        data = decode_output('{"a": 1}', into=dict[str, int])
        ```
    """
    value = _parse_json(stdout)
    if into is None or into is Any or into is object:
        return cast(T, value)
    if _is_type_target(into):
        return cast(T, TypeAdapter(into).validate_python(value))
    return cast(Callable[[Any], T], into)(value)
