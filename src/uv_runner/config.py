from __future__ import annotations

import dataclasses
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

DEFAULT_EXECUTABLE = "uv"
DEFAULT_TIMEOUT_SECONDS = 30.0

_SEQUENCE_FIELDS = ("extra_flags", "env", "dependencies", "script_args")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a runner TOML file and return its runner table.

    Example:
        ```python
        raw = _read_config_toml(Path("/tmp/uv_runner.toml"))
        ```
    """
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runner_obj = raw.get("runner", raw)
    if not isinstance(runner_obj, dict):
        raise ValueError("Runner config must be a TOML table")
    return runner_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        deps = _list_of_str(["requests", "rich"], "dependencies")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _env_entries(value: Any) -> list[str]:
    """Normalize an `env` config value into KEY=VALUE strings.

    A TOML table is flattened in table order; a list must already hold
    KEY=VALUE strings.

    Example:
        ```python
        env = _env_entries({"DEBUG": "1"})  # ["DEBUG=1"]
        ```
    """
    if isinstance(value, dict):
        return [f"{key}={item}" for key, item in value.items()]
    return _list_of_str(value, "env")


def _optional_str(value: Any, field_name: str) -> str | None:
    """Validate an optional string config field.

    Example:
        ```python
        version = _optional_str("3.12", "python_version")
        ```
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{field_name}' must be a string")
    return value


def _as_tuple(value: Iterable[str] | None) -> tuple[str, ...]:
    """Freeze a sequence option into a tuple.

    Example:
        ```python
        flags = _as_tuple(["--quiet"])
        ```
    """
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """Immutable configuration for a `Runner`.

    Every option is independent and defaults to "not set". Values are taken
    as given; nothing is validated here.

    Example:
        ```python
        config = RunnerConfig(python_version="3.12", dependencies=["requests"], timeout_seconds=10)
        ```
    """

    python_version: str | None = None
    extra_flags: tuple[str, ...] = ()
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    env: tuple[str, ...] = ()
    work_dir: str | None = None
    dependencies: tuple[str, ...] = ()
    script_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Normalize list inputs into tuples so the config stays immutable.

        Example:
            ```python
            RunnerConfig(dependencies=["rich"]).dependencies  # ("rich",)
            ```
        """
        for name in _SEQUENCE_FIELDS:
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))

    def with_options(self, **changes: Any) -> RunnerConfig:
        """Return a copy with the named options replaced, applied in order.

        Example:
            ```python
            slower = config.with_options(timeout_seconds=120, work_dir="/tmp")
            ```
        """
        config = self
        for name, value in changes.items():
            config = dataclasses.replace(config, **{name: value})
        return config

    @classmethod
    def from_file(cls, config_path: str) -> RunnerConfig:
        """Create a config from a TOML file (top level or a `[runner]` table).

        Example:
            ```python
            config = RunnerConfig.from_file("/tmp/uv_runner.toml")
            ```
        """
        raw = _read_config_toml(Path(config_path))
        timeout_raw = raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, (int, float)):
            raise ValueError("'timeout_seconds' must be a number")
        return cls(
            python_version=_optional_str(raw.get("python_version"), "python_version"),
            extra_flags=tuple(_list_of_str(raw.get("extra_flags", []), "extra_flags")),
            timeout_seconds=float(timeout_raw),
            env=tuple(_env_entries(raw.get("env", []))),
            work_dir=_optional_str(raw.get("work_dir"), "work_dir"),
            dependencies=tuple(_list_of_str(raw.get("dependencies", []), "dependencies")),
            script_args=tuple(_list_of_str(raw.get("script_args", []), "script_args")),
        )
