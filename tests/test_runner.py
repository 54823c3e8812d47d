from __future__ import annotations

import json
import os
import subprocess
import threading
from pathlib import Path

import pytest

from uv_runner import (
    EmptyScriptError,
    ExecutionCancelledError,
    ExecutionFailedError,
    Runner,
    RunnerConfig,
    ScriptNotFoundError,
    ScriptTimeoutError,
    ToolNotFoundError,
)


def test_missing_executable_raises_tool_not_found() -> None:
    with pytest.raises(ToolNotFoundError, match="not found in PATH"):
        Runner(executable="uv-runner-missing-tool-0123")


def test_default_executable_resolved_from_path(
    fake_uv: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PATH", str(Path(fake_uv).parent))
    runner = Runner()
    assert runner.executable == fake_uv
    assert runner.config == RunnerConfig()


def test_config_and_config_file_are_exclusive(fake_uv: str, tmp_path: Path) -> None:
    config_file = tmp_path / "runner.toml"
    config_file.write_text("[runner]\ntimeout_seconds = 5\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Provide either 'config' or 'config_file'"):
        Runner(RunnerConfig(), config_file=str(config_file), executable=fake_uv)

    runner = Runner(config_file=str(config_file), executable=fake_uv)
    assert runner.config.timeout_seconds == 5.0


def test_build_command_orders_flags(fake_uv: str) -> None:
    runner = Runner(
        RunnerConfig(python_version="3.12", dependencies=["d1", "d2"], extra_flags=["f1"]),
        executable=fake_uv,
    )

    cmd = runner.build_command("script.py", ["a", "b"])

    assert cmd == [
        fake_uv,
        "run",
        "--python",
        "3.12",
        "--with",
        "d1",
        "--with",
        "d2",
        "f1",
        "script.py",
        "a",
        "b",
    ]


def test_build_command_without_version_or_deps(fake_uv: str) -> None:
    runner = Runner(executable=fake_uv)
    assert runner.build_command("-") == [fake_uv, "run", "-"]


def test_call_args_replace_default_args(fake_uv: str) -> None:
    runner = Runner(RunnerConfig(script_args=["--default", "1"]), executable=fake_uv)

    assert runner.build_command("s.py")[-3:] == ["s.py", "--default", "1"]
    assert runner.build_command("s.py", ["--mine"])[-2:] == ["s.py", "--mine"]


def test_run_returns_stdout_verbatim(fake_uv: str, write_script) -> None:
    script = write_script("import sys\nsys.stdout.write('  hello\\r\\nworld  \\n\\n')\n")
    runner = Runner(executable=fake_uv)

    result = runner.run(script)

    assert result.stdout == "  hello\r\nworld  \n\n"
    assert result.stderr == ""
    assert result.exit_code == 0
    assert result.ok is True
    assert result.duration_seconds > 0
    assert result.user_time >= 0
    assert result.system_time >= 0
    assert result.command[-1] == str(script)


def test_run_passes_arguments_to_script(fake_uv: str, write_script) -> None:
    script = write_script("import sys\nprint(sys.argv[1:])\n")
    runner = Runner(RunnerConfig(script_args=["default"]), executable=fake_uv)

    assert runner.run(script).stdout == "['default']\n"
    assert runner.run(script, "x", "y").stdout == "['x', 'y']\n"


def test_run_sends_full_command_to_uv(fake_uv: str, write_script, argv_log: Path) -> None:
    script = write_script("print('ok')\n")
    runner = Runner(
        RunnerConfig(dependencies=["rich"], extra_flags=["--no-project"]),
        executable=fake_uv,
    )

    runner.run(script, "arg")

    assert json.loads(argv_log.read_text(encoding="utf-8")) == [
        "run",
        "--with",
        "rich",
        "--no-project",
        str(script),
        "arg",
    ]


def test_run_missing_script_does_not_spawn(fake_uv: str, tmp_path: Path, no_spawn: None) -> None:
    runner = Runner(executable=fake_uv)

    with pytest.raises(ScriptNotFoundError) as exc:
        runner.run(tmp_path / "missing.py")

    assert exc.value.result is None


def test_file_mode_has_no_stdin(fake_uv: str, write_script) -> None:
    script = write_script("import sys\nprint(repr(sys.stdin.read()))\n")
    runner = Runner(executable=fake_uv)

    assert runner.run(script).stdout == "''\n"


@pytest.mark.parametrize("script", ["", "   ", "\n\t\n"])
def test_run_string_rejects_blank_script(fake_uv: str, no_spawn: None, script: str) -> None:
    runner = Runner(executable=fake_uv)

    with pytest.raises(EmptyScriptError, match="empty script provided"):
        runner.run_string(script)


def test_run_string_feeds_script_on_stdin(fake_uv: str, argv_log: Path) -> None:
    runner = Runner(executable=fake_uv)

    result = runner.run_string("import sys\nprint(sys.argv[1:])\n", "a", "b")

    assert result.stdout == "['a', 'b']\n"
    assert json.loads(argv_log.read_text(encoding="utf-8")) == ["run", "-", "a", "b"]


def test_env_overrides_are_appended_to_inherited_env(
    fake_uv: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("UVR_INHERITED", "yes")
    runner = Runner(
        RunnerConfig(env=["UVR_VALUE=first", "UVR_VALUE=second", "UVR_EMPTY"]),
        executable=fake_uv,
    )

    result = runner.run_string(
        "import os\n"
        "print(os.environ['UVR_INHERITED'], os.environ['UVR_VALUE'], repr(os.environ['UVR_EMPTY']))\n"
    )

    assert result.stdout == "yes second ''\n"


def test_work_dir_sets_child_cwd(fake_uv: str, tmp_path: Path) -> None:
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    runner = Runner(RunnerConfig(work_dir=str(work_dir)), executable=fake_uv)

    result = runner.run_string("import os\nprint(os.getcwd())\n")

    assert os.path.realpath(result.stdout.strip()) == os.path.realpath(work_dir)


def test_nonzero_exit_without_stderr_reports_exit_code(fake_uv: str) -> None:
    runner = Runner(executable=fake_uv)

    with pytest.raises(ExecutionFailedError) as exc:
        runner.run_string("import sys\nprint('before')\nsys.exit(7)\n")

    assert str(exc.value) == "script execution failed with exit code 7"
    assert exc.value.exit_code == 7
    assert exc.value.result is not None
    assert exc.value.result.exit_code == 7
    assert exc.value.result.stdout == "before\n"


def test_nonzero_exit_with_stderr_uses_stderr_verbatim(fake_uv: str) -> None:
    runner = Runner(executable=fake_uv)

    with pytest.raises(ExecutionFailedError) as exc:
        runner.run_string("import sys\nsys.stderr.write('boom')\nsys.exit(7)\n")

    assert str(exc.value) == "boom"
    assert exc.value.exit_code == 7
    assert exc.value.result is not None
    assert exc.value.result.stderr == "boom"


def test_timeout_kills_script_and_keeps_partial_output(fake_uv: str) -> None:
    runner = Runner(RunnerConfig(timeout_seconds=1.5), executable=fake_uv)

    with pytest.raises(ScriptTimeoutError, match="timed out after 1.5s") as exc:
        runner.run_string("import time\nprint('partial', flush=True)\ntime.sleep(30)\n")

    result = exc.value.result
    assert result is not None
    assert result.timed_out is True
    assert result.ok is False
    assert result.stdout == "partial\n"
    assert result.duration_seconds < 20
    assert isinstance(exc.value.__cause__, subprocess.TimeoutExpired)


def test_timeout_without_process_groups_kills_the_child(
    fake_uv: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delattr(os, "killpg", raising=False)
    runner = Runner(RunnerConfig(timeout_seconds=1.5), executable=fake_uv)

    with pytest.raises(ScriptTimeoutError) as exc:
        runner.run_string("import time\nprint('partial', flush=True)\ntime.sleep(30)\n")

    result = exc.value.result
    assert result is not None
    assert result.stdout == "partial\n"
    assert result.duration_seconds < 20


def test_negative_timeout_is_accepted_and_expires_immediately(fake_uv: str) -> None:
    runner = Runner(RunnerConfig(timeout_seconds=-1), executable=fake_uv)

    with pytest.raises(ScriptTimeoutError) as exc:
        runner.run_string("print('never')\n")

    assert exc.value.result is not None


def test_cancel_event_stops_script(fake_uv: str) -> None:
    runner = Runner(RunnerConfig(timeout_seconds=30), executable=fake_uv)
    cancel = threading.Event()
    timer = threading.Timer(0.5, cancel.set)
    timer.start()
    try:
        with pytest.raises(ExecutionCancelledError) as exc:
            runner.run_string("import time\ntime.sleep(30)\n", cancel=cancel)
    finally:
        timer.cancel()

    assert exc.value.result is not None
    assert exc.value.result.timed_out is False
    assert exc.value.result.duration_seconds < 20


def test_unset_cancel_event_does_not_interfere(fake_uv: str) -> None:
    runner = Runner(executable=fake_uv)

    result = runner.run_string("import time\ntime.sleep(0.2)\nprint('done')\n", cancel=threading.Event())

    assert result.stdout == "done\n"


def test_bad_work_dir_reports_execution_failure(fake_uv: str, tmp_path: Path) -> None:
    runner = Runner(RunnerConfig(work_dir=str(tmp_path / "missing")), executable=fake_uv)

    with pytest.raises(ExecutionFailedError) as exc:
        runner.run_string("print(1)\n")

    assert exc.value.exit_code is None
    assert isinstance(exc.value.__cause__, OSError)


def test_runner_is_reusable(fake_uv: str) -> None:
    runner = Runner(executable=fake_uv)

    first = runner.run_string("print(1)\n")
    second = runner.run_string("print(2)\n")

    assert (first.stdout, second.stdout) == ("1\n", "2\n")
