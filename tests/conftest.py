from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

_FAKE_UV = """#!{python}
import json
import os
import sys

args = sys.argv[1:]
log = os.environ.get("FAKE_UV_ARGV_LOG")
if log:
    with open(log, "w", encoding="utf-8") as fh:
        json.dump(args, fh)
if not args or args[0] != "run":
    sys.stderr.write("fake uv: only 'run' is supported")
    sys.exit(2)
i = 1
while i < len(args) and args[i] in ("--python", "--with"):
    i += 2
while i < len(args) and args[i].startswith("--"):
    i += 1
os.execv(sys.executable, [sys.executable, args[i], *args[i + 1:]])
"""


@pytest.fixture
def fake_uv(tmp_path: Path) -> str:
    """Write an executable stand-in for `uv` that runs scripts with this interpreter."""
    path = tmp_path / "bin" / "uv"
    path.parent.mkdir()
    path.write_text(_FAKE_UV.format(python=sys.executable), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def argv_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log = tmp_path / "argv.json"
    monkeypatch.setenv("FAKE_UV_ARGV_LOG", str(log))
    return log


@pytest.fixture
def write_script(tmp_path: Path):
    def _write(body: str, name: str = "script.py") -> Path:
        path = tmp_path / name
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def no_spawn(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fail the test if anything tries to start a subprocess."""

    def _boom(*args, **kwargs):
        raise AssertionError(f"subprocess was started: {args!r}")

    monkeypatch.setattr("subprocess.Popen", _boom)

