from __future__ import annotations

import argparse
import shlex
import sys
from functools import partial
from dataclasses import fields, is_dataclass
from typing import Any, Never, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich_argparse import RawTextRichHelpFormatter
from uv_runner import (
    ExecutionCancelledError,
    ExecutionFailedError,
    ExecutionResult,
    Runner,
    RunnerConfig,
    RunnerError,
    ScriptTimeoutError,
)

_CONSOLE = Console(no_color=False)

EXIT_USAGE = 2
EXIT_TIMEOUT = 124
EXIT_CANCELLED = 130


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m uvr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_help()
        raise SystemExit(EXIT_USAGE)


def _to_jsonable(value: object) -> Any:
    """Convert decoded script data into a printable payload.

    Example:
        ```python
        payload = _to_jsonable(structured.data)
        ```
    """
    if not isinstance(value, type) and is_dataclass(value):
        return {field.name: getattr(value, field.name) for field in fields(value)}
    return value


def _add_script_arguments(cmd: argparse.ArgumentParser, source_help: str) -> None:
    """Attach the shared SOURCE / ARGS positionals to a subcommand.

    Example:
        ```python
        _add_script_arguments(run_cmd, "Path to the script file.")
        ```
    """
    cmd.add_argument("source", help=source_help)
    cmd.add_argument(
        "script_args",
        nargs=argparse.REMAINDER,
        help="Arguments passed through to the script (replace configured script_args).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running scripts through uv.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m uvr",
        description=(
            "uv-runner CLI\n"
            "Run Python scripts with `uv run`, capture their output and enforce a timeout.\n"
            "Command-line options override values loaded from --config."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m uvr run script.py arg1 arg2\n"
            "  python -m uvr --with requests run fetch.py https://example.com\n"
            "  python -m uvr --python 3.12 --timeout 10 eval \"print('hi')\"\n"
            "  python -m uvr run --json stats.py\n"
            "  python -m uvr show-command script.py\n\n"
            "Config Examples:\n"
            "  python -m uvr --config uv_runner.toml run script.py\n"
            "  python -m uvr --env DEBUG=1 --work-dir /tmp run script.py"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--uv",
        default="uv",
        help="uv executable name or path (default: uv).",
    )
    parser.add_argument(
        "--config",
        help=(
            "TOML file with runner settings.\n"
            "Keys may live at top level or under a `runner` table."
        ),
    )
    parser.add_argument("--python", dest="python_version", help="Python version passed to `uv run --python`.")
    parser.add_argument(
        "--with",
        dest="dependencies",
        action="append",
        metavar="DEP",
        help="Extra dependency for the run (repeatable).\nExample: --with requests --with rich",
    )
    parser.add_argument(
        "--flag",
        dest="extra_flags",
        action="append",
        metavar="FLAG",
        help="Extra raw flag appended to `uv run` (repeatable).\nExample: --flag=--no-project",
    )
    parser.add_argument(
        "--timeout",
        dest="timeout_seconds",
        type=float,
        help="Execution timeout in seconds (default: 30).",
    )
    parser.add_argument(
        "--env",
        action="append",
        metavar="KEY=VALUE",
        help="Environment override for the script (repeatable).",
    )
    parser.add_argument("--work-dir", dest="work_dir", help="Working directory for the script.")

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run a script file.",
        description=(
            "Run a script file with `uv run`.\n"
            "Captured stdout and stderr are echoed unchanged."
        ),
        epilog=(
            "Examples:\n"
            "  python -m uvr run script.py\n"
            "  python -m uvr run --json stats.py --month 2024-05"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Require print(json.dumps(...)) as the last line and pretty-print the decoded output.",
    )
    _add_script_arguments(run_cmd, "Path to the script file.")

    eval_cmd = sub.add_parser(
        "eval",
        help="Run inline script text.",
        description=(
            "Run inline Python code via `uv run -`.\n"
            "Pass `-` as CODE to read the code from stdin."
        ),
        epilog=(
            "Examples:\n"
            "  python -m uvr eval \"print('hi')\"\n"
            "  cat script.py | python -m uvr eval -"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    eval_cmd.add_argument(
        "--json",
        action="store_true",
        help="Require print(json.dumps(...)) as the last line and pretty-print the decoded output.",
    )
    _add_script_arguments(eval_cmd, "Python code, or `-` to read it from stdin.")

    show_cmd = sub.add_parser(
        "show-command",
        help="Print the uv command line that would be executed.",
        description="Print the fully assembled `uv run` command without running it.",
        formatter_class=_HELP_FORMATTER,
    )
    _add_script_arguments(show_cmd, "Script path (or `-` for stdin).")

    return parser


def build_config(args: argparse.Namespace) -> RunnerConfig:
    """Create a RunnerConfig from --config plus explicit CLI overrides.

    Example:
        ```python
        config = build_config(args)
        ```
    """
    config = RunnerConfig.from_file(args.config) if args.config else RunnerConfig()
    overrides: dict[str, Any] = {}
    for name in ("python_version", "timeout_seconds", "work_dir", "dependencies", "extra_flags", "env"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    return config.with_options(**overrides)


def build_runner(args: argparse.Namespace) -> Runner:
    """Create a Runner from global CLI flags.

    Example:
        ```python
        runner = build_runner(args)
        ```
    """
    return Runner(build_config(args), executable=args.uv)


def _echo_output(result: ExecutionResult | None) -> None:
    """Write captured script output to the matching standard streams.

    Example:
        ```python
        _echo_output(result)
        ```
    """
    if result is None:
        return
    sys.stdout.write(result.stdout)
    sys.stdout.flush()
    sys.stderr.write(result.stderr)
    sys.stderr.flush()


def _report_error(exc: RunnerError) -> int:
    """Render a runner error and map it to a process exit code.

    Example:
        ```python
        code = _report_error(exc)
        ```
    """
    if isinstance(exc, ScriptTimeoutError):
        _echo_output(exc.result)
        _CONSOLE.print(Panel.fit(escape(str(exc)), title="Timeout", style="bold yellow"))
        return EXIT_TIMEOUT
    if isinstance(exc, ExecutionCancelledError):
        _echo_output(exc.result)
        _CONSOLE.print(Panel.fit(escape(str(exc)), title="Cancelled", style="bold yellow"))
        return EXIT_CANCELLED
    if isinstance(exc, ExecutionFailedError):
        if exc.result is not None:
            sys.stdout.write(exc.result.stdout)
        _CONSOLE.print(Panel.fit(escape(str(exc)), title="Execution Failed", border_style="red"))
        return exc.exit_code if exc.exit_code and exc.exit_code > 0 else 1
    if exc.result is not None:
        _echo_output(exc.result)
    _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
    return 1 if exc.result is not None else EXIT_USAGE


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `uvr` CLI command handler.

    Example:
        ```python
        code = main(["run", "script.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    source = args.source
    script_args = list(args.script_args)

    try:
        runner = build_runner(args)
    except (RunnerError, ValueError, OSError) as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
        return EXIT_USAGE

    if args.command == "show-command":
        _CONSOLE.print(
            shlex.join(runner.build_command(source, script_args)),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return 0

    if args.command == "eval" and source == "-":
        source = sys.stdin.read()

    try:
        if args.json:
            if args.command == "run":
                structured = runner.run_structured(source, *script_args)
            else:
                structured = runner.run_structured_string(source, *script_args)
            sys.stderr.write(structured.result.stderr)
            _CONSOLE.print(
                Panel.fit(Pretty(_to_jsonable(structured.data)), title="Result", border_style="green")
            )
            return 0
        if args.command == "run":
            result = runner.run(source, *script_args)
        else:
            result = runner.run_string(source, *script_args)
    except RunnerError as exc:
        return _report_error(exc)

    _echo_output(result)
    return 0
