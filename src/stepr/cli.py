from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import fields, is_dataclass
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from step_runner import (
    DatasetCredentials,
    DatasetRequest,
    ExecutionRequest,
    ExecutionResult,
    RunnerSettings,
    Step,
    check_venv,
    execute_step,
    run_dataset_action,
)
from step_runner.versioning import DATASET_ACTIONS

_CONSOLE = Console(no_color=False)


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
        parser = _RichArgumentParser(prog="python -m stepr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _to_jsonable(value: object) -> Any:
    """Convert CLI return values into printable payloads.

    Example:
        ```python
        payload = _to_jsonable(result)
        ```
    """
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if not isinstance(value, type) and is_dataclass(value):
        return {field.name: getattr(value, field.name) for field in fields(value)}
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for step execution and dataset operations.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m stepr",
        description=(
            "step-script-runner CLI\n"
            "Run pipeline step scripts in their virtual environment and\n"
            "drive the dataset versioning helper."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m stepr run step.json --input-path data/raw.csv\n"
            "  python -m stepr check-venv scripts/clean.py\n"
            "  python -m stepr check-venv scripts/clean.py --venv ~/envs/ml\n"
            "  python -m stepr dataset list --dataset-project demo\n"
            "  python -m stepr dataset create --dataset-name raw --input-path data/"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--settings",
        help=(
            "Path to a runner settings TOML file.\n"
            "Example: --settings runner.toml"
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log interpreter selection and process details.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute one step described by a JSON file.",
        description=(
            "Execute a step JSON file.\n"
            'The file holds either a step object or {"step": ..., "inputPath": ...}.'
        ),
        epilog=(
            "Examples:\n"
            "  python -m stepr run step.json --input-path data/raw.csv\n"
            "  python -m stepr run request.json --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("step_file")
    run_cmd.add_argument(
        "--input-path",
        help="Upstream artifact path bound to the step's input variable.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the raw result as JSON instead of panels.",
    )

    venv_cmd = sub.add_parser(
        "check-venv",
        help="Show which virtual environment a script would use.",
        description=(
            "Detect the virtual environment next to a script,\n"
            "or validate an explicit environment path."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    venv_cmd.add_argument("script_path")
    venv_cmd.add_argument("--venv", help="Explicit virtual environment path to validate.")

    dataset_cmd = sub.add_parser(
        "dataset",
        help="Run a dataset versioning action through the helper.",
        description=(
            "Run a dataset versioning action.\n"
            "Credentials are read from CLEARML_API_HOST, CLEARML_WEB_HOST,\n"
            "CLEARML_FILES_HOST, CLEARML_API_ACCESS_KEY and CLEARML_API_SECRET_KEY."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    dataset_cmd.add_argument("action", choices=DATASET_ACTIONS)
    dataset_cmd.add_argument("--dataset-id")
    dataset_cmd.add_argument("--dataset-name")
    dataset_cmd.add_argument("--dataset-project")
    dataset_cmd.add_argument(
        "--input-path",
        action="append",
        default=[],
        help="File or folder to add (repeatable).",
    )
    dataset_cmd.add_argument("--output-path", help="Download target folder.")
    dataset_cmd.add_argument("--tags", action="append", default=[], help="Tag (repeatable).")
    dataset_cmd.add_argument("--description")
    dataset_cmd.add_argument(
        "--project-root",
        help="Directory whose .venv/venv runs the helper (default: current directory).",
    )

    return parser


def _load_settings(path: str | None) -> RunnerSettings:
    """Load runner settings from a TOML file or use defaults.

    Example:
        ```python
        settings = _load_settings(None)
        ```
    """
    if path is None:
        return RunnerSettings()
    return RunnerSettings.from_file(path)


def _load_request(step_file: str, input_path: str | None) -> ExecutionRequest:
    """Read a step or request JSON file into an execution request.

    Example:
        ```python
        request = _load_request("step.json", "/data/raw.csv")
        ```
    """
    raw = json.loads(Path(step_file).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Step file must contain a JSON object")
    if "step" in raw:
        request = ExecutionRequest.from_dict(raw)
    else:
        request = ExecutionRequest(step=Step.from_dict(raw))
    if input_path:
        request.input_path = input_path
    return request


def _print_result(result: ExecutionResult) -> None:
    """Render an execution result as a table plus captured logs.

    Script output and errors are rendered as plain ``Text`` so brackets in
    them are never read as console markup.

    Example:
        ```python
        _print_result(ExecutionResult(success=True, output_paths=["/tmp/out.csv"]))
        ```
    """
    status = "[bold green]success[/bold green]" if result.success else "[bold red]failed[/bold red]"
    table = Table(title=Text(f"Step {result.step_name or result.step_id}"))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", status)
    if result.interpreter is not None:
        table.add_row("Python", Text(result.interpreter.python_path))
        table.add_row("Venv", Text(result.interpreter.venv_path or "none"))
    for index, path in enumerate(result.output_paths):
        table.add_row(f"Output {index + 1}", Text(path))
    if result.error:
        table.add_row("Error", Text(result.error, style="red"))
    _CONSOLE.print(table)
    if result.stdout:
        _CONSOLE.print(Panel(Text(result.stdout), title="stdout", border_style="cyan"))
    if result.stderr:
        _CONSOLE.print(Panel(Text(result.stderr), title="stderr", border_style="yellow"))


def _fail(message: str) -> int:
    """Print an error panel and return the failure exit code.

    Example:
        ```python
        return _fail("Could not read step file step.json: [Errno 2] No such file or directory")
        ```
    """
    _CONSOLE.print(Panel.fit(Text(message, style="red"), title="Error", border_style="red"))
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `stepr` CLI command handler.

    Example:
        ```python
        code = main(["check-venv", "scripts/clean.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=_CONSOLE, show_path=False)],
        )
    try:
        settings = _load_settings(args.settings)
    except (OSError, ValueError) as exc:
        return _fail(f"Could not load settings {args.settings}: {exc}")

    if args.command == "run":
        try:
            request = _load_request(args.step_file, args.input_path)
        except (OSError, ValueError) as exc:
            return _fail(f"Could not read step file {args.step_file}: {exc}")
        result = execute_step(request, settings=settings)
        if args.json:
            _CONSOLE.print_json(data=_to_jsonable(result))
        else:
            _print_result(result)
        return 0 if result.success else 1

    if args.command == "check-venv":
        check = check_venv(args.script_path, args.venv, settings=settings)
        style = "green" if check.detected else "yellow"
        _CONSOLE.print(Panel.fit(Pretty(_to_jsonable(check)), title="Virtual Environment", border_style=style))
        return 0 if check.success else 1

    if args.command == "dataset":
        dataset_request = DatasetRequest(
            action=args.action,
            dataset_id=args.dataset_id,
            dataset_name=args.dataset_name,
            dataset_project=args.dataset_project,
            input_paths=args.input_path,
            output_path=args.output_path,
            tags=args.tags,
            description=args.description,
        )
        outcome = run_dataset_action(
            dataset_request,
            DatasetCredentials.from_env(os.environ),
            settings=settings,
            project_root=args.project_root,
        )
        if outcome.success:
            _CONSOLE.print(Panel.fit(Text(outcome.message), title=f"dataset {args.action}", border_style="green"))
            return 0
        _CONSOLE.print(Panel.fit(Text(outcome.message, style="red"), title=f"dataset {args.action}", border_style="red"))
        return 1

    parser.error("Unhandled command")
