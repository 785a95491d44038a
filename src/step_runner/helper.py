from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from .errors import ProtocolError
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.types import ProcessOutcome, ProcessRequest
from .models import HelperInvocationResult
from .protocol import decode_marked_json
from .settings import RunnerSettings, resolve_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HelperRunner:
    """Command prefix that starts a Python able to run the helper.

    Example:
        ```python
        runner = HelperRunner(command=["uv", "run", "python"], managed=True)
        ```
    """

    command: list[str] = field(default_factory=list)
    managed: bool = False


def _is_windows(windows: bool | None) -> bool:
    """Return the platform flag, defaulting to the running OS.

    Example:
        ```python
        on_windows = _is_windows(None)
        ```
    """
    if windows is None:
        return os.name == "nt"
    return windows


def _project_root(project_root: str | Path | None, settings: RunnerSettings) -> Path:
    """Return the directory whose environments the helper runs in.

    Example:
        ```python
        root = _project_root(None, RunnerSettings())
        ```
    """
    if project_root is not None:
        return Path(project_root)
    if settings.helper_project_root:
        return Path(settings.helper_project_root).expanduser()
    return Path.cwd()


def _env_python(venv: Path, windows: bool) -> Path:
    """Return the interpreter path inside a project environment.

    Example:
        ```python
        python = _env_python(Path("/srv/app/venv"), windows=False)
        ```
    """
    if windows:
        return venv / "Scripts" / "python.exe"
    return venv / "bin" / "python"


def resolve_helper_runner(
    project_root: str | Path | None = None,
    settings: RunnerSettings | None = None,
    windows: bool | None = None,
) -> HelperRunner:
    """Decide how to start the helper's Python.

    A managed ``.venv`` means the managed runner (``uv run python``), a plain
    ``venv`` is used directly, and with neither the managed runner is used
    anyway since it can provision an environment on demand.

    Example:
        ```python
        runner = resolve_helper_runner("/srv/app")
        ```
    """
    cfg = settings or RunnerSettings()
    root = _project_root(project_root, cfg)
    on_windows = _is_windows(windows)
    managed = HelperRunner(command=[cfg.helper_runner, "run", "python"], managed=True)

    if _env_python(root / ".venv", on_windows).exists():
        return managed
    plain = _env_python(root / "venv", on_windows)
    if plain.exists():
        return HelperRunner(command=[str(plain)], managed=False)
    return managed


def build_platform_argv(argv: Sequence[str], windows: bool | None = None) -> list[str]:
    """Build the argument vector to spawn ``argv`` on this OS.

    On Windows the command goes through ``cmd.exe /c`` as one quoted command
    line so shells cannot split arguments differently; elsewhere the vector
    is passed through unchanged, without a shell.

    Example:
        ```python
        build_platform_argv(["uv", "run", "python", "C:\\\\my scripts\\\\helper.py"], windows=True)
        ```
    """
    args = [str(part) for part in argv]
    if _is_windows(windows):
        return ["cmd.exe", "/c", subprocess.list2cmdline(args)]
    return args


def probe_helper_runtime(
    runner: HelperRunner,
    settings: RunnerSettings | None = None,
    engine: ExecutionEngine | None = None,
    cwd: str | None = None,
    windows: bool | None = None,
) -> tuple[bool, str | None]:
    """Check that the runner can import the helper's SDK dependency.

    Example:
        ```python
        ok, reason = probe_helper_runtime(resolve_helper_runner())
        ```
    """
    cfg = settings or RunnerSettings()
    runtime = engine or LocalEngine()
    code = f"import {cfg.helper_dependency}; print({cfg.probe_sentinel!r})"
    outcome = runtime.execute(
        ProcessRequest(
            argv=build_platform_argv([*runner.command, "-c", code], windows=windows),
            cwd=cwd,
            timeout_seconds=cfg.probe_timeout_seconds,
            max_output_bytes=cfg.max_output_bytes,
        )
    )
    combined = outcome.stdout + outcome.stderr
    logger.debug(
        "Helper runtime probe exited %s, stdout=%r", outcome.returncode, outcome.stdout.strip()
    )
    if outcome.returncode == 0 and cfg.probe_sentinel in combined:
        return True, None
    if outcome.error:
        return False, f"Helper runtime error: {outcome.error}"
    return False, (
        f"{cfg.helper_dependency} SDK check failed. Exit code: {outcome.returncode}, "
        f'stdout: "{outcome.stdout.strip()}", stderr: "{outcome.stderr.strip()[:100]}"'
    )


def _failed_process_error(
    outcome: ProcessOutcome,
    settings: RunnerSettings,
) -> tuple[str, dict[str, Any] | None]:
    """Pick the most useful error message for a helper that did not exit cleanly.

    Example:
        ```python
        message, payload = _failed_process_error(outcome, RunnerSettings())
        ```
    """
    try:
        payload = decode_marked_json(
            outcome.stdout, settings.helper_json_start, settings.helper_json_end
        )
    except ProtocolError:
        payload = None
    if payload is not None and payload.get("error"):
        return str(payload["error"]), payload
    if outcome.error:
        return outcome.error, payload
    return outcome.stderr.strip() or outcome.stdout.strip() or "Unknown error", payload


def invoke_helper(
    helper_args: Sequence[str],
    env: Mapping[str, str] | None = None,
    settings: RunnerSettings | None = None,
    engine: ExecutionEngine | None = None,
    project_root: str | Path | None = None,
    windows: bool | None = None,
) -> HelperInvocationResult:
    """Run the dataset helper and decode the JSON result it prints.

    Example:
        ```python
        res = invoke_helper(["list", "--dataset-project", "demo"], env={"CLEARML_API_HOST": "https://api.clear.ml"})
        if res.success:
            print(res.payload)
        ```
    """
    cfg = resolve_settings(settings)
    runtime = engine or LocalEngine()
    root = _project_root(project_root, cfg)
    cwd = str(root) if root.is_dir() else None
    runner = resolve_helper_runner(root, cfg, windows=windows)

    available, reason = probe_helper_runtime(runner, cfg, runtime, cwd=cwd, windows=windows)
    if not available:
        return HelperInvocationResult(
            success=False,
            error=reason,
            install_command=cfg.helper_install_hint,
        )

    script = Path(cfg.helper_script)
    if not script.is_file():
        return HelperInvocationResult(
            success=False,
            error=f"Helper script not found at: {script}. Current working directory: {Path.cwd()}",
        )

    outcome = runtime.execute(
        ProcessRequest(
            argv=build_platform_argv([*runner.command, str(script), *helper_args], windows=windows),
            cwd=cwd,
            timeout_seconds=cfg.timeout_seconds,
            max_output_bytes=cfg.max_output_bytes,
            env=dict(env) if env else None,
        )
    )
    logger.debug("Helper produced %d characters of stdout", len(outcome.stdout))

    if not outcome.ok:
        message, payload = _failed_process_error(outcome, cfg)
        logger.warning("Helper %s failed: %s", helper_args[0] if helper_args else "", message)
        return HelperInvocationResult(
            success=False,
            payload=payload,
            error=message,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )

    try:
        payload = decode_marked_json(outcome.stdout, cfg.helper_json_start, cfg.helper_json_end)
    except ProtocolError as exc:
        return HelperInvocationResult(
            success=False,
            error=f"Failed to parse helper output ({exc}): {outcome.stdout[:500]}",
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )

    if not payload.get("success"):
        return HelperInvocationResult(
            success=False,
            payload=payload,
            error=str(payload.get("error") or "Helper reported failure"),
            install_command=payload.get("installCommand"),
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )
    return HelperInvocationResult(
        success=True,
        payload=payload,
        stdout=outcome.stdout,
        stderr=outcome.stderr,
    )
