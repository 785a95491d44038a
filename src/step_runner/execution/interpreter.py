from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence

from ..models import ResolvedInterpreter, Step, VenvCheckResult
from ..settings import RunnerSettings

logger = logging.getLogger(__name__)


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


def expand_home(path: str) -> str:
    """Expand a leading ``~`` to the user's home directory.

    Example:
        ```python
        expand_home("~/projects/.venv")  # -> "/home/me/projects/.venv"
        ```
    """
    if path.startswith("~"):
        return os.path.expanduser(path)
    return path


def venv_python_path(venv_path: str | Path, windows: bool | None = None) -> Path:
    """Return the interpreter binary inside a virtual environment.

    Example:
        ```python
        python = venv_python_path("/work/.venv")  # /work/.venv/bin/python3
        ```
    """
    root = Path(venv_path)
    if _is_windows(windows):
        return root / "Scripts" / "python.exe"
    python3 = root / "bin" / "python3"
    if python3.exists():
        return python3
    return root / "bin" / "python"


def is_valid_venv(venv_path: str | Path, windows: bool | None = None) -> bool:
    """Check that a directory looks like a usable Python virtual environment.

    The directory must exist, contain its interpreter binary, and hold either
    ``pyvenv.cfg`` or the platform's activation script.

    Example:
        ```python
        if is_valid_venv("/work/.venv"):
            ...
        ```
    """
    root = Path(expand_home(str(venv_path)))
    if not root.is_dir():
        return False
    if not venv_python_path(root, windows=windows).is_file():
        return False
    if (root / "pyvenv.cfg").is_file():
        return True
    if _is_windows(windows):
        activate = root / "Scripts" / "activate.bat"
    else:
        activate = root / "bin" / "activate"
    return activate.is_file()


def auto_detect_venv(
    script_path: str,
    venv_names: Sequence[str],
    windows: bool | None = None,
) -> Path | None:
    """Find the first valid virtual environment next to a script.

    Candidates are tried in ``venv_names`` order.

    Example:
        ```python
        venv = auto_detect_venv("/work/prep.py", [".venv", "venv", ".env", "env"])
        ```
    """
    script_dir = Path(expand_home(script_path)).parent
    for name in venv_names:
        candidate = script_dir / name
        if is_valid_venv(candidate, windows=windows):
            return candidate
    return None


def _from_venv(venv_path: str | Path, windows: bool | None) -> ResolvedInterpreter:
    """Build a resolved interpreter for a validated environment.

    Example:
        ```python
        interp = _from_venv("/work/.venv", None)
        ```
    """
    return ResolvedInterpreter(
        python_path=str(venv_python_path(venv_path, windows=windows)),
        venv_used=True,
        venv_path=str(venv_path),
    )


def resolve_interpreter(
    step: Step,
    settings: RunnerSettings | None = None,
    windows: bool | None = None,
) -> ResolvedInterpreter:
    """Pick the interpreter a step should run with.

    Never raises: invalid or missing environments fall back to the ambient
    interpreter. Nothing is cached because environments come and go between
    calls.

    Example:
        ```python
        interp = resolve_interpreter(Step(id="s1", venv_mode="custom", venv_path="~/envs/ml"))
        ```
    """
    cfg = settings or RunnerSettings()
    ambient = ResolvedInterpreter(python_path=cfg.ambient_interpreter)

    if step.venv_mode == "none":
        return ambient

    if step.venv_mode == "custom":
        if step.venv_path:
            expanded = expand_home(step.venv_path)
            if is_valid_venv(expanded, windows=windows):
                logger.debug("Step %s uses custom venv %s", step.id, expanded)
                return _from_venv(expanded, windows)
            logger.info(
                "Custom venv %s for step %s is not valid, using %s",
                step.venv_path,
                step.id,
                cfg.ambient_interpreter,
            )
        return ambient

    if step.script_path:
        detected = auto_detect_venv(step.script_path, cfg.venv_names, windows=windows)
        if detected is not None:
            logger.debug("Step %s auto-detected venv %s", step.id, detected)
            return _from_venv(detected, windows)

    if step.venv_path:
        expanded = expand_home(step.venv_path)
        if is_valid_venv(expanded, windows=windows):
            return _from_venv(expanded, windows)

    return ambient


def check_venv(
    script_path: str | None,
    custom_venv_path: str | None = None,
    settings: RunnerSettings | None = None,
    windows: bool | None = None,
) -> VenvCheckResult:
    """Report which virtual environment a script or custom path resolves to.

    Example:
        ```python
        check = check_venv("/work/prep.py")
        if check.detected:
            print(check.python_path)
        ```
    """
    cfg = settings or RunnerSettings()

    if custom_venv_path:
        expanded = expand_home(custom_venv_path)
        if not Path(expanded).exists():
            return VenvCheckResult(
                success=True,
                detected=False,
                error=f"Virtual environment path does not exist: {custom_venv_path}",
            )
        if not is_valid_venv(expanded, windows=windows):
            return VenvCheckResult(
                success=True,
                detected=False,
                error=f"Path is not a valid Python virtual environment: {custom_venv_path}",
            )
        return VenvCheckResult(
            success=True,
            detected=True,
            venv_path=expanded,
            python_path=str(venv_python_path(expanded, windows=windows)),
        )

    if not script_path:
        return VenvCheckResult(
            success=True,
            detected=False,
            error="No script path provided for auto-detection",
        )

    if not Path(expand_home(script_path)).exists():
        return VenvCheckResult(
            success=True,
            detected=False,
            error=f"Script path does not exist: {script_path}",
        )

    detected = auto_detect_venv(script_path, cfg.venv_names, windows=windows)
    if detected is None:
        return VenvCheckResult(
            success=True,
            detected=False,
            error="No virtual environment detected in script directory",
        )
    return VenvCheckResult(
        success=True,
        detected=True,
        venv_path=str(detected),
        python_path=str(venv_python_path(detected, windows=windows)),
    )
