from __future__ import annotations

import sys
from pathlib import Path

import pytest

from step_runner import ExecutionRequest, RunnerSettings, Step, check_venv, execute_step, resolve_interpreter
from step_runner.execution.interpreter import (
    auto_detect_venv,
    expand_home,
    is_valid_venv,
    venv_python_path,
)

SETTINGS = RunnerSettings(ambient_interpreter="python3")


def _make_venv(root: Path, marker: str = "pyvenv.cfg", python: str = "python3") -> Path:
    (root / "bin").mkdir(parents=True)
    if marker == "pyvenv.cfg":
        (root / "pyvenv.cfg").write_text("home = /usr/bin\n", encoding="utf-8")
    else:
        (root / "bin" / "activate").write_text("# activate\n", encoding="utf-8")
    (root / "bin" / python).write_text("", encoding="utf-8")
    return root


def _script(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    script = directory / "prep.py"
    script.write_text("OUTPUT_PATH = DATA_SOURCE\n", encoding="utf-8")
    return script


def test_none_mode_always_uses_ambient(tmp_path: Path) -> None:
    script = _script(tmp_path)
    _make_venv(tmp_path / ".venv")
    step = Step(id="s1", script_path=str(script), venv_mode="none")

    interp = resolve_interpreter(step, SETTINGS, windows=False)

    assert interp.python_path == "python3"
    assert interp.venv_used is False
    assert interp.venv_path is None


def test_auto_mode_picks_sibling_venv(tmp_path: Path) -> None:
    script = _script(tmp_path)
    venv = _make_venv(tmp_path / ".venv")

    interp = resolve_interpreter(Step(id="s1", script_path=str(script)), SETTINGS, windows=False)

    assert interp.venv_used is True
    assert interp.venv_path == str(venv)
    assert interp.python_path == str(venv / "bin" / "python3")


def test_auto_mode_respects_candidate_order(tmp_path: Path) -> None:
    script = _script(tmp_path)
    _make_venv(tmp_path / "env")
    preferred = _make_venv(tmp_path / "venv", marker="activate")

    detected = auto_detect_venv(str(script), SETTINGS.venv_names, windows=False)

    assert detected == preferred


def test_auto_mode_without_venv_falls_back(tmp_path: Path) -> None:
    script = _script(tmp_path)
    (tmp_path / ".venv").mkdir()  # no marker, not a venv

    interp = resolve_interpreter(Step(id="s1", script_path=str(script)), SETTINGS, windows=False)

    assert interp.python_path == "python3"
    assert interp.venv_used is False


def test_venv_without_interpreter_binary_is_skipped(tmp_path: Path) -> None:
    script = _script(tmp_path)
    broken = tmp_path / ".venv"
    broken.mkdir()
    (broken / "pyvenv.cfg").write_text("home = /usr/bin\n", encoding="utf-8")

    assert is_valid_venv(broken, windows=False) is False
    auto = resolve_interpreter(Step(id="s1", script_path=str(script)), SETTINGS, windows=False)
    custom = resolve_interpreter(
        Step(id="s1", venv_mode="custom", venv_path=str(broken)), SETTINGS, windows=False
    )
    assert auto.python_path == "python3"
    assert auto.venv_used is False
    assert custom.python_path == "python3"
    assert check_venv(str(script), windows=False).detected is False


def test_broken_sibling_venv_does_not_block_execution(tmp_path: Path) -> None:
    script = _script(tmp_path)
    (tmp_path / ".venv").mkdir()
    (tmp_path / ".venv" / "pyvenv.cfg").write_text("home = /usr/bin\n", encoding="utf-8")
    settings = RunnerSettings(ambient_interpreter=sys.executable, temp_dir=str(tmp_path))
    step = Step(id="s1", script_source="local", script_path=str(script))

    result = execute_step(ExecutionRequest(step=step, input_path="/tmp/in.csv"), settings=settings)

    assert result.success is True, result.error
    assert result.interpreter is not None
    assert result.interpreter.python_path == sys.executable
    assert result.output_paths == ["/tmp/in.csv"]


def test_auto_mode_uses_configured_path_when_nothing_detected(tmp_path: Path) -> None:
    script = _script(tmp_path / "scripts")
    venv = _make_venv(tmp_path / "shared")
    step = Step(id="s1", script_path=str(script), venv_path=str(venv))

    interp = resolve_interpreter(step, SETTINGS, windows=False)

    assert interp.venv_path == str(venv)


def test_custom_mode_valid_path(tmp_path: Path) -> None:
    venv = _make_venv(tmp_path / "ml", python="python")
    step = Step(id="s1", venv_mode="custom", venv_path=str(venv))

    interp = resolve_interpreter(step, SETTINGS, windows=False)

    assert interp.venv_used is True
    assert interp.python_path == str(venv / "bin" / "python")


def test_custom_mode_missing_path_degrades_to_ambient(tmp_path: Path) -> None:
    step = Step(id="s1", venv_mode="custom", venv_path=str(tmp_path / "missing"))

    interp = resolve_interpreter(step, SETTINGS, windows=False)

    assert interp.python_path == "python3"
    assert interp.venv_used is False


def test_custom_mode_ignores_sibling_venv(tmp_path: Path) -> None:
    script = _script(tmp_path)
    _make_venv(tmp_path / ".venv")
    step = Step(id="s1", script_path=str(script), venv_mode="custom")

    assert resolve_interpreter(step, SETTINGS, windows=False).venv_used is False


def test_home_directory_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    venv = _make_venv(tmp_path / "envs" / "ml")

    assert expand_home("~/envs/ml") == str(venv)
    assert expand_home("/abs/~path") == "/abs/~path"
    step = Step(id="s1", venv_mode="custom", venv_path="~/envs/ml")
    assert resolve_interpreter(step, SETTINGS, windows=False).venv_path == str(venv)


def test_windows_layout(tmp_path: Path) -> None:
    venv = tmp_path / "winenv"
    (venv / "Scripts").mkdir(parents=True)
    (venv / "Scripts" / "activate.bat").write_text("@echo off\n", encoding="utf-8")
    (venv / "Scripts" / "python.exe").write_text("", encoding="utf-8")

    assert is_valid_venv(venv, windows=True) is True
    assert is_valid_venv(venv, windows=False) is False
    assert venv_python_path(venv, windows=True) == venv / "Scripts" / "python.exe"


def test_check_venv_detects_sibling(tmp_path: Path) -> None:
    script = _script(tmp_path)
    venv = _make_venv(tmp_path / ".venv")

    check = check_venv(str(script), settings=SETTINGS, windows=False)

    assert check.success is True
    assert check.detected is True
    assert check.venv_path == str(venv)
    assert check.python_path == str(venv / "bin" / "python3")


def test_check_venv_reports_reasons(tmp_path: Path) -> None:
    script = _script(tmp_path)
    not_a_venv = tmp_path / "plain"
    not_a_venv.mkdir()

    assert check_venv(None).error == "No script path provided for auto-detection"
    assert check_venv(str(tmp_path / "x.py")).error == f"Script path does not exist: {tmp_path / 'x.py'}"
    assert check_venv(str(script), windows=False).error == "No virtual environment detected in script directory"
    assert (
        check_venv(str(script), str(tmp_path / "nope")).error
        == f"Virtual environment path does not exist: {tmp_path / 'nope'}"
    )
    assert (
        check_venv(str(script), str(not_a_venv), windows=False).error
        == f"Path is not a valid Python virtual environment: {not_a_venv}"
    )
    assert check_venv(None).detected is False
