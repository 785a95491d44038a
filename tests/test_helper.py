from __future__ import annotations

import json
from pathlib import Path

import pytest

from step_runner import RunnerSettings, invoke_helper
from step_runner.execution.types import ProcessOutcome, ProcessRequest
from step_runner.helper import (
    HelperRunner,
    build_platform_argv,
    probe_helper_runtime,
    resolve_helper_runner,
)

START = "---CLEARML_JSON_START---"
END = "---CLEARML_JSON_END---"


def _marked(payload: dict) -> str:
    return f"ClearML Task: created\n{START}\n{json.dumps(payload)}\n{END}\n"


class _ScriptedEngine:
    """Answers the SDK probe and the helper run with canned outcomes."""

    def __init__(self, probe: ProcessOutcome, run: ProcessOutcome | None = None) -> None:
        self.probe = probe
        self.run = run
        self.requests: list[ProcessRequest] = []

    def execute(self, request: ProcessRequest) -> ProcessOutcome:
        self.requests.append(request)
        if "import clearml" in " ".join(request.argv):
            return self.probe
        assert self.run is not None, "helper should not have been started"
        return self.run


PROBE_OK = ProcessOutcome(stdout="ok\n", stderr="", returncode=0)


def _venv_python(root: Path, name: str) -> Path:
    python = root / name / "bin" / "python"
    python.parent.mkdir(parents=True)
    python.write_text("", encoding="utf-8")
    return python


def test_runner_prefers_managed_project_env(tmp_path: Path) -> None:
    _venv_python(tmp_path, ".venv")
    _venv_python(tmp_path, "venv")

    runner = resolve_helper_runner(tmp_path, windows=False)

    assert runner == HelperRunner(command=["uv", "run", "python"], managed=True)


def test_runner_uses_plain_venv_directly(tmp_path: Path) -> None:
    python = _venv_python(tmp_path, "venv")

    runner = resolve_helper_runner(tmp_path, windows=False)

    assert runner.command == [str(python)]
    assert runner.managed is False


def test_runner_defaults_to_managed_without_envs(tmp_path: Path) -> None:
    assert resolve_helper_runner(tmp_path, windows=False).managed is True


def test_windows_argv_goes_through_cmd() -> None:
    argv = build_platform_argv(["uv", "run", "python", r"C:\my scripts\helper.py", "list"], windows=True)

    assert argv == ["cmd.exe", "/c", 'uv run python "C:\\my scripts\\helper.py" list']


def test_posix_argv_is_unchanged() -> None:
    assert build_platform_argv(["uv", "run", "python", "a b"], windows=False) == ["uv", "run", "python", "a b"]


def test_probe_requires_sentinel() -> None:
    runner = HelperRunner(command=["python3"])
    engine = _ScriptedEngine(probe=ProcessOutcome(stdout="", stderr="", returncode=0))

    ok, reason = probe_helper_runtime(runner, engine=engine, windows=False)

    assert ok is False
    assert "clearml SDK check failed. Exit code: 0" in (reason or "")
    assert engine.requests[0].argv == ["python3", "-c", "import clearml; print('ok')"]


def test_missing_sdk_returns_install_hint(tmp_path: Path) -> None:
    probe = ProcessOutcome(stdout="", stderr="ModuleNotFoundError: No module named 'clearml'", returncode=1)
    engine = _ScriptedEngine(probe=probe)

    result = invoke_helper(["list"], engine=engine, project_root=tmp_path, windows=False)

    assert result.success is False
    assert result.install_command == "uv pip install clearml"
    assert "No module named 'clearml'" in (result.error or "")
    assert len(engine.requests) == 1


def test_missing_helper_script(tmp_path: Path) -> None:
    settings = RunnerSettings(helper_script=str(tmp_path / "gone.py"))
    engine = _ScriptedEngine(probe=PROBE_OK)

    result = invoke_helper(["list"], settings=settings, engine=engine, project_root=tmp_path, windows=False)

    assert result.success is False
    assert (result.error or "").startswith(f"Helper script not found at: {tmp_path / 'gone.py'}")


def test_successful_call_decodes_payload_and_passes_env(tmp_path: Path) -> None:
    payload = {"success": True, "count": 1, "datasets": [{"id": "abc", "name": "raw"}]}
    engine = _ScriptedEngine(probe=PROBE_OK, run=ProcessOutcome(stdout=_marked(payload), stderr="", returncode=0))

    result = invoke_helper(
        ["list", "--dataset-project", "demo"],
        env={"CLEARML_API_ACCESS_KEY": "AK"},
        engine=engine,
        project_root=tmp_path,
        windows=False,
    )

    assert result.success is True
    assert result.payload == payload
    run_request = engine.requests[-1]
    assert run_request.argv[:3] == ["uv", "run", "python"]
    assert run_request.argv[3].endswith("dataset_helper.py")
    assert run_request.argv[4:] == ["list", "--dataset-project", "demo"]
    assert run_request.env == {"CLEARML_API_ACCESS_KEY": "AK"}
    assert run_request.cwd == str(tmp_path)


def test_helper_reported_failure(tmp_path: Path) -> None:
    payload = {"success": False, "error": "Dataset not found", "installCommand": None}
    engine = _ScriptedEngine(probe=PROBE_OK, run=ProcessOutcome(stdout=_marked(payload), stderr="", returncode=0))

    result = invoke_helper(["info", "--dataset-id", "x"], engine=engine, project_root=tmp_path, windows=False)

    assert result.success is False
    assert result.error == "Dataset not found"


def test_non_zero_exit_prefers_structured_error(tmp_path: Path) -> None:
    payload = {"success": False, "error": "ValueError: --dataset-name is required"}
    run = ProcessOutcome(stdout=_marked(payload), stderr="Traceback ...", returncode=1)
    engine = _ScriptedEngine(probe=PROBE_OK, run=run)

    result = invoke_helper(["create"], engine=engine, project_root=tmp_path, windows=False)

    assert result.success is False
    assert result.error == "ValueError: --dataset-name is required"
    assert result.stderr == "Traceback ..."


def test_non_zero_exit_without_payload_uses_stderr(tmp_path: Path) -> None:
    run = ProcessOutcome(stdout="noise", stderr="Segmentation fault", returncode=139)
    engine = _ScriptedEngine(probe=PROBE_OK, run=run)

    result = invoke_helper(["list"], engine=engine, project_root=tmp_path, windows=False)

    assert result.error == "Segmentation fault"


def test_unparseable_output(tmp_path: Path) -> None:
    run = ProcessOutcome(stdout="just logs, no result", stderr="", returncode=0)
    engine = _ScriptedEngine(probe=PROBE_OK, run=run)

    result = invoke_helper(["list"], engine=engine, project_root=tmp_path, windows=False)

    assert result.success is False
    assert (result.error or "").startswith("Failed to parse helper output")
    assert "just logs, no result" in (result.error or "")


@pytest.mark.parametrize("windows", [True, False])
def test_helper_argv_shape_per_platform(tmp_path: Path, windows: bool) -> None:
    payload = {"success": True, "count": 0, "datasets": []}
    engine = _ScriptedEngine(probe=PROBE_OK, run=ProcessOutcome(stdout=_marked(payload), stderr="", returncode=0))

    invoke_helper(["list"], engine=engine, project_root=tmp_path, windows=windows)

    first = engine.requests[0].argv
    if windows:
        assert first[:2] == ["cmd.exe", "/c"]
        assert first[2].startswith("uv run python -c ")
    else:
        assert first[0] == "uv"
