from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

SCRIPT_SOURCES = ("local", "inline")
VENV_MODES = ("auto", "custom", "none")

# wire name -> attribute name
_STEP_KEYS = {
    "id": "id",
    "name": "name",
    "enabled": "enabled",
    "scriptSource": "script_source",
    "scriptPath": "script_path",
    "inlineScript": "inline_script",
    "useDataSourceVariable": "use_data_source_variable",
    "dataSourceVariable": "data_source_variable",
    "useOutputVariables": "use_output_variables",
    "outputVariables": "output_variables",
    "venvMode": "venv_mode",
    "venvPath": "venv_path",
    "params": "params",
}


def _pick(data: Mapping[str, Any], wire_key: str, default: Any = None) -> Any:
    """Read a value by its camelCase wire key, falling back to snake_case.

    Example:
        ```python
        mode = _pick({"venv_mode": "none"}, "venvMode", "auto")
        ```
    """
    if wire_key in data:
        return data[wire_key]
    attr = _STEP_KEYS.get(wire_key, wire_key)
    return data.get(attr, default)


def _optional_bool(value: Any, default: bool) -> bool:
    """Treat a missing flag as its default and anything else by truthiness.

    Example:
        ```python
        enabled = _optional_bool(None, True)
        ```
    """
    if value is None:
        return default
    return bool(value)


@dataclass(slots=True)
class Step:
    """One unit of scriptable pipeline work.

    Example:
        ```python
        step = Step(id="s1", name="clean", script_source="inline", inline_script="OUTPUT_PATH = '/tmp/o.csv'")
        ```
    """

    id: str
    name: str = ""
    enabled: bool = True
    script_source: str | None = None
    script_path: str | None = None
    inline_script: str | None = None
    use_data_source_variable: bool = True
    data_source_variable: str | None = None
    use_output_variables: bool = True
    output_variables: list[str] = field(default_factory=list)
    venv_mode: str = "auto"
    venv_path: str | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Step":
        """Build a step from its JSON form (camelCase or snake_case keys).

        Example:
            ```python
            step = Step.from_dict({"id": "s1", "scriptSource": "local", "scriptPath": "/work/prep.py"})
            ```
        """
        output_variables = _pick(data, "outputVariables") or []
        if isinstance(output_variables, str):
            output_variables = [output_variables]
        return cls(
            id=str(_pick(data, "id", "") or ""),
            name=str(_pick(data, "name", "") or ""),
            enabled=_optional_bool(_pick(data, "enabled"), True),
            script_source=_pick(data, "scriptSource"),
            script_path=_pick(data, "scriptPath"),
            inline_script=_pick(data, "inlineScript"),
            use_data_source_variable=_optional_bool(_pick(data, "useDataSourceVariable"), True),
            data_source_variable=_pick(data, "dataSourceVariable"),
            use_output_variables=_optional_bool(_pick(data, "useOutputVariables"), True),
            output_variables=[str(v) for v in output_variables],
            venv_mode=str(_pick(data, "venvMode", "auto") or "auto"),
            venv_path=_pick(data, "venvPath"),
            params=dict(_pick(data, "params", {}) or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase wire form of the step.

        Example:
            ```python
            payload = Step(id="s1").to_dict()
            ```
        """
        return {wire: getattr(self, attr) for wire, attr in _STEP_KEYS.items()}


@dataclass(slots=True)
class ExecutionRequest:
    """A step plus the upstream artifact location it should read.

    Example:
        ```python
        req = ExecutionRequest(step=Step(id="s1"), input_path="/data/in.csv")
        ```
    """

    step: Step | None
    input_path: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionRequest":
        """Build a request from ``{"step": {...}, "inputPath": "..."}``.

        Example:
            ```python
            req = ExecutionRequest.from_dict({"step": {"id": "s1"}, "inputPath": "/data/in.csv"})
            ```
        """
        raw_step = data.get("step")
        step = Step.from_dict(raw_step) if isinstance(raw_step, Mapping) else None
        input_path = data.get("inputPath", data.get("input_path"))
        return cls(step=step, input_path=str(input_path) if input_path else None)


@dataclass(frozen=True, slots=True)
class ResolvedInterpreter:
    """Interpreter chosen for one request.

    Example:
        ```python
        interp = ResolvedInterpreter(python_path="/work/.venv/bin/python3", venv_used=True, venv_path="/work/.venv")
        ```
    """

    python_path: str
    venv_used: bool = False
    venv_path: str | None = None


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of executing one step.

    ``output_path`` is the first resolved output (or the input path) and is kept
    for consumers that only understand a single output.

    Example:
        ```python
        result = ExecutionResult(success=True, output_paths=["/tmp/out.csv"], output_path="/tmp/out.csv")
        ```
    """

    success: bool
    output_paths: list[str] = field(default_factory=list)
    output_path: str | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    step_id: str = ""
    step_name: str = ""
    interpreter: ResolvedInterpreter | None = None
    exit_code: int | None = None
    timed_out: bool = False
    output_exceeded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase wire form of the result.

        Example:
            ```python
            payload = ExecutionResult(success=False, error="boom").to_dict()
            ```
        """
        payload: dict[str, Any] = {
            "success": self.success,
            "outputPaths": list(self.output_paths),
            "outputPath": self.output_path,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
            "stepId": self.step_id,
            "stepName": self.step_name,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "outputExceeded": self.output_exceeded,
        }
        if self.interpreter is not None:
            payload["pythonPath"] = self.interpreter.python_path
            payload["venvUsed"] = self.interpreter.venv_used
            payload["venvPath"] = self.interpreter.venv_path
        return payload


@dataclass(slots=True)
class VenvCheckResult:
    """Answer to "which virtual environment would this script use?".

    Example:
        ```python
        check = VenvCheckResult(success=True, detected=False, error="No virtual environment detected in script directory")
        ```
    """

    success: bool
    detected: bool
    venv_path: str | None = None
    python_path: str | None = None
    error: str | None = None


@dataclass(slots=True)
class HelperInvocationResult:
    """Outcome of running the dataset helper process.

    Example:
        ```python
        res = HelperInvocationResult(success=True, payload={"success": True, "datasetId": "abc"})
        ```
    """

    success: bool
    payload: dict[str, Any] | None = None
    error: str | None = None
    install_command: str | None = None
    stdout: str = ""
    stderr: str = ""
