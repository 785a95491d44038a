from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _default_helper_script() -> str:
    """Return the path of the bundled dataset helper program.

    Example:
        ```python
        script = _default_helper_script()
        ```
    """
    return str(Path(__file__).with_name("dataset_helper.py"))


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the runner table.

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/runner.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_seconds": 300,
            "max_output_bytes": 10 * 1024 * 1024,
            "ambient_interpreter": "python3",
            "venv_names": [".venv", "venv", ".env", "env"],
            "default_input_variable": "DATA_SOURCE",
            "default_output_variable": "OUTPUT_PATH",
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runner_obj = raw.get("runner", raw)
    if not isinstance(runner_obj, dict):
        raise ValueError("Runner settings must be a TOML table")
    return runner_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings settings field.

    Example:
        ```python
        names = _list_of_str([".venv", "venv"], "venv_names")
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


def _optional_str(value: Any) -> str | None:
    """Normalize an optional string settings field.

    Example:
        ```python
        temp_dir = _optional_str("")  # -> None
        ```
    """
    if value is None:
        return None
    text = str(value).strip()
    return text or None


_DEFAULT_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_TIMEOUT_SECONDS = int(_DEFAULT_RAW.get("timeout_seconds", 300))
DEFAULT_MAX_OUTPUT_BYTES = int(_DEFAULT_RAW.get("max_output_bytes", 10 * 1024 * 1024))
DEFAULT_AMBIENT_INTERPRETER = str(_DEFAULT_RAW.get("ambient_interpreter", "python3"))
DEFAULT_VENV_NAMES = _list_of_str(
    _DEFAULT_RAW.get("venv_names", [".venv", "venv", ".env", "env"]), "venv_names"
)
DEFAULT_INPUT_VARIABLE = str(_DEFAULT_RAW.get("default_input_variable", "DATA_SOURCE"))
DEFAULT_OUTPUT_VARIABLE = str(_DEFAULT_RAW.get("default_output_variable", "OUTPUT_PATH"))
DEFAULT_HELPER_RUNNER = str(_DEFAULT_RAW.get("helper_runner", "uv"))
DEFAULT_HELPER_DEPENDENCY = str(_DEFAULT_RAW.get("helper_dependency", "clearml"))
DEFAULT_HELPER_INSTALL_HINT = str(
    _DEFAULT_RAW.get("helper_install_hint", "uv pip install clearml")
)
DEFAULT_HELPER_JSON_START = str(
    _DEFAULT_RAW.get("helper_json_start", "---CLEARML_JSON_START---")
)
DEFAULT_HELPER_JSON_END = str(_DEFAULT_RAW.get("helper_json_end", "---CLEARML_JSON_END---"))
DEFAULT_PROBE_TIMEOUT_SECONDS = int(_DEFAULT_RAW.get("probe_timeout_seconds", 60))
DEFAULT_PROBE_SENTINEL = str(_DEFAULT_RAW.get("probe_sentinel", "ok"))


@dataclass(slots=True)
class RunnerSettings:
    """Limits and conventions used when executing step scripts and helpers.

    Example:
        ```python
        settings = RunnerSettings(timeout_seconds=30, ambient_interpreter="python")
        ```
    """

    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    ambient_interpreter: str = DEFAULT_AMBIENT_INTERPRETER
    venv_names: list[str] = field(default_factory=lambda: DEFAULT_VENV_NAMES.copy())
    default_input_variable: str = DEFAULT_INPUT_VARIABLE
    default_output_variable: str = DEFAULT_OUTPUT_VARIABLE
    temp_dir: str | None = None
    helper_script: str = field(default_factory=_default_helper_script)
    helper_project_root: str | None = None
    helper_runner: str = DEFAULT_HELPER_RUNNER
    helper_dependency: str = DEFAULT_HELPER_DEPENDENCY
    helper_install_hint: str = DEFAULT_HELPER_INSTALL_HINT
    helper_json_start: str = DEFAULT_HELPER_JSON_START
    helper_json_end: str = DEFAULT_HELPER_JSON_END
    probe_timeout_seconds: int = DEFAULT_PROBE_TIMEOUT_SECONDS
    probe_sentinel: str = DEFAULT_PROBE_SENTINEL
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            RunnerSettings(timeout_seconds=10)
            ```
        """
        if int(self.timeout_seconds) < 1:
            raise ValueError("timeout_seconds must be at least 1")
        if int(self.max_output_bytes) < 1:
            raise ValueError("max_output_bytes must be at least 1")
        if int(self.probe_timeout_seconds) < 1:
            raise ValueError("probe_timeout_seconds must be at least 1")
        if not self.ambient_interpreter.strip():
            raise ValueError("ambient_interpreter must not be empty")
        if not self.helper_json_start or not self.helper_json_end:
            raise ValueError("helper JSON markers must not be empty")

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerSettings":
        """Create a settings instance from a TOML file.

        Example:
            ```python
            settings = RunnerSettings.from_file("/etc/step-runner/runner.toml")
            ```
        """
        raw = _read_settings_toml(Path(config_path))
        return cls(
            timeout_seconds=int(raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            max_output_bytes=int(raw.get("max_output_bytes", DEFAULT_MAX_OUTPUT_BYTES)),
            ambient_interpreter=str(raw.get("ambient_interpreter", DEFAULT_AMBIENT_INTERPRETER)),
            venv_names=_list_of_str(raw.get("venv_names", DEFAULT_VENV_NAMES), "venv_names"),
            default_input_variable=str(
                raw.get("default_input_variable", DEFAULT_INPUT_VARIABLE)
            ),
            default_output_variable=str(
                raw.get("default_output_variable", DEFAULT_OUTPUT_VARIABLE)
            ),
            temp_dir=_optional_str(raw.get("temp_dir")),
            helper_script=_optional_str(raw.get("helper_script")) or _default_helper_script(),
            helper_project_root=_optional_str(raw.get("helper_project_root")),
            helper_runner=str(raw.get("helper_runner", DEFAULT_HELPER_RUNNER)),
            helper_dependency=str(raw.get("helper_dependency", DEFAULT_HELPER_DEPENDENCY)),
            helper_install_hint=str(
                raw.get("helper_install_hint", DEFAULT_HELPER_INSTALL_HINT)
            ),
            helper_json_start=str(raw.get("helper_json_start", DEFAULT_HELPER_JSON_START)),
            helper_json_end=str(raw.get("helper_json_end", DEFAULT_HELPER_JSON_END)),
            probe_timeout_seconds=int(
                raw.get("probe_timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS)
            ),
            probe_sentinel=str(raw.get("probe_sentinel", DEFAULT_PROBE_SENTINEL)),
            config_path=config_path,
        )


def resolve_settings(settings: RunnerSettings | None) -> RunnerSettings:
    """Return the settings for one call, re-reading the file they came from.

    Settings built with ``from_file`` keep their ``config_path``; reloading it
    on each call lets edits to the TOML take effect without a restart.

    Example:
        ```python
        cfg = resolve_settings(RunnerSettings.from_file("/etc/step-runner/runner.toml"))
        ```
    """
    if settings is None:
        return RunnerSettings()
    if settings.config_path is not None:
        return RunnerSettings.from_file(settings.config_path)
    return settings
