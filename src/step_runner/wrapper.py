from __future__ import annotations

import keyword

from .errors import StepConfigurationError
from .execution.interpreter import expand_home
from .models import Step
from .protocol import output_marker
from .settings import RunnerSettings

_FALLBACK_NAME = "__step_output_fallback__"
_SCRIPT_NAME = "__step_script__"


def _check_identifier(name: str, role: str) -> str:
    """Ensure ``name`` can be used as a Python variable in the wrapper.

    Example:
        ```python
        _check_identifier("OUTPUT_PATH", "output variable")
        ```
    """
    if not name.isidentifier() or keyword.iskeyword(name):
        raise StepConfigurationError(f"Invalid {role} name: {name!r}")
    return name


def input_variable(step: Step, settings: RunnerSettings | None = None) -> str:
    """Return the name the input path is bound to inside the user script.

    Example:
        ```python
        input_variable(Step(id="s1"))  # -> "DATA_SOURCE"
        ```
    """
    cfg = settings or RunnerSettings()
    name = (step.data_source_variable or "").strip() or cfg.default_input_variable
    return _check_identifier(name, "input variable")


def output_variables(step: Step, settings: RunnerSettings | None = None) -> list[str]:
    """Return the requested output variable names, in request order.

    Example:
        ```python
        output_variables(Step(id="s1", output_variables=["TRAIN", "TEST"]))  # -> ["TRAIN", "TEST"]
        ```
    """
    cfg = settings or RunnerSettings()
    names = [name.strip() for name in step.output_variables if name and name.strip()]
    if not names:
        names = [cfg.default_output_variable]
    return [_check_identifier(name, "output variable") for name in names]


def synthesize_wrapper(
    step: Step,
    script: str,
    input_path: str | None,
    settings: RunnerSettings | None = None,
) -> str:
    """Build the program that runs ``script`` between variable setup and output emission.

    The user script is embedded as a ``repr`` literal and executed with
    ``exec`` in the wrapper's own globals, so assignments to output variable
    names inside it are visible afterwards. Each output variable is then
    printed as a marker line; unassigned ones fall back to the input path, or
    to an empty value when input binding is disabled.

    Example:
        ```python
        source = synthesize_wrapper(step, "OUTPUT_PATH = '/tmp/out.csv'", "/tmp/in.csv")
        ```
    """
    cfg = settings or RunnerSettings()
    bind_input = step.use_data_source_variable and bool(input_path)
    input_name = input_variable(step, cfg) if bind_input else None
    outputs = output_variables(step, cfg) if step.use_output_variables else []
    fallback = input_path if (step.use_data_source_variable and input_path) else ""
    script_file: str | None = None
    if step.script_path and step.script_source != "inline":
        script_file = expand_home(step.script_path)
    filename = script_file or f"<step {step.id}>"

    lines = ["import sys", ""]

    if input_name is not None:
        lines.append(f"{input_name} = {input_path!r}")
    else:
        lines.append("# input variable binding disabled")
    lines.append("")

    for name in outputs:
        if name != input_name:
            lines.append(f"{name} = None")
    lines.append(f"{_FALLBACK_NAME} = {fallback!r}")
    if script_file:
        lines.append(f"__file__ = {script_file!r}")
    lines.append("")

    lines.append(f"{_SCRIPT_NAME} = {script!r}")
    lines.append(f"exec(compile({_SCRIPT_NAME}, {filename!r}, 'exec'), globals())")
    lines.append("")

    for name in outputs:
        marker = output_marker(name)
        lines.extend(
            [
                f"if {name} is not None:",
                f"    print({marker!r} + str({name}))",
                "else:",
                f"    print({marker!r} + {_FALLBACK_NAME})",
            ]
        )
    lines.append("sys.stdout.flush()")
    return "\n".join(lines) + "\n"
