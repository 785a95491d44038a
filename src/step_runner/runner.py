from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from pathlib import Path

from .errors import StepConfigurationError
from .execution.engine import ExecutionEngine
from .execution.interpreter import expand_home, resolve_interpreter
from .execution.local_engine import LocalEngine
from .execution.types import ProcessRequest
from .models import ExecutionRequest, ExecutionResult, Step
from .protocol import decode_outputs, strip_markers
from .settings import RunnerSettings, resolve_settings
from .wrapper import output_variables, synthesize_wrapper

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def _failure(step: Step, error: str, **fields: object) -> ExecutionResult:
    """Build a failed result correlated with ``step``.

    Example:
        ```python
        result = _failure(step, "No input path provided")
        ```
    """
    return ExecutionResult(
        success=False,
        error=error,
        step_id=step.id,
        step_name=step.name,
        **fields,  # type: ignore[arg-type]
    )


def _script_file(step: Step) -> str | None:
    """Return the on-disk script a step refers to, if it runs one.

    Example:
        ```python
        _script_file(Step(id="s1", script_path="/work/prep.py"))  # -> "/work/prep.py"
        ```
    """
    if step.script_source == "inline":
        return None
    return step.script_path or None


def _load_script(step: Step) -> str:
    """Return the user script text for a step.

    Example:
        ```python
        source = _load_script(Step(id="s1", script_source="inline", inline_script="print(1)"))
        ```
    """
    if step.script_source == "inline" and step.inline_script:
        return step.inline_script
    if step.script_source in (None, "", "local"):
        if not step.script_path:
            raise StepConfigurationError("No script path provided for local file source")
        path = Path(expand_home(step.script_path))
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            raise StepConfigurationError(f"Script file not found: {step.script_path}") from None
    raise StepConfigurationError("Invalid script source configuration")


def _write_wrapper(step: Step, source: str, settings: RunnerSettings) -> Path:
    """Write the wrapper program to a per-request temporary file.

    The name combines the step id and a millisecond timestamp; ``mkstemp``
    adds a random part so concurrent requests for one step never collide.

    Example:
        ```python
        path = _write_wrapper(step, "print('hi')\\n", RunnerSettings())
        ```
    """
    safe_id = _UNSAFE_FILENAME_CHARS.sub("_", step.id) or "step"
    prefix = f"wrapper_{safe_id}_{int(time.time() * 1000)}_"
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".py", dir=settings.temp_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(source)
    except BaseException:
        _remove_quietly(path)
        raise
    return path


def _remove_quietly(path: Path) -> None:
    """Delete a temporary file, ignoring any failure.

    Example:
        ```python
        _remove_quietly(Path("/tmp/wrapper_s1_1700000000000_x.py"))
        ```
    """
    try:
        path.unlink()
    except OSError as exc:
        logger.debug("Could not remove %s: %s", path, exc)


def _run(
    step: Step,
    input_path: str | None,
    engine: ExecutionEngine,
    settings: RunnerSettings,
) -> ExecutionResult:
    """Execute an enabled, validated step.

    Example:
        ```python
        result = _run(step, "/data/in.csv", LocalEngine(), RunnerSettings())
        ```
    """
    script = _load_script(step)
    names = output_variables(step, settings) if step.use_output_variables else []
    source = synthesize_wrapper(step, script, input_path, settings)

    wrapper_path = _write_wrapper(step, source, settings)
    try:
        interpreter = resolve_interpreter(step, settings)
        logger.info(
            "Step %s using Python %s (venv: %s)",
            step.id,
            interpreter.python_path,
            interpreter.venv_path if interpreter.venv_used else "none",
        )
        script_file = _script_file(step)
        if script_file:
            cwd = str(Path(expand_home(script_file)).parent)
        else:
            cwd = str(wrapper_path.parent)
        outcome = engine.execute(
            ProcessRequest(
                argv=[interpreter.python_path, str(wrapper_path)],
                cwd=cwd,
                timeout_seconds=settings.timeout_seconds,
                max_output_bytes=settings.max_output_bytes,
            )
        )
    finally:
        _remove_quietly(wrapper_path)

    clean_stdout = strip_markers(outcome.stdout, names).strip()
    if not outcome.ok:
        error = outcome.error or f"Script exited with code {outcome.returncode}"
        logger.warning("Step %s failed: %s", step.id, error)
        return _failure(
            step,
            error,
            stdout=clean_stdout,
            stderr=outcome.stderr.strip(),
            interpreter=interpreter,
            exit_code=outcome.returncode,
            timed_out=outcome.timed_out,
            output_exceeded=outcome.output_exceeded,
        )

    fallback = input_path if step.use_data_source_variable else None
    output_paths = decode_outputs(outcome.stdout, names, fallback)
    if not output_paths and input_path:
        output_paths = [input_path]
    return ExecutionResult(
        success=True,
        output_paths=output_paths,
        output_path=output_paths[0] if output_paths else input_path,
        stdout=clean_stdout,
        stderr=outcome.stderr.strip(),
        step_id=step.id,
        step_name=step.name,
        interpreter=interpreter,
        exit_code=outcome.returncode,
    )


def execute_step(
    request: ExecutionRequest,
    engine: ExecutionEngine | None = None,
    settings: RunnerSettings | None = None,
) -> ExecutionResult:
    """Run a pipeline step's script and recover its output paths.

    Never raises: configuration problems, process failures and unexpected
    errors all come back as ``success=False`` results with whatever output
    was captured.

    Example:
        ```python
        from step_runner import ExecutionRequest, Step, execute_step
        step = Step(id="s1", script_source="inline", inline_script="OUTPUT_PATH = '/tmp/out.csv'")
        result = execute_step(ExecutionRequest(step=step, input_path="/tmp/in.csv"))
        ```
    """
    step = request.step
    if step is None:
        return ExecutionResult(success=False, error="No step provided")

    input_path = request.input_path or None
    try:
        cfg = resolve_settings(settings)
        if not input_path and step.use_data_source_variable:
            raise StepConfigurationError("No input path provided")

        if not step.enabled:
            return ExecutionResult(
                success=True,
                output_paths=[input_path] if input_path else [],
                output_path=input_path,
                step_id=step.id,
                step_name=step.name,
            )

        return _run(step, input_path, engine or LocalEngine(), cfg)
    except StepConfigurationError as exc:
        return _failure(step, str(exc))
    except Exception as exc:
        logger.exception("Unexpected error while executing step %s", step.id)
        return _failure(step, str(exc) or type(exc).__name__)
