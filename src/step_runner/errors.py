from __future__ import annotations


class StepRunnerError(Exception):
    """Base class for errors raised inside step_runner.

    Example:
        ```python
        raise StepRunnerError("something went wrong")
        ```
    """


class StepConfigurationError(StepRunnerError):
    """A step is configured in a way that cannot be executed.

    Detected before any process is spawned. The engine turns it into a failed
    ``ExecutionResult`` carrying the step id and name.

    Example:
        ```python
        raise StepConfigurationError("No input path provided")
        ```
    """


class ProtocolError(StepRunnerError):
    """A helper process did not emit a readable JSON payload.

    Example:
        ```python
        raise ProtocolError("No JSON payload found in helper output")
        ```
    """
