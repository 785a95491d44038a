from .errors import ProtocolError, StepConfigurationError, StepRunnerError
from .execution.interpreter import check_venv, resolve_interpreter
from .execution.local_engine import LocalEngine
from .helper import invoke_helper
from .models import (
    ExecutionRequest,
    ExecutionResult,
    HelperInvocationResult,
    ResolvedInterpreter,
    Step,
    VenvCheckResult,
)
from .runner import execute_step
from .settings import RunnerSettings
from .versioning import DatasetCredentials, DatasetRequest, run_dataset_action

__all__ = [
    "DatasetCredentials",
    "DatasetRequest",
    "ExecutionRequest",
    "ExecutionResult",
    "HelperInvocationResult",
    "LocalEngine",
    "ProtocolError",
    "ResolvedInterpreter",
    "RunnerSettings",
    "Step",
    "StepConfigurationError",
    "StepRunnerError",
    "VenvCheckResult",
    "check_venv",
    "execute_step",
    "invoke_helper",
    "resolve_interpreter",
    "run_dataset_action",
]
