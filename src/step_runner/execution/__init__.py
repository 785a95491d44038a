from .engine import ExecutionEngine
from .types import ProcessOutcome, ProcessRequest

__all__ = [
    "ExecutionEngine",
    "ProcessOutcome",
    "ProcessRequest",
]
