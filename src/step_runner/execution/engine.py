from __future__ import annotations

from typing import Protocol

from .types import ProcessOutcome, ProcessRequest


class ExecutionEngine(Protocol):
    def execute(self, request: ProcessRequest) -> ProcessOutcome:
        """Run one process and return its normalized outcome.

        Example:
            ```python
            outcome = engine.execute(ProcessRequest(argv=["python3", "/tmp/wrapper.py"]))
            ```
        """
        ...
