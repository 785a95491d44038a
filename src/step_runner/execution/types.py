from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class ProcessRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = ProcessRequest(argv=["python3", "/tmp/wrapper.py"], cwd="/work", timeout_seconds=300)
        ```
    """

    argv: list[str]
    cwd: str | None = None
    timeout_seconds: int = 300
    max_output_bytes: int = 10 * 1024 * 1024
    env: dict[str, str] | None = None


@dataclass(slots=True)
class ProcessOutcome:
    """Normalized response returned by an execution engine.

    ``error`` is set for every failure that is not a plain non-zero exit:
    spawn failures, timeouts and output overflow.

    Example:
        ```python
        out = ProcessOutcome(stdout="done\\n", stderr="", returncode=0)
        ```
    """

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False
    output_exceeded: bool = False
    error: str | None = None
    argv: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True when the process ran to completion with exit code 0.

        Example:
            ```python
            if outcome.ok:
                print(outcome.stdout)
            ```
        """
        return (
            self.returncode == 0
            and not self.timed_out
            and not self.output_exceeded
            and self.error is None
        )
