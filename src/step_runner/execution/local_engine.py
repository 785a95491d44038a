from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import IO

from .types import ProcessOutcome, ProcessRequest

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
OUTPUT_EXCEEDED_EXIT_CODE = 125
SPAWN_FAILURE_EXIT_CODE = 127

_CHUNK_SIZE = 64 * 1024
_READER_JOIN_SECONDS = 5.0


class _OutputBudget:
    """Byte budget shared by the stdout and stderr readers of one process.

    Example:
        ```python
        budget = _OutputBudget(limit=1024)
        ```
    """

    def __init__(self, limit: int) -> None:
        """Start with ``limit`` bytes available.

        Example:
            ```python
            budget = _OutputBudget(limit=10 * 1024 * 1024)
            ```
        """
        self._lock = threading.Lock()
        self._remaining = limit
        self.exceeded = False

    def take(self, size: int) -> int:
        """Reserve up to ``size`` bytes and return how many were granted.

        Example:
            ```python
            granted = budget.take(len(chunk))
            ```
        """
        with self._lock:
            granted = min(size, self._remaining)
            self._remaining -= granted
            if granted < size:
                self.exceeded = True
            return granted


def _drain(
    stream: IO[bytes],
    sink: list[bytes],
    budget: _OutputBudget,
    on_exceeded: threading.Event,
) -> None:
    """Copy a pipe into ``sink`` until EOF, keeping only what fits the budget.

    Example:
        ```python
        _drain(proc.stdout, chunks, budget, exceeded_event)
        ```
    """
    read = getattr(stream, "read1", stream.read)
    try:
        while True:
            chunk = read(_CHUNK_SIZE)
            if not chunk:
                break
            granted = budget.take(len(chunk))
            if granted:
                sink.append(chunk[:granted])
            if granted < len(chunk):
                on_exceeded.set()
    except (OSError, ValueError):
        # Pipe closed underneath us after the process was killed.
        pass
    finally:
        stream.close()


def _kill(proc: subprocess.Popen[bytes]) -> None:
    """Kill a child process together with its process group where supported.

    Example:
        ```python
        _kill(proc)
        ```
    """
    if os.name != "nt":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except OSError:
        pass


class LocalEngine:
    """Run processes on this machine with a wall-clock timeout and an output cap.

    Example:
        ```python
        engine = LocalEngine()
        outcome = engine.execute(ProcessRequest(argv=["python3", "/tmp/wrapper.py"], cwd="/work"))
        ```
    """

    def execute(self, request: ProcessRequest) -> ProcessOutcome:
        """Run one process to completion, timeout, or output overflow.

        Every failure path returns whatever stdout and stderr were captured
        before it happened.

        Example:
            ```python
            outcome = LocalEngine().execute(ProcessRequest(argv=["python3", "-c", "print(1)"], timeout_seconds=5))
            ```
        """
        argv = [str(part) for part in request.argv]
        env = None
        if request.env is not None:
            env = {**os.environ, **request.env}
        try:
            proc = subprocess.Popen(
                argv,
                cwd=request.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=os.name != "nt",
            )
        except OSError as exc:
            logger.warning("Failed to start %s: %s", argv[0] if argv else "<empty>", exc)
            return ProcessOutcome(
                stdout="",
                stderr=str(exc),
                returncode=SPAWN_FAILURE_EXIT_CODE,
                error=f"Failed to start interpreter '{argv[0] if argv else ''}': {exc}",
                argv=argv,
            )

        budget = _OutputBudget(max(1, int(request.max_output_bytes)))
        exceeded = threading.Event()
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        assert proc.stdout is not None and proc.stderr is not None
        readers = [
            threading.Thread(
                target=_drain,
                args=(proc.stdout, stdout_chunks, budget, exceeded),
                daemon=True,
            ),
            threading.Thread(
                target=_drain,
                args=(proc.stderr, stderr_chunks, budget, exceeded),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        timeout_seconds = max(1, int(request.timeout_seconds))
        timed_out = False
        waiter = threading.Thread(target=self._kill_on_overflow, args=(proc, exceeded), daemon=True)
        waiter.start()
        try:
            returncode = proc.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill(proc)
            returncode = proc.wait()
        finally:
            exceeded.set()  # release the overflow watcher
        for reader in readers:
            reader.join(_READER_JOIN_SECONDS)

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        output_exceeded = budget.exceeded and not timed_out

        if timed_out:
            logger.warning("Process %s timed out after %ss", argv[0], timeout_seconds)
            return ProcessOutcome(
                stdout=stdout,
                stderr=stderr,
                returncode=TIMEOUT_EXIT_CODE,
                timed_out=True,
                error=f"Execution timed out after {timeout_seconds}s",
                argv=argv,
            )
        if output_exceeded:
            logger.warning(
                "Process %s exceeded the %s byte output limit", argv[0], request.max_output_bytes
            )
            return ProcessOutcome(
                stdout=stdout,
                stderr=stderr,
                returncode=OUTPUT_EXCEEDED_EXIT_CODE,
                output_exceeded=True,
                error=f"Output exceeded {request.max_output_bytes} bytes",
                argv=argv,
            )
        return ProcessOutcome(stdout=stdout, stderr=stderr, returncode=returncode, argv=argv)

    @staticmethod
    def _kill_on_overflow(proc: subprocess.Popen[bytes], exceeded: threading.Event) -> None:
        """Kill ``proc`` as soon as its readers report an output overflow.

        Example:
            ```python
            LocalEngine._kill_on_overflow(proc, exceeded_event)
            ```
        """
        exceeded.wait()
        if proc.poll() is None:
            _kill(proc)
