"""Line protocols used to carry structured results over a process's stdout.

Two variants share this module:

* output markers, one ``__OUTPUT__<NAME>__:<value>`` line per variable, written
  by the step wrapper program;
* a single JSON document between two sentinel lines, written by the dataset
  helper among its ordinary log lines.
"""

from __future__ import annotations

import json
import re
from typing import Any, Sequence

from .errors import ProtocolError

OUTPUT_PREFIX = "__OUTPUT__"
OUTPUT_SUFFIX = "__:"

_SUCCESS_DOCUMENT = re.compile(r"\{.*\"success\".*\}", re.DOTALL)


def output_marker(name: str) -> str:
    """Return the line prefix that carries the value of output variable ``name``.

    Example:
        ```python
        output_marker("OUTPUT_PATH")  # -> "__OUTPUT__OUTPUT_PATH__:"
        ```
    """
    return f"{OUTPUT_PREFIX}{name}{OUTPUT_SUFFIX}"


def encode_output(name: str, value: object) -> str:
    """Encode one output value as a protocol line (without newline).

    Example:
        ```python
        encode_output("OUTPUT_PATH", "/tmp/out.csv")  # -> "__OUTPUT__OUTPUT_PATH__:/tmp/out.csv"
        ```
    """
    return f"{output_marker(name)}{value}"


def _marker_pattern(name: str) -> re.Pattern[str]:
    """Compile the pattern matching a full marker line for ``name``.

    Example:
        ```python
        pattern = _marker_pattern("OUTPUT_PATH")
        ```
    """
    return re.compile(rf"^{re.escape(output_marker(name))}(.*)$", re.MULTILINE)


def find_output(stdout: str, name: str) -> str | None:
    """Return the trimmed value of the first marker line for ``name``.

    Empty values count as missing.

    Example:
        ```python
        find_output("log\\n__OUTPUT__OUT__:/tmp/a\\n", "OUT")  # -> "/tmp/a"
        ```
    """
    for match in _marker_pattern(name).finditer(stdout):
        value = match.group(1).strip()
        if value:
            return value
    return None


def decode_outputs(
    stdout: str,
    names: Sequence[str],
    input_path: str | None = None,
) -> list[str]:
    """Recover output values in the order the variables were requested.

    A variable without a marker resolves to ``input_path`` when one is given
    and is skipped otherwise.

    Example:
        ```python
        paths = decode_outputs(stdout, ["TRAIN", "TEST"], input_path="/data/in.csv")
        ```
    """
    values: list[str] = []
    for name in names:
        value = find_output(stdout, name)
        if value is not None:
            values.append(value)
        elif input_path:
            values.append(input_path)
    return values


def strip_markers(stdout: str, names: Sequence[str]) -> str:
    """Remove every marker line for ``names`` so logs never show the protocol.

    Example:
        ```python
        clean = strip_markers("hi\\n__OUTPUT__OUT__:/tmp/a\\n", ["OUT"])  # -> "hi\\n"
        ```
    """
    markers = tuple(output_marker(name) for name in names)
    if not markers:
        return stdout
    kept = [
        line
        for line in stdout.splitlines(keepends=True)
        if not line.startswith(markers)
    ]
    return "".join(kept)


def extract_marked_json(text: str, start_marker: str, end_marker: str) -> str | None:
    """Locate a JSON document embedded in free-form output.

    Strict extraction between the two sentinels is tried first. When the end
    sentinel is missing (truncated output) the document runs from the start
    sentinel to the last closing brace. Without any sentinel, the widest
    brace-delimited span mentioning ``"success"`` is used. Returns None when
    nothing resembling a document is present.

    Example:
        ```python
        raw = extract_marked_json(stdout, "---START---", "---END---")
        ```
    """
    start = text.find(start_marker)
    if start != -1:
        body_start = start + len(start_marker)
        end = text.find(end_marker, body_start)
        if end != -1:
            return text[body_start:end].strip() or None
        closing = text.rfind("}")
        if closing >= body_start:
            return text[body_start : closing + 1].strip()
        return None
    match = _SUCCESS_DOCUMENT.search(text)
    if match:
        return match.group(0)
    return None


def decode_marked_json(text: str, start_marker: str, end_marker: str) -> dict[str, Any]:
    """Extract and parse the JSON object embedded in ``text``.

    Example:
        ```python
        payload = decode_marked_json(stdout, "---START---", "---END---")
        ```
    """
    raw = extract_marked_json(text, start_marker, end_marker)
    if raw is None:
        raise ProtocolError("No JSON payload found in helper output")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Malformed JSON payload: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("Helper payload is not a JSON object")
    return payload
