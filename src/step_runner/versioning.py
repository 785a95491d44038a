from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from .execution.engine import ExecutionEngine
from .helper import invoke_helper
from .settings import RunnerSettings

DATASET_ACTIONS = ("create", "version", "download", "list", "info")

DEFAULT_API_HOST = "https://api.clear.ml"
DEFAULT_WEB_HOST = "https://app.clear.ml"
DEFAULT_FILES_HOST = "https://files.clear.ml"

SecretResolver = Callable[[str], "str | None"]


@dataclass(frozen=True, slots=True)
class DatasetCredentials:
    """Server endpoints and keys handed to the dataset helper.

    Example:
        ```python
        creds = DatasetCredentials(access_key="AK", secret_key="SK")
        ```
    """

    api_host: str = DEFAULT_API_HOST
    web_host: str = DEFAULT_WEB_HOST
    files_host: str = DEFAULT_FILES_HOST
    access_key: str = ""
    secret_key: str = ""

    def to_env(self) -> dict[str, str]:
        """Return the SDK environment variables for these credentials.

        Keys travel in the environment so they never show up in a process listing.

        Example:
            ```python
            env = DatasetCredentials(access_key="AK", secret_key="SK").to_env()
            ```
        """
        return {
            "CLEARML_API_HOST": self.api_host,
            "CLEARML_WEB_HOST": self.web_host,
            "CLEARML_FILES_HOST": self.files_host,
            "CLEARML_API_ACCESS_KEY": self.access_key,
            "CLEARML_API_SECRET_KEY": self.secret_key,
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "DatasetCredentials":
        """Read credentials from ``CLEARML_*`` environment variables.

        Example:
            ```python
            creds = DatasetCredentials.from_env(os.environ)
            ```
        """
        return cls(
            api_host=environ.get("CLEARML_API_HOST") or DEFAULT_API_HOST,
            web_host=environ.get("CLEARML_WEB_HOST") or DEFAULT_WEB_HOST,
            files_host=environ.get("CLEARML_FILES_HOST") or DEFAULT_FILES_HOST,
            access_key=environ.get("CLEARML_API_ACCESS_KEY", ""),
            secret_key=environ.get("CLEARML_API_SECRET_KEY", ""),
        )


def resolve_credentials(
    config: Mapping[str, Any],
    resolve_secret: SecretResolver,
) -> DatasetCredentials:
    """Turn a stored connection config into usable credentials.

    ``config`` holds hosts plus ``accessKeySecretId`` / ``secretKeySecretId``
    references; ``resolve_secret`` maps a reference to its value.

    Example:
        ```python
        creds = resolve_credentials(connection.config, secrets.get_value)
        ```
    """

    def _secret(key: str) -> str:
        """Resolve one secret reference, treating unknown ones as empty.

        Example:
            ```python
            access_key = _secret("accessKeySecretId")
            ```
        """
        ref = config.get(key)
        if not ref:
            return ""
        return resolve_secret(str(ref)) or ""

    return DatasetCredentials(
        api_host=str(config.get("apiHost") or DEFAULT_API_HOST),
        web_host=str(config.get("webHost") or DEFAULT_WEB_HOST),
        files_host=str(config.get("filesHost") or DEFAULT_FILES_HOST),
        access_key=_secret("accessKeySecretId"),
        secret_key=_secret("secretKeySecretId"),
    )


@dataclass(slots=True)
class DatasetRequest:
    """One dataset-versioning operation.

    Example:
        ```python
        req = DatasetRequest(action="create", dataset_name="raw", dataset_project="demo", input_paths=["/data/raw"])
        ```
    """

    action: str
    dataset_id: str | None = None
    dataset_name: str | None = None
    dataset_project: str | None = None
    input_paths: list[str] = field(default_factory=list)
    output_path: str | None = None
    tags: list[str] = field(default_factory=list)
    description: str | None = None

    def __post_init__(self) -> None:
        """Reject actions the helper does not implement.

        Example:
            ```python
            DatasetRequest(action="list")
            ```
        """
        if self.action not in DATASET_ACTIONS:
            raise ValueError(
                f"Unknown dataset action: {self.action!r} (expected one of {', '.join(DATASET_ACTIONS)})"
            )


@dataclass(slots=True)
class DatasetActionResult:
    """Human-oriented result of a dataset operation.

    Example:
        ```python
        res = DatasetActionResult(success=True, message="Found 0 datasets:\\n  (none)")
        ```
    """

    success: bool
    message: str
    dataset_id: str | None = None
    dataset_name: str | None = None
    dataset_project: str | None = None
    output_path: str | None = None
    payload: dict[str, Any] | None = None


def build_helper_args(request: DatasetRequest) -> list[str]:
    """Build the helper command line for a dataset request.

    Example:
        ```python
        build_helper_args(DatasetRequest(action="download", dataset_id="abc", output_path="/tmp/ds"))
        # -> ["download", "--dataset-id", "abc", "--output-path", "/tmp/ds"]
        ```
    """
    args = [request.action]
    if request.dataset_id:
        args.extend(["--dataset-id", request.dataset_id])
    if request.dataset_name:
        args.extend(["--dataset-name", request.dataset_name])
    if request.dataset_project:
        args.extend(["--dataset-project", request.dataset_project])
    for input_path in request.input_paths:
        args.extend(["--input-path", input_path])
    if request.output_path:
        args.extend(["--output-path", request.output_path])
    for tag in request.tags:
        args.extend(["--tags", tag])
    if request.description:
        args.extend(["--description", request.description])
    return args


def format_dataset_message(action: str, payload: Mapping[str, Any]) -> str:
    """Render a helper payload as the text shown to the user.

    Example:
        ```python
        format_dataset_message("download", {"localPath": "/tmp/ds", "filesDownloaded": 3})
        ```
    """
    if action in ("create", "version"):
        verb = "created" if action == "create" else "version created"
        lines = [
            f'Dataset "{payload.get("datasetName")}" {verb} successfully.',
            f"ID: {payload.get('datasetId')}",
            "",
        ]
        files = payload.get("files") or []
        files_added = payload.get("filesAdded") or 0
        if files_added > 0:
            lines.append(f"Files ({files_added}):")
            if files:
                for item in files:
                    size_kb = float(item.get("size", 0)) / 1024
                    lines.append(f"  - {item.get('name')} ({size_kb:.2f} KB)")
            else:
                lines.append("  (none)")
            lines.append("")
        lines.append(f"View dataset at: {payload.get('webUrl')}")
        return "\n".join(lines)
    if action == "download":
        return (
            f"Dataset downloaded to: {payload.get('localPath')}\n"
            f"Files downloaded: {payload.get('filesDownloaded')}"
        )
    if action == "list":
        datasets = payload.get("datasets") or []
        rows = [
            f"  - {d.get('name')} (ID: {d.get('id')}, Project: {d.get('project') or 'N/A'})"
            for d in datasets
        ]
        body = "\n".join(rows) or "  (none)"
        return f"Found {payload.get('count', len(datasets))} datasets:\n{body}"
    return json.dumps(dict(payload), indent=2)


def run_dataset_action(
    request: DatasetRequest,
    credentials: DatasetCredentials,
    settings: RunnerSettings | None = None,
    engine: ExecutionEngine | None = None,
    project_root: str | Path | None = None,
) -> DatasetActionResult:
    """Run a dataset operation through the helper process.

    Example:
        ```python
        res = run_dataset_action(DatasetRequest(action="list", dataset_project="demo"), DatasetCredentials.from_env(os.environ))
        print(res.message)
        ```
    """
    result = invoke_helper(
        build_helper_args(request),
        env=credentials.to_env(),
        settings=settings,
        engine=engine,
        project_root=project_root,
    )
    if not result.success or result.payload is None:
        message = result.error or "Unknown error occurred"
        if result.install_command:
            message += f"\n\nTo fix this, run: {result.install_command}"
        return DatasetActionResult(success=False, message=message, payload=result.payload)

    payload = result.payload
    return DatasetActionResult(
        success=True,
        message=format_dataset_message(request.action, payload),
        dataset_id=payload.get("datasetId"),
        dataset_name=payload.get("datasetName"),
        dataset_project=payload.get("datasetProject"),
        output_path=payload.get("localPath"),
        payload=payload,
    )
