"""Dataset versioning helper, run as a separate process by ``step_runner.helper``.

It is started with whatever interpreter has the ``clearml`` SDK installed, so it
only depends on the standard library and that SDK. Credentials come from the
``CLEARML_*`` environment variables. SDK log lines may appear anywhere on
stdout; the result is always the JSON document printed between the two
marker lines.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import traceback
from pathlib import Path
from typing import Any, Sequence

JSON_START = "---CLEARML_JSON_START---"
JSON_END = "---CLEARML_JSON_END---"


def emit(result: dict[str, Any]) -> None:
    """Print the result document between the marker lines.

    Example:
        ```python
        emit({"success": True, "count": 0, "datasets": []})
        ```
    """
    sys.stdout.flush()
    print(JSON_START)
    print(json.dumps(result, indent=2, default=str))
    print(JSON_END)
    sys.stdout.flush()


def _configure_sdk() -> None:
    """Push credentials from the environment into the SDK when keys are present.

    Example:
        ```python
        _configure_sdk()
        ```
    """
    from clearml import Task

    key = os.environ.get("CLEARML_API_ACCESS_KEY")
    secret = os.environ.get("CLEARML_API_SECRET_KEY")
    if key and secret:
        Task.set_credentials(
            api_host=os.environ.get("CLEARML_API_HOST"),
            web_host=os.environ.get("CLEARML_WEB_HOST"),
            files_host=os.environ.get("CLEARML_FILES_HOST"),
            key=key,
            secret=secret,
        )


def _describe_files(paths: Sequence[str]) -> list[dict[str, Any]]:
    """List the files under the given input paths with their sizes.

    Example:
        ```python
        files = _describe_files(["/data/raw"])
        ```
    """
    found: list[dict[str, Any]] = []
    for raw in paths:
        root = Path(raw).expanduser()
        candidates = [root] if root.is_file() else sorted(p for p in root.rglob("*") if p.is_file())
        for item in candidates:
            found.append({"path": str(item), "name": item.name, "size": item.stat().st_size})
    return found


def _count_files(path: str | None) -> int:
    """Count regular files below ``path``.

    Example:
        ```python
        total = _count_files("/tmp/dataset_copy")
        ```
    """
    if not path:
        return 0
    root = Path(path)
    if root.is_file():
        return 1
    return sum(1 for p in root.rglob("*") if p.is_file())


def _web_url(dataset: Any) -> str:
    """Return the web page of a dataset, falling back to the web host.

    Example:
        ```python
        url = _web_url(dataset)
        ```
    """
    from clearml import Task

    try:
        return Task.get_task(task_id=dataset.id).get_output_log_web_page()
    except Exception:
        return os.environ.get("CLEARML_WEB_HOST", "https://app.clear.ml")


def _get_dataset(args: argparse.Namespace) -> Any:
    """Look a dataset up by id, or by name and project.

    Example:
        ```python
        dataset = _get_dataset(argparse.Namespace(dataset_id="abc", dataset_name=None, dataset_project=None))
        ```
    """
    from clearml import Dataset

    if args.dataset_id:
        return Dataset.get(dataset_id=args.dataset_id)
    if args.dataset_name:
        return Dataset.get(dataset_name=args.dataset_name, dataset_project=args.dataset_project)
    raise ValueError("Either --dataset-id or --dataset-name is required")


def _create(args: argparse.Namespace, parent: Any = None) -> dict[str, Any]:
    """Create a dataset (or a new version of ``parent``) from the input paths.

    Example:
        ```python
        result = _create(args)
        ```
    """
    from clearml import Dataset

    if not args.input_path:
        raise ValueError("At least one --input-path is required")
    name = args.dataset_name or (parent.name if parent is not None else None)
    project = args.dataset_project or (parent.project if parent is not None else None)
    if not name:
        raise ValueError("--dataset-name is required")

    dataset = Dataset.create(
        dataset_name=name,
        dataset_project=project,
        dataset_tags=args.tags or None,
        parent_datasets=[parent.id] if parent is not None else None,
        description=args.description,
    )
    files_added = 0
    for input_path in args.input_path:
        print(f"Adding {input_path}")
        added = dataset.add_files(path=str(Path(input_path).expanduser()))
        files_added += int(added or 0)
    dataset.upload()
    dataset.finalize()
    files = _describe_files(args.input_path)
    return {
        "success": True,
        "datasetId": dataset.id,
        "datasetName": name,
        "datasetProject": project,
        "filesAdded": files_added,
        "files": files,
        "totalSize": sum(f["size"] for f in files),
        "webUrl": _web_url(dataset),
    }


def action_create(args: argparse.Namespace) -> dict[str, Any]:
    """Create a new dataset.

    Example:
        ```python
        result = action_create(parse_args(["create", "--dataset-name", "raw", "--input-path", "/data"]))
        ```
    """
    return _create(args)


def action_version(args: argparse.Namespace) -> dict[str, Any]:
    """Create a new version on top of an existing dataset.

    Example:
        ```python
        result = action_version(parse_args(["version", "--dataset-id", "abc", "--input-path", "/data"]))
        ```
    """
    return _create(args, parent=_get_dataset(args))


def action_download(args: argparse.Namespace) -> dict[str, Any]:
    """Download a dataset to a local folder.

    Example:
        ```python
        result = action_download(parse_args(["download", "--dataset-id", "abc", "--output-path", "/tmp/ds"]))
        ```
    """
    dataset = _get_dataset(args)
    if args.output_path:
        local_path = dataset.get_mutable_local_copy(
            target_folder=str(Path(args.output_path).expanduser()), overwrite=True
        )
    else:
        local_path = dataset.get_local_copy()
    return {
        "success": True,
        "datasetId": dataset.id,
        "datasetName": dataset.name,
        "datasetProject": dataset.project,
        "localPath": local_path,
        "filesDownloaded": _count_files(local_path),
    }


def action_list(args: argparse.Namespace) -> dict[str, Any]:
    """List datasets, optionally filtered by project, name and tags.

    Example:
        ```python
        result = action_list(parse_args(["list", "--dataset-project", "demo"]))
        ```
    """
    from clearml import Dataset

    found = Dataset.list_datasets(
        dataset_project=args.dataset_project,
        partial_name=args.dataset_name,
        tags=args.tags or None,
    )
    datasets = [
        {
            "id": item.get("id"),
            "name": item.get("name"),
            "project": item.get("project"),
            "tags": item.get("tags") or [],
        }
        for item in found
    ]
    return {"success": True, "count": len(datasets), "datasets": datasets}


def action_info(args: argparse.Namespace) -> dict[str, Any]:
    """Describe one dataset.

    Example:
        ```python
        result = action_info(parse_args(["info", "--dataset-id", "abc"]))
        ```
    """
    dataset = _get_dataset(args)
    files = dataset.list_files()
    return {
        "success": True,
        "datasetId": dataset.id,
        "datasetName": dataset.name,
        "datasetProject": dataset.project,
        "tags": list(dataset.tags or []),
        "filesCount": len(files),
        "files": files,
        "webUrl": _web_url(dataset),
    }


ACTIONS = {
    "create": action_create,
    "version": action_version,
    "download": action_download,
    "list": action_list,
    "info": action_info,
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the helper command line.

    Example:
        ```python
        args = parse_args(["list", "--dataset-project", "demo"])
        ```
    """
    parser = argparse.ArgumentParser(description="Dataset versioning helper")
    parser.add_argument("action", choices=sorted(ACTIONS))
    parser.add_argument("--dataset-id")
    parser.add_argument("--dataset-name")
    parser.add_argument("--dataset-project")
    parser.add_argument("--input-path", action="append", default=[])
    parser.add_argument("--output-path")
    parser.add_argument("--tags", action="append", default=[])
    parser.add_argument("--description")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run one helper action and print its JSON result.

    Example:
        ```python
        code = main(["info", "--dataset-id", "abc"])
        ```
    """
    args = parse_args(argv)
    try:
        _configure_sdk()
        result = ACTIONS[args.action](args)
    except ImportError as exc:
        emit(
            {
                "success": False,
                "error": f"ClearML SDK is not available: {exc}",
                "installCommand": "uv pip install clearml",
            }
        )
        return 1
    except Exception as exc:
        traceback.print_exc()
        emit({"success": False, "error": f"{type(exc).__name__}: {exc}"})
        return 1
    emit(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
