from __future__ import annotations

from pathlib import Path

import pytest

from step_runner import DatasetCredentials, DatasetRequest, run_dataset_action
from step_runner.execution.types import ProcessOutcome, ProcessRequest
from step_runner.versioning import build_helper_args, format_dataset_message, resolve_credentials


class _HelperEngine:
    def __init__(self, probe_ok: bool, stdout: str = "") -> None:
        self.probe_ok = probe_ok
        self.stdout = stdout
        self.requests: list[ProcessRequest] = []

    def execute(self, request: ProcessRequest) -> ProcessOutcome:
        self.requests.append(request)
        if "import clearml" in " ".join(request.argv):
            if self.probe_ok:
                return ProcessOutcome(stdout="ok\n", stderr="", returncode=0)
            return ProcessOutcome(stdout="", stderr="No module named 'clearml'", returncode=1)
        return ProcessOutcome(stdout=self.stdout, stderr="", returncode=0)


def test_credentials_travel_as_environment() -> None:
    env = DatasetCredentials(access_key="AK", secret_key="SK").to_env()

    assert env == {
        "CLEARML_API_HOST": "https://api.clear.ml",
        "CLEARML_WEB_HOST": "https://app.clear.ml",
        "CLEARML_FILES_HOST": "https://files.clear.ml",
        "CLEARML_API_ACCESS_KEY": "AK",
        "CLEARML_API_SECRET_KEY": "SK",
    }


def test_credentials_from_env_use_default_hosts() -> None:
    creds = DatasetCredentials.from_env({"CLEARML_API_ACCESS_KEY": "AK", "CLEARML_WEB_HOST": ""})

    assert creds.access_key == "AK"
    assert creds.secret_key == ""
    assert creds.web_host == "https://app.clear.ml"


def test_resolve_credentials_looks_up_secret_references() -> None:
    secrets = {"ref-ak": "AK", "ref-sk": "SK"}
    config = {
        "apiHost": "https://api.example.org",
        "accessKeySecretId": "ref-ak",
        "secretKeySecretId": "ref-sk",
    }

    creds = resolve_credentials(config, secrets.get)

    assert creds.api_host == "https://api.example.org"
    assert creds.files_host == "https://files.clear.ml"
    assert (creds.access_key, creds.secret_key) == ("AK", "SK")
    assert resolve_credentials({"accessKeySecretId": "unknown"}, secrets.get).access_key == ""


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown dataset action"):
        DatasetRequest(action="delete")


def test_helper_args_include_only_given_options() -> None:
    request = DatasetRequest(
        action="create",
        dataset_name="raw",
        dataset_project="demo",
        input_paths=["/data/a", "/data/b"],
        tags=["v1"],
        description="first cut",
    )

    assert build_helper_args(request) == [
        "create",
        "--dataset-name",
        "raw",
        "--dataset-project",
        "demo",
        "--input-path",
        "/data/a",
        "--input-path",
        "/data/b",
        "--tags",
        "v1",
        "--description",
        "first cut",
    ]
    assert build_helper_args(DatasetRequest(action="info", dataset_id="abc")) == ["info", "--dataset-id", "abc"]


def test_create_message_lists_files() -> None:
    payload = {
        "datasetName": "raw",
        "datasetId": "abc",
        "filesAdded": 1,
        "files": [{"name": "a.csv", "size": 2048}],
        "webUrl": "https://app.clear.ml/datasets/abc",
    }

    message = format_dataset_message("create", payload)

    assert message.splitlines()[0] == 'Dataset "raw" created successfully.'
    assert "ID: abc" in message
    assert "  - a.csv (2.00 KB)" in message
    assert message.endswith("View dataset at: https://app.clear.ml/datasets/abc")
    assert format_dataset_message("version", payload).startswith('Dataset "raw" version created successfully.')


def test_download_and_list_messages() -> None:
    assert (
        format_dataset_message("download", {"localPath": "/tmp/ds", "filesDownloaded": 3})
        == "Dataset downloaded to: /tmp/ds\nFiles downloaded: 3"
    )
    listing = {"count": 2, "datasets": [{"name": "raw", "id": "a", "project": "demo"}, {"name": "x", "id": "b"}]}
    assert format_dataset_message("list", listing) == (
        "Found 2 datasets:\n  - raw (ID: a, Project: demo)\n  - x (ID: b, Project: N/A)"
    )
    assert format_dataset_message("list", {"count": 0, "datasets": []}) == "Found 0 datasets:\n  (none)"


def test_run_dataset_action_success(tmp_path: Path) -> None:
    stdout = (
        '---CLEARML_JSON_START---\n'
        '{"success": true, "datasetId": "abc", "datasetName": "raw", "datasetProject": "demo",'
        ' "localPath": "/tmp/ds", "filesDownloaded": 2}\n'
        '---CLEARML_JSON_END---\n'
    )
    engine = _HelperEngine(probe_ok=True, stdout=stdout)

    result = run_dataset_action(
        DatasetRequest(action="download", dataset_id="abc", output_path="/tmp/ds"),
        DatasetCredentials(access_key="AK", secret_key="SK"),
        engine=engine,
        project_root=tmp_path,
    )

    assert result.success is True
    assert result.message == "Dataset downloaded to: /tmp/ds\nFiles downloaded: 2"
    assert result.dataset_id == "abc"
    assert result.output_path == "/tmp/ds"
    assert engine.requests[-1].env is not None
    assert engine.requests[-1].env["CLEARML_API_SECRET_KEY"] == "SK"
    assert "SK" not in engine.requests[-1].argv


def test_run_dataset_action_without_sdk_suggests_install(tmp_path: Path) -> None:
    engine = _HelperEngine(probe_ok=False)

    result = run_dataset_action(
        DatasetRequest(action="list"),
        DatasetCredentials(),
        engine=engine,
        project_root=tmp_path,
    )

    assert result.success is False
    assert result.message.endswith("\n\nTo fix this, run: uv pip install clearml")
