# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the REST clear service.

The HTTP session is mocked; these tests pin the URLs, payloads and error
mapping against the engine's REST API.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from clearflow.config import ApiConfig
from clearflow.errors import CommitRejectedError, PreviewUnavailableError, ServiceError
from clearflow.rest_service import RestClearService
from clearflow.types import TaskInstanceRef

BASE = "http://airflow:8080/api/v2"

TI_DOC = {
    "dag_id": "etl",
    "dag_run_id": "run_2",
    "task_id": "transform",
    "map_index": -1,
    "state": "failed",
    "logical_date": "2025-01-02T00:00:00+00:00",
    "note": "flaky",
    "dag_version": {"bundle_version": "v1"},
}


def _response(data=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.content = json.dumps(data).encode() if data is not None else b""
    resp.json.return_value = data
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def rest(session):
    return RestClearService(ApiConfig(base_url="http://airflow:8080/", timeout_s=5.0), session)


class TestEndpoints:
    """Tests for request URLs and payloads."""

    def test_workflow_details(self, rest, session):
        session.request.return_value = _response({"dag_id": "etl", "bundle_version": "v2"})
        details = rest.get_workflow_details("etl")
        assert details.bundle_version == "v2"
        session.request.assert_called_once_with(
            "GET", f"{BASE}/dags/etl/details", timeout=5.0, verify=True
        )

    def test_get_task_instance(self, rest, session):
        session.request.return_value = _response(TI_DOC)
        ti = rest.get_task_instance(TaskInstanceRef("etl", "run_2", "transform"))
        assert ti.note == "flaky"
        assert ti.bundle_version == "v1"
        url = session.request.call_args[0][1]
        assert url == f"{BASE}/dags/etl/dagRuns/run_2/taskInstances/transform"

    def test_mapped_task_instance_path(self, rest, session):
        session.request.return_value = _response({**TI_DOC, "task_id": "fanout", "map_index": 2})
        rest.get_task_instance(TaskInstanceRef("etl", "run_2", "fanout", 2))
        url = session.request.call_args[0][1]
        assert url == f"{BASE}/dags/etl/dagRuns/run_2/taskInstances/fanout/2"

    def test_path_segments_quoted(self, rest, session):
        session.request.return_value = _response(TI_DOC)
        rest.get_task_instance(
            TaskInstanceRef("etl", "manual__2025-01-02T00:00:00+00:00", "group.task")
        )
        url = session.request.call_args[0][1]
        assert "/dagRuns/manual__2025-01-02T00%3A00%3A00%2B00%3A00/" in url

    def test_dry_run(self, rest, session):
        session.request.return_value = _response({"task_instances": [TI_DOC], "total_entries": 1})
        affected = rest.dry_run_clear("etl", {"dag_run_id": "run_2", "task_ids": ["transform"]})
        assert affected.total_entries == 1
        session.request.assert_called_once_with(
            "POST",
            f"{BASE}/dags/etl/clearTaskInstances",
            timeout=5.0,
            verify=True,
            json={"dag_run_id": "run_2", "task_ids": ["transform"], "dry_run": True},
        )

    def test_clear_forces_dry_run_false(self, rest, session):
        session.request.return_value = _response({"task_instances": [], "total_entries": 0})
        rest.clear("etl", {"dag_run_id": "run_2", "dry_run": True, "prevent_running_task": True})
        payload = session.request.call_args[1]["json"]
        assert payload["dry_run"] is False
        assert payload["prevent_running_task"] is True

    def test_patch_annotation(self, rest, session):
        session.request.return_value = _response({**TI_DOC, "note": "fixed"})
        updated = rest.patch_annotation(TaskInstanceRef("etl", "run_2", "transform"), "fixed")
        assert updated.note == "fixed"
        session.request.assert_called_once_with(
            "PATCH",
            f"{BASE}/dags/etl/dagRuns/run_2/taskInstances/transform",
            timeout=5.0,
            verify=True,
            json={"note": "fixed"},
            params={"update_mask": "note"},
        )

    def test_patch_annotation_collection_response(self, rest, session):
        doc = {**TI_DOC, "task_id": "fanout", "map_index": 1, "note": "n"}
        session.request.return_value = _response({"task_instances": [doc], "total_entries": 1})
        updated = rest.patch_annotation(TaskInstanceRef("etl", "run_2", "fanout", 1), "n")
        assert updated.map_index == 1

    def test_empty_response_body(self, rest, session):
        session.request.return_value = _response(None)
        details = rest.get_workflow_details("etl")
        assert details.bundle_version is None


class TestErrorMapping:
    """Tests for translating transport failures."""

    def test_dry_run_http_error(self, rest, session):
        session.request.return_value = _response({"detail": "DAG not found"}, status=404)
        with pytest.raises(PreviewUnavailableError) as exc_info:
            rest.dry_run_clear("etl", {"dag_run_id": "run_2"})
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "DAG not found"

    def test_clear_http_error(self, rest, session):
        session.request.return_value = _response({"detail": "conflict"}, status=409)
        with pytest.raises(CommitRejectedError) as exc_info:
            rest.clear("etl", {"dag_run_id": "run_2"})
        assert exc_info.value.operation == "clear"
        assert exc_info.value.status_code == 409

    def test_structured_detail(self, rest, session):
        detail = [{"loc": ["body", "task_ids"], "msg": "field required"}]
        session.request.return_value = _response({"detail": detail}, status=422)
        with pytest.raises(CommitRejectedError) as exc_info:
            rest.clear("etl", {})
        assert "field required" in exc_info.value.message

    def test_non_json_error(self, rest, session):
        resp = _response({}, status=502)
        resp.json.side_effect = ValueError("not json")
        resp.text = "Bad Gateway"
        session.request.return_value = resp
        with pytest.raises(ServiceError) as exc_info:
            rest.get_workflow_details("etl")
        assert exc_info.value.message == "Bad Gateway"
        assert exc_info.value.status_code == 502

    def test_non_json_success_body(self, rest, session):
        resp = _response({})
        resp.content = b"<html>login</html>"
        resp.json.side_effect = requests.JSONDecodeError("Expecting value", "<html>", 0)
        session.request.return_value = resp
        with pytest.raises(PreviewUnavailableError) as exc_info:
            rest.dry_run_clear("etl", {"dag_run_id": "run_2"})
        assert exc_info.value.status_code == 200
        assert exc_info.value.message.startswith("Invalid JSON response")

    def test_connection_error(self, rest, session):
        session.request.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(PreviewUnavailableError) as exc_info:
            rest.dry_run_clear("etl", {})
        assert exc_info.value.status_code is None
        assert "connection refused" in exc_info.value.message

    def test_annotation_error(self, rest, session):
        session.request.return_value = _response({"detail": "forbidden"}, status=403)
        with pytest.raises(CommitRejectedError):
            rest.patch_annotation(TaskInstanceRef("etl", "run_2", "transform"), "x")


class TestDefaults:
    """Tests for construction defaults."""

    def test_default_session_and_config(self):
        rest = RestClearService()
        assert rest.config.endpoint("/dags") == "http://localhost:8080/api/v2/dags"
