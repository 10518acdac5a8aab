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

"""REST implementation of ClearServiceAPI.

Talks to the workflow engine's versioned REST API with ``requests``.
Authentication is the caller's concern: pass a ``requests.Session``
already carrying whatever credentials the deployment requires.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from .config import ApiConfig
from .entities import AffectedSet, TaskInstanceSummary, WorkflowDetails
from .errors import CommitRejectedError, PreviewUnavailableError, ServiceError
from .service import ClearServiceAPI
from .types import MAP_INDEX_ALL, TaskInstanceRef

logger = logging.getLogger(__name__)


class RestClearService(ClearServiceAPI):
    """Clear service backed by the engine's REST API.

    Args:
        config: API connection settings
        session: Optional pre-configured session (auth headers, adapters)
    """

    def __init__(self, config: ApiConfig | None = None, session: requests.Session | None = None):
        self._config = config or ApiConfig()
        self._session = session or requests.Session()

    @property
    def config(self) -> ApiConfig:
        return self._config

    # =========================================================================
    # ClearServiceAPI
    # =========================================================================

    def get_workflow_details(self, dag_id: str) -> WorkflowDetails:
        data = self._request("GET", f"/dags/{_seg(dag_id)}/details", "get_workflow_details")
        return WorkflowDetails.from_dict(data)

    def get_task_instance(self, ref: TaskInstanceRef) -> TaskInstanceSummary:
        data = self._request("GET", _task_instance_path(ref), "get_task_instance")
        return TaskInstanceSummary.from_dict(data)

    def dry_run_clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        payload = {**body, "dry_run": True}
        data = self._request(
            "POST",
            f"/dags/{_seg(dag_id)}/clearTaskInstances",
            "dry_run_clear",
            json=payload,
            error_type=PreviewUnavailableError,
        )
        return AffectedSet.from_dict(data)

    def clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        payload = {**body, "dry_run": False}
        data = self._request(
            "POST",
            f"/dags/{_seg(dag_id)}/clearTaskInstances",
            "clear",
            json=payload,
            error_type=CommitRejectedError,
        )
        return AffectedSet.from_dict(data)

    def patch_annotation(
        self, ref: TaskInstanceRef, note: str | None
    ) -> TaskInstanceSummary | None:
        data = self._request(
            "PATCH",
            _task_instance_path(ref),
            "patch_annotation",
            json={"note": note},
            params={"update_mask": "note"},
            error_type=CommitRejectedError,
        )
        # Mapped instances answer with a collection of the patched instances
        if "task_instances" in data:
            instances = data["task_instances"]
            return TaskInstanceSummary.from_dict(instances[0]) if instances else None
        return TaskInstanceSummary.from_dict(data)

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        error_type: type[ServiceError] = ServiceError,
        **kwargs: Any,
    ) -> dict[str, Any]:
        url = self._config.endpoint(path)
        logger.debug("%s %s", method, url)
        try:
            response = self._session.request(
                method,
                url,
                timeout=self._config.timeout_s,
                verify=self._config.verify_ssl,
                **kwargs,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise error_type(operation, _error_detail(e.response), status) from e
        except requests.RequestException as e:
            raise error_type(operation, str(e)) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            # requests.JSONDecodeError is a ValueError
            raise error_type(
                operation, f"Invalid JSON response: {e}", response.status_code
            ) from e


def _seg(value: str) -> str:
    """Quote one URL path segment."""
    return quote(str(value), safe="")


def _task_instance_path(ref: TaskInstanceRef) -> str:
    path = (
        f"/dags/{_seg(ref.dag_id)}/dagRuns/{_seg(ref.run_id)}"
        f"/taskInstances/{_seg(ref.task_id)}"
    )
    if ref.map_index != MAP_INDEX_ALL:
        path += f"/{ref.map_index}"
    return path


def _error_detail(response: requests.Response | None) -> str:
    """Extract the engine's error detail from a failed response."""
    if response is None:
        return "no response"
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason or "request failed"
    if isinstance(data, dict):
        detail = data.get("detail", data)
        return detail if isinstance(detail, str) else str(detail)
    return str(data)
