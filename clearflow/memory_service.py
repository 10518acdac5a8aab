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

"""In-memory implementation of ClearServiceAPI for testing.

Models just enough of a workflow engine to answer clear requests: task
instances grouped by run, a task dependency graph per workflow, and the
current bundle version of each workflow. Every request is recorded so
tests can assert exactly what a flow sent.
"""

from __future__ import annotations

import copy
import dataclasses
import threading
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from .entities import AffectedSet, ClearScopeOptions, TaskInstanceSummary, WorkflowDetails
from .errors import CommitRejectedError, PreviewUnavailableError, ServiceError
from .service import ClearServiceAPI
from .states import TaskInstanceState
from .types import TaskIdSelector, TaskInstanceRef

_InstanceKey = tuple[str, str, str, int]


class MemoryClearService(ClearServiceAPI):
    """In-memory implementation of the clear service API.

    Used for testing without a running workflow engine.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowDetails] = {}
        self._downstream: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))
        self._instances: dict[_InstanceKey, TaskInstanceSummary] = {}
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self._lock = threading.Lock()

        self.calls: list[tuple[str, Any]] = []

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_workflow(
        self,
        dag_id: str,
        bundle_version: str | None = None,
        dependencies: dict[str, Iterable[str]] | None = None,
    ) -> WorkflowDetails:
        """Register a workflow.

        Args:
            dag_id: The workflow's identifier
            bundle_version: The workflow's current bundle version
            dependencies: Task id -> ids of its direct downstream tasks
        """
        details = WorkflowDetails(dag_id=dag_id, bundle_version=bundle_version)
        self._workflows[dag_id] = details
        for task_id, downstream in (dependencies or {}).items():
            self._downstream[dag_id][task_id].update(downstream)
        return details

    def add_instance(self, summary: TaskInstanceSummary) -> TaskInstanceSummary:
        """Add or replace a task instance."""
        self._instances[_key(summary)] = summary
        return summary

    def fail_next(self, operation: str, error: BaseException) -> None:
        """Make the next call of *operation* raise *error*."""
        self._failures[operation].append(error)

    def instance(self, ref: TaskInstanceRef) -> TaskInstanceSummary | None:
        return self._instances.get((ref.dag_id, ref.run_id, ref.task_id, ref.map_index))

    def calls_to(self, operation: str) -> list[Any]:
        """Return the recorded arguments of every call to *operation*."""
        return [args for name, args in self.calls if name == operation]

    # =========================================================================
    # ClearServiceAPI
    # =========================================================================

    def get_workflow_details(self, dag_id: str) -> WorkflowDetails:
        self._record("get_workflow_details", dag_id)
        details = self._workflows.get(dag_id)
        if details is None:
            raise ServiceError("get_workflow_details", f"DAG {dag_id} not found", 404)
        return details

    def get_task_instance(self, ref: TaskInstanceRef) -> TaskInstanceSummary:
        self._record("get_task_instance", ref)
        summary = self.instance(ref)
        if summary is None:
            raise ServiceError("get_task_instance", f"Task instance {ref} not found", 404)
        return summary

    def dry_run_clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        self._record("dry_run_clear", (dag_id, copy.deepcopy(body)))
        try:
            return self._resolve(dag_id, body)
        except KeyError as e:
            raise PreviewUnavailableError("dry_run_clear", f"Unknown key {e}") from e

    def clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        self._record("clear", (dag_id, copy.deepcopy(body)))
        with self._lock:
            affected = self._resolve(dag_id, body)
            if body.get("prevent_running_task"):
                running = [
                    ti for ti in affected.task_instances if ti.state == TaskInstanceState.RUNNING
                ]
                if running:
                    names = ", ".join(str(ti.ref) for ti in running)
                    raise CommitRejectedError(
                        "clear", f"Cannot clear running task instances: {names}", 409
                    )

            latest = self._workflows.get(dag_id)
            cleared = []
            for ti in affected.task_instances:
                changes: dict[str, Any] = {"state": TaskInstanceState.NONE}
                if body.get("run_on_latest_version") and latest is not None:
                    changes["bundle_version"] = latest.bundle_version
                updated = dataclasses.replace(ti, **changes)
                self._instances[_key(updated)] = updated
                cleared.append(updated)
        return AffectedSet(task_instances=tuple(cleared), total_entries=len(cleared))

    def patch_annotation(self, ref: TaskInstanceRef, note: str | None) -> TaskInstanceSummary:
        self._record("patch_annotation", (ref, note))
        with self._lock:
            summary = self.instance(ref)
            if summary is None:
                raise CommitRejectedError("patch_annotation", f"Task instance {ref} not found", 404)
            updated = dataclasses.replace(summary, note=note)
            self._instances[_key(updated)] = updated
        return updated

    # =========================================================================
    # Resolution
    # =========================================================================

    def _record(self, operation: str, args: Any) -> None:
        self.calls.append((operation, args))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _resolve(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        """Evaluate which instances a clear request body selects."""
        run_id = body["dag_run_id"]
        scope = ClearScopeOptions.from_request_fields(body)
        selectors = [TaskIdSelector.from_wire(v) for v in body.get("task_ids", [])]

        # Exact selection: task id -> map indices (None means every index)
        exact: dict[str, set[int] | None] = {}
        for sel in selectors:
            if sel.is_all_mapped or exact.get(sel.task_id, set()) is None:
                exact[sel.task_id] = None
            else:
                exact.setdefault(sel.task_id, set()).add(sel.map_index)

        # Relatives are cleared across every map index
        relatives: set[str] = set()
        if scope.upstream:
            relatives |= self._walk(dag_id, exact, self._upstream_of)
        if scope.downstream:
            relatives |= self._walk(dag_id, exact, self._downstream_of)
        relatives -= set(exact)

        runs = self._runs_in_scope(dag_id, run_id, scope)

        matched = []
        for ti in self._instances.values():
            if ti.dag_id != dag_id or ti.run_id not in runs:
                continue
            if ti.task_id in exact:
                indexes = exact[ti.task_id]
                if indexes is not None and ti.map_index not in indexes:
                    continue
            elif ti.task_id not in relatives:
                continue
            if scope.only_failed and not TaskInstanceState.is_failed(ti.state):
                continue
            matched.append(ti)

        matched.sort(key=lambda ti: (ti.logical_date or "", ti.run_id, ti.task_id, ti.map_index))
        return AffectedSet(task_instances=tuple(matched), total_entries=len(matched))

    def _runs_in_scope(self, dag_id: str, run_id: str, scope: ClearScopeOptions) -> set[str]:
        runs = {run_id}
        if not (scope.past or scope.future):
            return runs

        dates: dict[str, str | None] = {}
        for ti in self._instances.values():
            if ti.dag_id == dag_id:
                dates.setdefault(ti.run_id, ti.logical_date)
        anchor = dates.get(run_id)
        if anchor is None:
            return runs

        for other, date in dates.items():
            if date is None:
                continue
            if (scope.past and date < anchor) or (scope.future and date > anchor):
                runs.add(other)
        return runs

    def _downstream_of(self, dag_id: str, task_id: str) -> set[str]:
        return set(self._downstream[dag_id].get(task_id, ()))

    def _upstream_of(self, dag_id: str, task_id: str) -> set[str]:
        return {up for up, downs in self._downstream[dag_id].items() if task_id in downs}

    @staticmethod
    def _walk(dag_id: str, start: Iterable[str], step) -> set[str]:
        seen: set[str] = set()
        frontier = list(start)
        while frontier:
            task_id = frontier.pop()
            for nxt in step(dag_id, task_id):
                if nxt not in seen:
                    seen.add(nxt)
                    frontier.append(nxt)
        return seen


def _key(summary: TaskInstanceSummary) -> _InstanceKey:
    return (summary.dag_id, summary.run_id, summary.task_id, summary.map_index)
