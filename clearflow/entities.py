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

"""Entity dataclasses for the clear-task-instances protocol.

These dataclasses mirror the documents exchanged with the workflow
engine's REST API. Wire dictionaries use snake_case keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .states import TaskInstanceState
from .types import MAP_INDEX_ALL, TaskIdSelector, TaskInstanceRef

# =============================================================================
# Task instances
# =============================================================================


@dataclass(frozen=True)
class TaskInstanceSummary:
    """A task instance as reported by the workflow engine."""

    dag_id: str
    run_id: str
    task_id: str
    map_index: int = MAP_INDEX_ALL
    state: str | None = None
    logical_date: str | None = None
    start_date: str | None = None
    note: str | None = None
    task_display_name: str | None = None
    bundle_version: str | None = None

    @property
    def ref(self) -> TaskInstanceRef:
        """Identity of this instance."""
        return TaskInstanceRef(self.dag_id, self.run_id, self.task_id, self.map_index)

    @property
    def is_pending(self) -> bool:
        return TaskInstanceState.is_pending(self.state)

    @property
    def display_name(self) -> str:
        return self.task_display_name or self.task_id

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the API's task instance shape."""
        return {
            "dag_id": self.dag_id,
            "dag_run_id": self.run_id,
            "task_id": self.task_id,
            "map_index": self.map_index,
            "state": self.state,
            "logical_date": self.logical_date,
            "start_date": self.start_date,
            "note": self.note,
            "task_display_name": self.task_display_name,
            "dag_version": {"bundle_version": self.bundle_version},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskInstanceSummary:
        """Create from an API task instance document.

        The bound bundle version is nested under ``dag_version``, which
        may be absent or null for instances that predate versioning.
        """
        dag_version = data.get("dag_version") or {}
        map_index = data.get("map_index")
        return cls(
            dag_id=data.get("dag_id", ""),
            run_id=data.get("dag_run_id", data.get("run_id", "")),
            task_id=data.get("task_id", ""),
            map_index=MAP_INDEX_ALL if map_index is None else int(map_index),
            state=data.get("state"),
            logical_date=data.get("logical_date"),
            start_date=data.get("start_date"),
            note=data.get("note"),
            task_display_name=data.get("task_display_name"),
            bundle_version=dag_version.get("bundle_version"),
        )


@dataclass(frozen=True)
class AffectedSet:
    """Task instances a clear would affect, as resolved by a dry run."""

    task_instances: tuple[TaskInstanceSummary, ...] = ()
    total_entries: int = 0

    @classmethod
    def empty(cls) -> AffectedSet:
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.total_entries == 0

    @property
    def has_pending(self) -> bool:
        """Check if any instance is not yet in a terminal state."""
        return any(ti.is_pending for ti in self.task_instances)

    def __len__(self) -> int:
        return len(self.task_instances)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_instances": [ti.to_dict() for ti in self.task_instances],
            "total_entries": self.total_entries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AffectedSet:
        """Create from a task instance collection response."""
        instances = tuple(
            TaskInstanceSummary.from_dict(ti) for ti in data.get("task_instances", [])
        )
        return cls(
            task_instances=instances,
            total_entries=int(data.get("total_entries", len(instances))),
        )


# =============================================================================
# Workflows
# =============================================================================


@dataclass(frozen=True)
class WorkflowDetails:
    """Workflow details relevant to clearing."""

    dag_id: str
    bundle_version: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDetails:
        return cls(
            dag_id=data.get("dag_id", ""),
            bundle_version=data.get("bundle_version"),
        )


# =============================================================================
# Flow targets
# =============================================================================


@dataclass(frozen=True)
class ClearTarget:
    """What a clear flow is opened for.

    Entry points that hold a full task instance pass its summary; entry
    points that only know identifiers pass the ref alone. Without a
    summary there is no logical date, no stored note and no bound
    bundle version to reason about.
    """

    ref: TaskInstanceRef
    summary: TaskInstanceSummary | None = None

    @classmethod
    def from_summary(cls, summary: TaskInstanceSummary) -> ClearTarget:
        return cls(ref=summary.ref, summary=summary)

    @property
    def has_logical_date(self) -> bool:
        return self.summary is not None and self.summary.logical_date is not None

    @property
    def stored_note(self) -> str | None:
        return self.summary.note if self.summary else None

    @property
    def bound_version(self) -> str | None:
        return self.summary.bundle_version if self.summary else None

    def missing_fields(self) -> list[str]:
        return self.ref.missing_fields()


@dataclass(frozen=True)
class GroupTarget:
    """A task group within a workflow run."""

    dag_id: str
    run_id: str
    group_id: str
    task_ids: tuple[str, ...] = ()

    def missing_fields(self) -> list[str]:
        missing = [
            name for name in ("dag_id", "run_id", "group_id") if not getattr(self, name)
        ]
        if not self.task_ids:
            missing.append("task_ids")
        return missing


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class ClearScopeOptions:
    """Effective scope flags of a clear request."""

    past: bool = False
    future: bool = False
    upstream: bool = False
    downstream: bool = True
    only_failed: bool = False

    def to_request_fields(self) -> dict[str, bool]:
        return {
            "include_past": self.past,
            "include_future": self.future,
            "include_upstream": self.upstream,
            "include_downstream": self.downstream,
            "only_failed": self.only_failed,
        }

    @classmethod
    def from_request_fields(cls, body: dict[str, Any]) -> ClearScopeOptions:
        return cls(
            past=bool(body.get("include_past", False)),
            future=bool(body.get("include_future", False)),
            upstream=bool(body.get("include_upstream", False)),
            downstream=bool(body.get("include_downstream", False)),
            only_failed=bool(body.get("only_failed", False)),
        )


@dataclass(frozen=True)
class AnnotationUpdate:
    """A note change scoped to one exact task instance."""

    ref: TaskInstanceRef
    note: str | None


@dataclass(frozen=True)
class ClearIntent:
    """Everything needed to preview or commit a clear."""

    ref: TaskInstanceRef
    scope: ClearScopeOptions = field(default_factory=ClearScopeOptions)
    selectors: tuple[TaskIdSelector, ...] = ()
    run_on_latest_version: bool = False
    prevent_running_task: bool = True
    note: str | None = None
    annotation: AnnotationUpdate | None = None

    @property
    def is_single_instance(self) -> bool:
        """Check if every selector names one exact instance."""
        return bool(self.selectors) and not any(s.is_all_mapped for s in self.selectors)

    def to_request_body(self, dry_run: bool) -> dict[str, Any]:
        """Build a clear request body.

        ``prevent_running_task`` is only sent when true; the engine's
        default for an absent field differs from an explicit false.
        """
        body: dict[str, Any] = {
            "dag_run_id": self.ref.run_id,
            "dry_run": dry_run,
            **self.scope.to_request_fields(),
            "run_on_latest_version": self.run_on_latest_version,
            "task_ids": [s.to_wire() for s in self.selectors],
        }
        if not dry_run and self.prevent_running_task:
            body["prevent_running_task"] = True
        return body
