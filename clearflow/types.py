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

"""clearflow core type definitions."""

from __future__ import annotations

from dataclasses import dataclass

# Map index sentinel: "not a mapped instance" or "all map indices"
MAP_INDEX_ALL = -1


class ClearScope:
    """Scope option identifiers for a clear request.

    Each option widens the set of task instances affected by a clear
    beyond the exact selection. Options are mutually independent.
    """

    PAST = "past"
    FUTURE = "future"
    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"
    ONLY_FAILED = "onlyFailed"

    # Display order of the segmented control
    ALL = (PAST, FUTURE, UPSTREAM, DOWNSTREAM, ONLY_FAILED)

    # Options that only make sense relative to a logical date
    DATE_BOUND = (PAST, FUTURE)

    DEFAULT = frozenset({DOWNSTREAM})

    @classmethod
    def is_known(cls, option_id: str) -> bool:
        """Check if *option_id* names a scope option."""
        return option_id in cls.ALL

    @classmethod
    def is_date_bound(cls, option_id: str) -> bool:
        """Check if *option_id* requires a logical date to be selectable."""
        return option_id in cls.DATE_BOUND


@dataclass(frozen=True)
class TaskInstanceRef:
    """Identity of a task instance within a workflow run."""

    dag_id: str
    run_id: str
    task_id: str
    map_index: int = MAP_INDEX_ALL

    def missing_fields(self) -> list[str]:
        """Return the names of identity fields that are empty."""
        return [
            name
            for name in ("dag_id", "run_id", "task_id")
            if not getattr(self, name)
        ]

    @property
    def is_complete(self) -> bool:
        """Check if every identity field is present."""
        return not self.missing_fields()

    def __str__(self) -> str:
        suffix = f"[{self.map_index}]" if self.map_index != MAP_INDEX_ALL else ""
        return f"{self.dag_id}/{self.run_id}/{self.task_id}{suffix}"


@dataclass(frozen=True)
class TaskIdSelector:
    """Selects task instances to clear.

    A selector with ``map_index=None`` names every map index of the task
    (wire form ``"task"``). A selector carrying a map index names exactly
    one instance (wire form ``["task", map_index]``), including the
    unmapped instance at index -1.
    """

    task_id: str
    map_index: int | None = None

    @property
    def is_all_mapped(self) -> bool:
        return self.map_index is None

    def to_wire(self) -> str | list:
        """Serialize to the ``task_ids`` entry format."""
        if self.map_index is None:
            return self.task_id
        return [self.task_id, self.map_index]

    @classmethod
    def from_wire(cls, value: str | list | tuple) -> TaskIdSelector:
        """Parse a ``task_ids`` entry."""
        if isinstance(value, str):
            return cls(task_id=value)
        task_id, map_index = value
        return cls(task_id=task_id, map_index=int(map_index))

    @classmethod
    def single(cls, ref: TaskInstanceRef) -> TaskIdSelector:
        """Selector for exactly the instance *ref* names."""
        return cls(task_id=ref.task_id, map_index=ref.map_index)

    @classmethod
    def all_mapped(cls, task_id: str) -> TaskIdSelector:
        """Selector for every map index of *task_id*."""
        return cls(task_id=task_id)
