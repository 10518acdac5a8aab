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

"""Clear service abstraction boundary.

Flow components MUST NOT talk to the workflow engine directly.
All reads and mutations go through this API. Implementations handle:
- Transport, retries and authentication
- Translating engine failures into clearflow errors
"""

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable

from .entities import AffectedSet, TaskInstanceSummary, WorkflowDetails
from .types import TaskInstanceRef


@runtime_checkable
class ClearServiceAPI(Protocol):
    """Protocol defining the operations the clear flow consumes."""

    @abstractmethod
    def get_workflow_details(self, dag_id: str) -> WorkflowDetails:
        """Fetch a workflow's current details.

        Args:
            dag_id: The workflow's identifier

        Returns:
            The workflow details, including its current bundle version

        Raises:
            ServiceError: If the workflow cannot be fetched
        """
        ...

    @abstractmethod
    def get_task_instance(self, ref: TaskInstanceRef) -> TaskInstanceSummary:
        """Fetch a single task instance.

        Raises:
            ServiceError: If the instance cannot be fetched
        """
        ...

    @abstractmethod
    def dry_run_clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        """Evaluate which task instances a clear would affect.

        Read-only: nothing is cleared.

        Args:
            dag_id: The workflow's identifier
            body: A clear request body with ``dry_run`` set

        Returns:
            The affected task instances

        Raises:
            PreviewUnavailableError: If the evaluation fails
        """
        ...

    @abstractmethod
    def clear(self, dag_id: str, body: dict[str, Any]) -> AffectedSet:
        """Clear task instances so the engine re-runs them.

        Args:
            dag_id: The workflow's identifier
            body: A clear request body with ``dry_run`` false

        Returns:
            The cleared task instances

        Raises:
            CommitRejectedError: If the engine rejects the clear
        """
        ...

    @abstractmethod
    def patch_annotation(
        self, ref: TaskInstanceRef, note: str | None
    ) -> TaskInstanceSummary | None:
        """Replace the note of exactly one task instance.

        Raises:
            CommitRejectedError: If the engine rejects the update
        """
        ...
