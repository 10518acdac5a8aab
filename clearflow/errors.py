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

"""clearflow error types."""

from dataclasses import dataclass, field


class ClearFlowError(Exception):
    """Base class for all clearflow errors."""

    pass


@dataclass
class ServiceError(ClearFlowError):
    """Raised when a request to the clear service fails."""

    operation: str
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{self.operation} failed{status}: {self.message}"


@dataclass
class PreviewUnavailableError(ServiceError):
    """Raised when a dry run cannot be evaluated.

    The preview resolver absorbs this error and degrades to an empty
    affected set.
    """

    pass


@dataclass
class CommitRejectedError(ServiceError):
    """Raised when a clear or annotation mutation is rejected."""

    pass


@dataclass
class InvalidSelectionError(ClearFlowError):
    """Raised when a flow is opened for a target without a usable identity."""

    missing: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"Cannot open clear flow, missing: {', '.join(self.missing)}"


@dataclass
class InvalidTransitionError(ClearFlowError):
    """Raised when an action is not valid in the flow's current state."""

    from_state: str
    action: str

    def __str__(self) -> str:
        return f"Invalid flow action '{self.action}' in state '{self.from_state}'"
