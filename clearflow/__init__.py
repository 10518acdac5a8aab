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

"""clearflow: preview-then-commit clearing of workflow task instances.

Drives the clear-task-instances interaction: scope options, dry-run
preview, confirmation gate and commit.
"""

from .bundle import RunOnLatestVersionToggle, is_run_on_latest_eligible
from .commit import ClearCommitCoordinator
from .config import ApiConfig, ClearFlowConfig, FlowConfig, load_config
from .entities import (
    AffectedSet,
    AnnotationUpdate,
    ClearIntent,
    ClearScopeOptions,
    ClearTarget,
    GroupTarget,
    TaskInstanceSummary,
    WorkflowDetails,
)
from .entry import CLEAR_HOTKEY, ClearEntryPoint, FlowHost, HotkeyRegistry
from .errors import (
    ClearFlowError,
    CommitRejectedError,
    InvalidSelectionError,
    InvalidTransitionError,
    PreviewUnavailableError,
    ServiceError,
)
from .flow import ClearGroupFlow, ClearTaskInstanceFlow, DialogFlowController
from .memory_service import MemoryClearService
from .options import OptionDescriptor, OptionsState
from .preview import DryRunPreviewResolver, PreviewRequest, RefreshPolicy
from .rest_service import RestClearService
from .scheduling import InlineExecutor, ManualScheduler, Scheduler, TimerScheduler
from .service import ClearServiceAPI
from .states import FlowAction, FlowState, TaskInstanceState
from .types import MAP_INDEX_ALL, ClearScope, TaskIdSelector, TaskInstanceRef

__version__ = "0.1.0"

__all__ = [
    # Types
    "MAP_INDEX_ALL",
    "ClearScope",
    "TaskIdSelector",
    "TaskInstanceRef",
    # States
    "FlowAction",
    "FlowState",
    "TaskInstanceState",
    # Entities
    "AffectedSet",
    "AnnotationUpdate",
    "ClearIntent",
    "ClearScopeOptions",
    "ClearTarget",
    "GroupTarget",
    "TaskInstanceSummary",
    "WorkflowDetails",
    # Errors
    "ClearFlowError",
    "CommitRejectedError",
    "InvalidSelectionError",
    "InvalidTransitionError",
    "PreviewUnavailableError",
    "ServiceError",
    # Components
    "OptionDescriptor",
    "OptionsState",
    "DryRunPreviewResolver",
    "PreviewRequest",
    "RefreshPolicy",
    "RunOnLatestVersionToggle",
    "is_run_on_latest_eligible",
    "ClearCommitCoordinator",
    "DialogFlowController",
    "ClearTaskInstanceFlow",
    "ClearGroupFlow",
    "CLEAR_HOTKEY",
    "ClearEntryPoint",
    "FlowHost",
    "HotkeyRegistry",
    # Services
    "ClearServiceAPI",
    "MemoryClearService",
    "RestClearService",
    # Scheduling
    "InlineExecutor",
    "ManualScheduler",
    "Scheduler",
    "TimerScheduler",
    # Config
    "ApiConfig",
    "ClearFlowConfig",
    "FlowConfig",
    "load_config",
]
