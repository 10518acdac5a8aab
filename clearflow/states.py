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

"""clearflow state definitions.

This module defines the task-instance states reported by the workflow
engine and the dialog flow state machines. There are two flow machines:
- FLOW_TRANSITIONS: Full machine with an options stage (single instance, all mapped)
- GROUP_FLOW_TRANSITIONS: Reduced machine for task groups, no options stage
"""


class TaskInstanceState:
    """Task instance state constants as reported by the workflow engine."""

    # Not yet terminal
    NONE = None
    SCHEDULED = "scheduled"
    QUEUED = "queued"
    RUNNING = "running"
    RESTARTING = "restarting"
    DEFERRED = "deferred"
    UP_FOR_RETRY = "up_for_retry"
    UP_FOR_RESCHEDULE = "up_for_reschedule"

    # Terminal states
    SUCCESS = "success"
    FAILED = "failed"
    UPSTREAM_FAILED = "upstream_failed"
    SKIPPED = "skipped"
    REMOVED = "removed"

    PENDING = frozenset(
        {
            SCHEDULED,
            QUEUED,
            RUNNING,
            RESTARTING,
            DEFERRED,
            UP_FOR_RETRY,
            UP_FOR_RESCHEDULE,
        }
    )

    FAILED_STATES = frozenset({FAILED, UPSTREAM_FAILED})

    @classmethod
    def is_pending(cls, state: str | None) -> bool:
        """Check if state is not yet terminal.

        An instance with no state has not been scheduled yet, so it
        counts as pending too.
        """
        return not state or state in cls.PENDING

    @classmethod
    def is_failed(cls, state: str | None) -> bool:
        """Check if state counts as failed for an only-failed clear."""
        return state in cls.FAILED_STATES


class FlowState:
    """Dialog flow state constants."""

    CLOSED = "flow.Closed"
    OPTIONS_OPEN = "flow.options.Open"
    CONFIRM_OPEN = "flow.confirm.Open"

    @classmethod
    def is_open(cls, state: str) -> bool:
        """Check if any dialog of the flow is showing."""
        return state != cls.CLOSED


class FlowAction:
    """Actions that drive the dialog flow."""

    OPEN = "open"
    REQUEST_CONFIRM = "request_confirm"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    CLOSE = "close"


# Full flow: trigger -> options dialog -> confirmation dialog
FLOW_TRANSITIONS: dict[tuple[str, str], str] = {
    (FlowState.CLOSED, FlowAction.OPEN): FlowState.OPTIONS_OPEN,
    (FlowState.OPTIONS_OPEN, FlowAction.REQUEST_CONFIRM): FlowState.CONFIRM_OPEN,
    (FlowState.CONFIRM_OPEN, FlowAction.CANCEL): FlowState.OPTIONS_OPEN,
    # Confirm bypasses the options dialog on the way out
    (FlowState.CONFIRM_OPEN, FlowAction.CONFIRM): FlowState.CLOSED,
    (FlowState.CLOSED, FlowAction.CLOSE): FlowState.CLOSED,
    (FlowState.OPTIONS_OPEN, FlowAction.CLOSE): FlowState.CLOSED,
    (FlowState.CONFIRM_OPEN, FlowAction.CLOSE): FlowState.CLOSED,
}


# Reduced flow for task groups: trigger -> group confirmation
GROUP_FLOW_TRANSITIONS: dict[tuple[str, str], str] = {
    (FlowState.CLOSED, FlowAction.OPEN): FlowState.CONFIRM_OPEN,
    (FlowState.CONFIRM_OPEN, FlowAction.CANCEL): FlowState.CLOSED,
    (FlowState.CONFIRM_OPEN, FlowAction.CONFIRM): FlowState.CLOSED,
    (FlowState.CLOSED, FlowAction.CLOSE): FlowState.CLOSED,
    (FlowState.CONFIRM_OPEN, FlowAction.CLOSE): FlowState.CLOSED,
}


def get_next_state(
    current_state: str, action: str, transitions: dict[tuple[str, str], str]
) -> str | None:
    """Get the next state for *action* taken in *current_state*.

    Args:
        current_state: The current flow state
        action: The action being taken
        transitions: The transition table to use

    Returns:
        The next state, or None if the action is not valid in this state
    """
    return transitions.get((current_state, action))
