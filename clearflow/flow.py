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

"""Clear dialog flow controllers.

A flow walks an operator from an entry point through an options dialog
and a confirmation dialog to a committed clear. The state machine lives
in :class:`DialogFlowController`; variants only supply their target,
their request and their transition table:

- ClearTaskInstanceFlow: one task instance, or all map indices of a task
- ClearGroupFlow: every task of a task group, without an options stage

Each flow instance owns its options, toggles and preview. Nothing is
shared between flows and nothing survives a reopen.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial

from .bundle import RunOnLatestVersionToggle, is_run_on_latest_eligible
from .commit import ClearCommitCoordinator, ErrorHandler
from .config import FlowConfig
from .entities import (
    AffectedSet,
    AnnotationUpdate,
    ClearIntent,
    ClearScopeOptions,
    ClearTarget,
    GroupTarget,
    WorkflowDetails,
)
from .errors import InvalidSelectionError, InvalidTransitionError
from .options import OptionDescriptor, OptionsState
from .preview import DryRunPreviewResolver, PreviewRequest, RefreshPolicy
from .scheduling import Scheduler, TimerScheduler
from .service import ClearServiceAPI
from .states import (
    FLOW_TRANSITIONS,
    GROUP_FLOW_TRANSITIONS,
    FlowAction,
    FlowState,
    get_next_state,
)
from .types import TaskIdSelector, TaskInstanceRef

logger = logging.getLogger(__name__)

CloseHandler = Callable[[], None]


class DialogFlowController(ABC):
    """Disclosure state machine shared by every clear flow variant.

    Actions not listed in the variant's transition table for the current
    state raise :class:`InvalidTransitionError`. Actions that are valid
    but disabled (confirming an empty preview, confirming while a commit
    is pending) return a falsy value instead.

    Without an injected executor the flow starts its own thread pool;
    call :meth:`shutdown` once the flow is no longer needed. An injected
    executor stays owned by the caller.
    """

    transitions: dict[tuple[str, str], str] = FLOW_TRANSITIONS

    def __init__(
        self,
        service: ClearServiceAPI,
        executor: Executor | None = None,
        scheduler: Scheduler | None = None,
        config: FlowConfig | None = None,
        refresh_policy: RefreshPolicy | None = None,
        on_close: CloseHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._config = config or FlowConfig()
        self._service = service
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="clearflow"
        )
        self._scheduler = scheduler or TimerScheduler()
        self._on_close = on_close

        self._lock = threading.RLock()
        self._state = FlowState.CLOSED
        self._last_commit: Future | None = None

        self.preview = DryRunPreviewResolver(
            service,
            self._executor,
            self._scheduler,
            refresh_policy or RefreshPolicy(interval_ms=self._config.auto_refresh_interval_ms),
        )
        self.committer = ClearCommitCoordinator(
            service,
            self._executor,
            on_error=on_error,
            on_annotated=self._on_annotated,
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def config(self) -> FlowConfig:
        return self._config

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_open(self) -> bool:
        return FlowState.is_open(self._state)

    @property
    def affected(self) -> AffectedSet:
        """The current dry-run preview."""
        return self.preview.affected

    @property
    def commit_pending(self) -> bool:
        return self.committer.is_pending

    @property
    def last_commit(self) -> Future | None:
        """Future of the most recently dispatched clear request."""
        return self._last_commit

    @property
    def can_request_confirm(self) -> bool:
        """Check if the options dialog's confirm button is enabled."""
        return (
            self._state == FlowState.OPTIONS_OPEN
            and self._can_commit()
        )

    @property
    def can_confirm(self) -> bool:
        """Check if the confirmation dialog's confirm button is enabled."""
        return self._state == FlowState.CONFIRM_OPEN and self._can_commit()

    def _can_commit(self) -> bool:
        return self.affected.total_entries > 0 and not self.committer.is_pending

    # =========================================================================
    # Actions
    # =========================================================================

    def close(self) -> None:
        """Dismiss every dialog of the flow, from any state."""
        with self._lock:
            was_open = self.is_open
            self._apply(FlowAction.CLOSE)
            self.preview.deactivate()
        if was_open:
            self._notify_closed()

    def shutdown(self, wait: bool = True) -> None:
        """Close the flow and stop the thread pool it started."""
        self.close()
        if self._owns_executor:
            logger.debug("Shutting down clear flow executor")
            self._executor.shutdown(wait=wait)

    def cancel(self) -> None:
        """Back out of the confirmation dialog without committing."""
        with self._lock:
            self._apply(FlowAction.CANCEL)
            if not self.is_open:
                self.preview.deactivate()
                closed = True
            else:
                closed = False
        if closed:
            self._notify_closed()

    def request_confirm(self) -> bool:
        """Move from the options dialog to the confirmation dialog.

        Returns:
            False if confirming is disabled (empty preview or a commit
            still pending), True once the confirmation dialog is open
        """
        with self._lock:
            self._require(FlowAction.REQUEST_CONFIRM)
            if not self._can_commit():
                logger.debug(
                    "Confirm unavailable: %d affected, commit pending=%s",
                    self.affected.total_entries,
                    self.committer.is_pending,
                )
                return False
            self._apply(FlowAction.REQUEST_CONFIRM)
            return True

    def confirm(self) -> Future | None:
        """Commit the clear and close the flow.

        The flow closes as soon as the clear request is dispatched; it
        does not wait for the request to complete. Failures reach the
        ``on_error`` handler.

        Returns:
            The future of the clear request, or None if confirming is
            disabled
        """
        with self._lock:
            self._require(FlowAction.CONFIRM)
            if not self._can_commit():
                return None
            intent = self.build_intent()
            future = self.committer.commit(intent)
            if future is None:
                return None
            self._last_commit = future
            self._apply(FlowAction.CONFIRM)
            self.preview.deactivate()
        self._notify_closed()
        return future

    # =========================================================================
    # Variant hooks
    # =========================================================================

    @abstractmethod
    def build_intent(self) -> ClearIntent:
        """Build the clear intent from the flow's current inputs."""
        ...

    def _preview_request(self) -> PreviewRequest:
        intent = self.build_intent()
        return PreviewRequest(intent.ref.dag_id, intent.to_request_body(dry_run=True))

    def _refresh_preview(self) -> None:
        self.preview.update(self._preview_request())

    def _on_annotated(self, annotation: AnnotationUpdate) -> None:
        pass

    # =========================================================================
    # Internals
    # =========================================================================

    def _open(self) -> None:
        self._apply(FlowAction.OPEN)
        self.preview.activate(self._preview_request())

    def _require(self, action: str) -> str:
        next_state = get_next_state(self._state, action, self.transitions)
        if next_state is None:
            raise InvalidTransitionError(self._state, action)
        return next_state

    def _apply(self, action: str) -> None:
        next_state = self._require(action)
        logger.debug("%s: %s --%s--> %s", type(self).__name__, self._state, action, next_state)
        self._state = next_state

    def _notify_closed(self) -> None:
        if self._on_close is not None:
            self._on_close()


# =============================================================================
# Single instance / all mapped
# =============================================================================


class ClearTaskInstanceFlow(DialogFlowController):
    """Clear flow for one task instance or all map indices of one task.

    In single-instance mode the selector is the exact (task, map index)
    pair, the note may be edited and, when the instance ran against an
    older bundle version, the operator may choose to run on the latest
    version. In all-mapped mode the selector is the bare task id and
    neither the note nor the version choice apply.
    """

    def __init__(
        self,
        service: ClearServiceAPI,
        target: ClearTarget | None = None,
        all_mapped: bool = False,
        **kwargs,
    ) -> None:
        super().__init__(service, **kwargs)
        self._target = target
        self._all_mapped = all_mapped
        self._open_generation = 0

        self.options = OptionsState(has_logical_date=bool(target and target.has_logical_date))
        self.run_on_latest = RunOnLatestVersionToggle()
        self._prevent_running_task = self._config.prevent_running_task
        self._note: str | None = target.stored_note if target else None
        self._workflow: WorkflowDetails | None = None

    # -- State -----------------------------------------------------------------

    @property
    def target(self) -> ClearTarget | None:
        return self._target

    @property
    def all_mapped(self) -> bool:
        return self._all_mapped

    @property
    def ref(self) -> TaskInstanceRef:
        if self._target is None:
            raise InvalidSelectionError(["dag_id", "run_id", "task_id"])
        return self._target.ref

    @property
    def note(self) -> str | None:
        return self._note

    @property
    def prevent_running_task(self) -> bool:
        return self._prevent_running_task

    @property
    def workflow(self) -> WorkflowDetails | None:
        return self._workflow

    @property
    def show_run_on_latest_version(self) -> bool:
        """Check if the run-on-latest-version checkbox is offered."""
        return self.run_on_latest.eligible

    @property
    def note_editable(self) -> bool:
        return not self._all_mapped

    def option_descriptors(self) -> list[OptionDescriptor]:
        return self.options.descriptors()

    def selectors(self) -> tuple[TaskIdSelector, ...]:
        if self._all_mapped:
            return (TaskIdSelector.all_mapped(self.ref.task_id),)
        return (TaskIdSelector.single(self.ref),)

    # -- Actions ---------------------------------------------------------------

    def open(self, target: ClearTarget | None = None) -> None:
        """Open the options dialog, optionally for a new target.

        Every open starts from defaults: scope ``{downstream}``, run on
        latest version off, prevent running task on, the stored note.

        Raises:
            InvalidSelectionError: If the target lacks identity fields
            InvalidTransitionError: If the flow is already open
        """
        with self._lock:
            self._require(FlowAction.OPEN)
            target = target or self._target
            missing = target.missing_fields() if target else ["dag_id", "run_id", "task_id"]
            if missing:
                raise InvalidSelectionError(missing)
            if target != self._target:
                logger.debug("Switching clear target from %s to %s", self._target, target)
            self._target = target
            self._reset_inputs()
            self._open()
            self._open_generation += 1
            generation = self._open_generation
            fetch_details = not self._all_mapped and target.summary is not None

        if fetch_details:
            future = self._executor.submit(self._service.get_workflow_details, target.ref.dag_id)
            future.add_done_callback(partial(self._on_workflow_details, generation))

    def select_options(self, option_ids: Iterable[str]) -> frozenset[str]:
        """Replace the scope selection and refresh the preview."""
        with self._lock:
            selected = self.options.select(option_ids)
            self._refresh_preview()
        return selected

    def toggle_option(self, option_id: str) -> frozenset[str]:
        with self._lock:
            selected = self.options.toggle(option_id)
            self._refresh_preview()
        return selected

    def set_run_on_latest_version(self, checked: bool) -> bool:
        with self._lock:
            value = self.run_on_latest.set(checked)
            self._refresh_preview()
        return value

    def set_prevent_running_task(self, checked: bool) -> None:
        self._prevent_running_task = checked

    def set_note(self, note: str | None) -> None:
        """Edit the note draft; ignored in all-mapped mode."""
        if self._all_mapped:
            logger.debug("Note edits are not applied to all mapped instances")
            return
        self._note = note

    def build_intent(self) -> ClearIntent:
        ref = self.ref
        annotation = None
        if (
            not self._all_mapped
            and self._target is not None
            and self._target.summary is not None
            and self._note != self._target.stored_note
        ):
            annotation = AnnotationUpdate(ref=ref, note=self._note)
        return ClearIntent(
            ref=ref,
            scope=self.options.effective,
            selectors=self.selectors(),
            run_on_latest_version=self.run_on_latest.value,
            prevent_running_task=self._prevent_running_task,
            note=self._note,
            annotation=annotation,
        )

    # -- Internals -------------------------------------------------------------

    def _reset_inputs(self) -> None:
        target = self._target
        self.options.reset(has_logical_date=bool(target and target.has_logical_date))
        self.run_on_latest.reset()
        self._prevent_running_task = self._config.prevent_running_task
        self._note = target.stored_note if target else None
        self._workflow = None

    def _on_workflow_details(self, generation: int, future: Future) -> None:
        with self._lock:
            if generation != self._open_generation or not self.is_open:
                return
            try:
                details = future.result()
            except Exception as exc:
                logger.warning("Workflow details unavailable for %s: %s", self.ref.dag_id, exc)
                self._update_eligibility(False)
                return
            self._workflow = details
            self._update_eligibility(
                is_run_on_latest_eligible(
                    details.bundle_version,
                    self._target.bound_version if self._target else None,
                    single_instance=not self._all_mapped,
                )
            )

    def _update_eligibility(self, eligible: bool) -> None:
        was_checked = self.run_on_latest.value
        self.run_on_latest.set_eligible(eligible)
        if was_checked != self.run_on_latest.value:
            self._refresh_preview()

    def _on_annotated(self, annotation: AnnotationUpdate) -> None:
        # The note only counts as stored once the update succeeded
        with self._lock:
            target = self._target
            if target is None or target.summary is None or target.ref != annotation.ref:
                return
            previous = target.summary.note
            self._target = dataclasses.replace(
                target, summary=dataclasses.replace(target.summary, note=annotation.note)
            )
            # A reopen during the update seeded the draft from the old note
            if self.is_open and self._note == previous:
                self._note = annotation.note


# =============================================================================
# Task group
# =============================================================================


class ClearGroupFlow(DialogFlowController):
    """Clear flow for every task of a task group.

    Opens straight into the group confirmation dialog: the scope is the
    default ``{downstream}`` and every member task is cleared across all
    of its map indices.
    """

    transitions = GROUP_FLOW_TRANSITIONS

    def __init__(
        self,
        service: ClearServiceAPI,
        target: GroupTarget | None = None,
        **kwargs,
    ) -> None:
        super().__init__(service, **kwargs)
        self._target = target
        self._prevent_running_task = self._config.prevent_running_task

    @property
    def target(self) -> GroupTarget | None:
        return self._target

    @property
    def prevent_running_task(self) -> bool:
        return self._prevent_running_task

    def set_prevent_running_task(self, checked: bool) -> None:
        self._prevent_running_task = checked

    def open(self, target: GroupTarget | None = None) -> None:
        """Open the group confirmation dialog.

        Raises:
            InvalidSelectionError: If the group lacks identity fields
            InvalidTransitionError: If the flow is already open
        """
        with self._lock:
            self._require(FlowAction.OPEN)
            target = target or self._target
            missing = target.missing_fields() if target else ["dag_id", "run_id", "group_id"]
            if missing:
                raise InvalidSelectionError(missing)
            self._target = target
            self._prevent_running_task = self._config.prevent_running_task
            self._open()

    def build_intent(self) -> ClearIntent:
        target = self._target
        if target is None:
            raise InvalidSelectionError(["dag_id", "run_id", "group_id"])
        return ClearIntent(
            ref=TaskInstanceRef(target.dag_id, target.run_id, target.group_id),
            scope=ClearScopeOptions(),
            selectors=tuple(TaskIdSelector.all_mapped(t) for t in target.task_ids),
            run_on_latest_version=False,
            prevent_running_task=self._prevent_running_task,
        )
