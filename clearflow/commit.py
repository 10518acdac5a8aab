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

"""Clear commit coordination.

Dispatches the side-effecting requests of a confirmed clear: the clear
mutation itself and, for a single instance whose note was edited, a note
update scoped to that exact instance.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import CancelledError, Executor, Future
from functools import partial

from .entities import AnnotationUpdate, ClearIntent
from .errors import CommitRejectedError, ServiceError
from .service import ClearServiceAPI

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[CommitRejectedError], None]
AnnotationHandler = Callable[[AnnotationUpdate], None]


class ClearCommitCoordinator:
    """Issues clear and annotation mutations for confirmed intents.

    A new commit is refused while any request of the previous one is
    still in flight. Completion, successful or not, releases the
    coordinator so the confirm action can be invoked again.
    """

    def __init__(
        self,
        service: ClearServiceAPI,
        executor: Executor,
        on_error: ErrorHandler | None = None,
        on_annotated: AnnotationHandler | None = None,
    ) -> None:
        self._service = service
        self._executor = executor
        self._on_error = on_error
        self._on_annotated = on_annotated

        self._lock = threading.Lock()
        self._in_flight = 0
        self._last_error: CommitRejectedError | None = None

    @property
    def is_pending(self) -> bool:
        """Check if a clear or annotation update is still outstanding."""
        return self._in_flight > 0

    @property
    def last_error(self) -> CommitRejectedError | None:
        return self._last_error

    def commit(self, intent: ClearIntent) -> Future | None:
        """Dispatch the mutations for *intent*.

        The clear is dispatched first. The annotation update, when the
        intent carries one and targets a single instance, is dispatched
        right after without waiting for the clear to complete.

        Args:
            intent: The confirmed clear

        Returns:
            The future of the clear request, or None if refused because a
            previous commit is still pending
        """
        with self._lock:
            if self._in_flight:
                logger.info("Commit refused, previous commit still pending")
                return None
            self._in_flight += 1
            self._last_error = None

        body = intent.to_request_body(dry_run=False)
        logger.info(
            "Clearing %s in dag %s run %s",
            body["task_ids"],
            intent.ref.dag_id,
            intent.ref.run_id,
        )
        try:
            clear_future = self._executor.submit(self._service.clear, intent.ref.dag_id, body)
        except Exception as exc:
            self._settle(_as_rejection("clear", exc))
            return None
        clear_future.add_done_callback(partial(self._on_done, "clear", None))

        annotation = intent.annotation
        if annotation is not None and intent.is_single_instance:
            with self._lock:
                self._in_flight += 1
            logger.info("Updating note of %s", annotation.ref)
            try:
                note_future = self._executor.submit(
                    self._service.patch_annotation, annotation.ref, annotation.note
                )
            except Exception as exc:
                self._settle(_as_rejection("patch_annotation", exc))
            else:
                note_future.add_done_callback(
                    partial(self._on_done, "patch_annotation", annotation)
                )

        return clear_future

    def _on_done(
        self, operation: str, annotation: AnnotationUpdate | None, future: Future
    ) -> None:
        error: CommitRejectedError | None = None
        try:
            exc = future.exception()
        except CancelledError as cancelled:
            exc = cancelled
        if exc is not None:
            error = _as_rejection(operation, exc)

        self._settle(error)
        if error is not None:
            return

        logger.debug("%s completed", operation)
        if annotation is not None and self._on_annotated is not None:
            self._on_annotated(annotation)

    def _settle(self, error: CommitRejectedError | None) -> None:
        """Release one in-flight slot and report *error* if there is one."""
        with self._lock:
            self._in_flight -= 1
            if error is not None:
                self._last_error = error

        if error is not None:
            logger.error("%s", error)
            if self._on_error is not None:
                self._on_error(error)


def _as_rejection(operation: str, exc: BaseException) -> CommitRejectedError:
    if isinstance(exc, CommitRejectedError):
        return exc
    if isinstance(exc, ServiceError):
        return CommitRejectedError(operation, exc.message, exc.status_code)
    return CommitRejectedError(operation, str(exc) or type(exc).__name__)
