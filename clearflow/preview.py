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

"""Dry-run preview resolution.

The resolver keeps the affected set of an open clear flow current:
it issues a read-only dry run whenever the flow opens or its inputs
change, and keeps polling while any affected instance is still pending.
It is inert while the flow is closed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import CancelledError, Executor, Future
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from .entities import AffectedSet
from .scheduling import ScheduledCall, Scheduler
from .service import ClearServiceAPI

logger = logging.getLogger(__name__)

PreviewListener = Callable[[AffectedSet], None]

DEFAULT_REFRESH_INTERVAL_MS = 3000


def any_pending(result: AffectedSet) -> bool:
    """Default refresh predicate: poll while any instance is pending."""
    return result.has_pending


@dataclass(frozen=True)
class RefreshPolicy:
    """Decides whether to re-issue a dry run after a result arrives.

    Attributes:
        interval_ms: Delay before the next dry run; None or 0 disables polling
        predicate: Returns True when the result warrants another dry run
    """

    interval_ms: int | None = DEFAULT_REFRESH_INTERVAL_MS
    predicate: Callable[[AffectedSet], bool] = any_pending

    def next_delay(self, result: AffectedSet) -> int | None:
        """Return the delay until the next dry run, or None to stop polling."""
        if not self.interval_ms:
            return None
        return self.interval_ms if self.predicate(result) else None

    @classmethod
    def disabled(cls) -> RefreshPolicy:
        return cls(interval_ms=None)


@dataclass(frozen=True)
class PreviewRequest:
    """Inputs of one dry run."""

    dag_id: str
    body: dict[str, Any] = field(default_factory=dict)


class DryRunPreviewResolver:
    """Resolves and refreshes the affected set of a clear flow.

    Each dispatched dry run carries a generation number. Results from a
    superseded generation (inputs changed, flow closed) are discarded,
    so the affected set always belongs to the current request.
    """

    def __init__(
        self,
        service: ClearServiceAPI,
        executor: Executor,
        scheduler: Scheduler,
        policy: RefreshPolicy | None = None,
    ) -> None:
        self._service = service
        self._executor = executor
        self._scheduler = scheduler
        self._policy = policy or RefreshPolicy()

        self._lock = threading.RLock()
        self._listeners: list[PreviewListener] = []
        self._active = False
        self._request: PreviewRequest | None = None
        self._affected = AffectedSet.empty()
        self._generation = 0
        self._fetching = False
        self._poll: ScheduledCall | None = None
        self._last_error: BaseException | None = None
        self._fetch_count = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def active(self) -> bool:
        return self._active

    @property
    def affected(self) -> AffectedSet:
        """The latest affected set; empty until a dry run succeeds."""
        return self._affected

    @property
    def is_fetching(self) -> bool:
        return self._fetching

    @property
    def is_polling(self) -> bool:
        return self._poll is not None

    @property
    def last_error(self) -> BaseException | None:
        """The failure behind the current (empty) affected set, if any."""
        return self._last_error

    @property
    def fetch_count(self) -> int:
        """Number of dry runs dispatched since construction."""
        return self._fetch_count

    def subscribe(self, listener: PreviewListener) -> None:
        """Register a callback invoked with every new affected set."""
        self._listeners.append(listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def activate(self, request: PreviewRequest) -> None:
        """Start resolving for an opened flow.

        Always dispatches a fresh dry run, discarding any earlier result.
        """
        with self._lock:
            self._active = True
            self._request = request
            self._affected = AffectedSet.empty()
            self._last_error = None
        self._fetch()

    def update(self, request: PreviewRequest) -> None:
        """Re-resolve after the flow's inputs changed.

        A request equal to the current one is a no-op. While inactive the
        request is only remembered.
        """
        with self._lock:
            if request == self._request:
                return
            self._request = request
            if not self._active:
                return
            self._affected = AffectedSet.empty()
        self._fetch()

    def refresh(self) -> None:
        """Dispatch a dry run for the current request immediately."""
        self._fetch()

    def deactivate(self) -> None:
        """Stop resolving: cancel polling and ignore in-flight results."""
        with self._lock:
            self._active = False
            self._generation += 1
            self._fetching = False
            self._cancel_poll()

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _fetch(self) -> None:
        with self._lock:
            if not self._active or self._request is None:
                return
            self._cancel_poll()
            self._generation += 1
            generation = self._generation
            request = self._request
            self._fetching = True
            self._fetch_count += 1

        logger.debug("Dispatching dry run #%d for dag %s", generation, request.dag_id)
        future = self._executor.submit(
            self._service.dry_run_clear, request.dag_id, dict(request.body)
        )
        future.add_done_callback(partial(self._on_done, generation))

    def _on_done(self, generation: int, future: Future) -> None:
        with self._lock:
            if generation != self._generation or not self._active:
                logger.debug("Discarding stale dry run #%d", generation)
                return
            self._fetching = False
            try:
                result = future.result()
                self._last_error = None
            except CancelledError:
                return
            except Exception as exc:
                logger.warning("Dry run unavailable, treating as empty: %s", exc)
                result = AffectedSet.empty()
                self._last_error = exc
            self._affected = result

            delay = self._policy.next_delay(result)
            if delay is not None:
                self._poll = self._scheduler.call_later(delay, partial(self._on_poll, generation))
            listeners = list(self._listeners)

        for listener in listeners:
            listener(result)

    def _on_poll(self, generation: int) -> None:
        with self._lock:
            self._poll = None
            if generation != self._generation or not self._active:
                return
        logger.debug("Refreshing dry run, pending instances remain")
        self._fetch()

    def _cancel_poll(self) -> None:
        if self._poll is not None:
            self._poll.cancel()
            self._poll = None
