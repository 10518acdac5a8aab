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

"""Dispatch and scheduling primitives.

Network requests are dispatched through a :class:`concurrent.futures.Executor`
and delayed work (dry-run polling) through a :class:`Scheduler`. Both are
injected so that flows can run against real threads in production and
against :class:`InlineExecutor` / :class:`ManualScheduler` in tests,
without wall-clock waits.
"""

import heapq
import itertools
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Protocol, runtime_checkable


@runtime_checkable
class ScheduledCall(Protocol):
    """Handle for a callback scheduled to run later."""

    def cancel(self) -> None:
        """Prevent the callback from running if it has not run yet."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Runs callbacks after a delay."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        """Schedule *callback* to run after *delay_ms* milliseconds."""
        ...


# =========================================================================
# Thread-backed implementations
# =========================================================================


class _TimerCall:
    def __init__(self, timer: threading.Timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class TimerScheduler:
    """Scheduler backed by daemon :class:`threading.Timer` threads."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return _TimerCall(timer)


class InlineExecutor(Executor):
    """Executor that runs each call synchronously in the submitting thread.

    The returned future is already resolved, so done callbacks attached
    afterwards fire immediately.
    """

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


# =========================================================================
# Virtual-clock scheduler
# =========================================================================


class _ManualCall:
    def __init__(self, due_ms: int, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by an explicit virtual clock.

    Callbacks only run when :meth:`advance` moves the clock past their
    due time. Callbacks scheduled while advancing run in the same call
    if they fall due before the target time.
    """

    def __init__(self) -> None:
        self._now_ms = 0
        self._queue: list[tuple[int, int, _ManualCall]] = []
        self._counter = itertools.count()

    @property
    def now_ms(self) -> int:
        return self._now_ms

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have not run or been cancelled."""
        return sum(1 for _, _, call in self._queue if not call.cancelled)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        call = _ManualCall(self._now_ms + max(0, delay_ms), callback)
        heapq.heappush(self._queue, (call.due_ms, next(self._counter), call))
        return call

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward and run every callback that falls due.

        Returns:
            Number of callbacks run.
        """
        target = self._now_ms + delta_ms
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due_ms, _, call = heapq.heappop(self._queue)
            self._now_ms = due_ms
            if call.cancelled:
                continue
            call.callback()
            ran += 1
        self._now_ms = target
        return ran
