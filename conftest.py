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

"""Root pytest configuration for clearflow tests."""

from concurrent.futures import Executor, Future

import pytest

from clearflow import (
    ClearTarget,
    InlineExecutor,
    ManualScheduler,
    MemoryClearService,
    TaskInstanceRef,
    TaskInstanceSummary,
)

RUN_DATES = {
    "run_1": "2025-01-01T00:00:00+00:00",
    "run_2": "2025-01-02T00:00:00+00:00",
    "run_3": "2025-01-03T00:00:00+00:00",
}


class DeferredExecutor(Executor):
    """Executor that holds submitted calls until :meth:`run_pending`.

    Lets tests observe a flow while its requests are still in flight.
    """

    def __init__(self):
        self._queue = []

    @property
    def queued(self) -> int:
        return len(self._queue)

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self._queue.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> None:
        future, fn, args, kwargs = self._queue.pop(0)
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def run_pending(self) -> int:
        ran = 0
        while self._queue:
            self.run_next()
            ran += 1
        return ran


def make_ti(task_id, run_id="run_2", state="success", map_index=-1, **kwargs):
    """Build a task instance of the ``etl`` workflow."""
    fields = {
        "dag_id": "etl",
        "run_id": run_id,
        "task_id": task_id,
        "map_index": map_index,
        "state": state,
        "logical_date": RUN_DATES.get(run_id),
        "bundle_version": "v1",
    }
    fields.update(kwargs)
    return TaskInstanceSummary(**fields)


@pytest.fixture
def service():
    """Memory service seeded with the ``etl`` workflow.

    Dependencies: extract -> transform -> load, fanout -> load.
    run_2 has a failed transform, an upstream-failed load and a mapped
    fanout task whose index 1 failed.
    """
    svc = MemoryClearService()
    svc.add_workflow(
        "etl",
        bundle_version="v2",
        dependencies={"extract": ["transform"], "transform": ["load"], "fanout": ["load"]},
    )
    for run_id in ("run_1", "run_3"):
        for task_id in ("extract", "transform", "load"):
            svc.add_instance(make_ti(task_id, run_id=run_id))
    svc.add_instance(make_ti("extract"))
    svc.add_instance(make_ti("transform", state="failed", note="flaky"))
    svc.add_instance(make_ti("load", state="upstream_failed"))
    svc.add_instance(make_ti("fanout", map_index=0))
    svc.add_instance(make_ti("fanout", state="failed", map_index=1))
    svc.add_instance(make_ti("fanout", map_index=2))
    return svc


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def transform_target(service):
    """Full target for the failed transform instance of run_2."""
    return ClearTarget.from_summary(
        service.instance(TaskInstanceRef("etl", "run_2", "transform"))
    )


@pytest.fixture
def ti():
    """Factory for ``etl`` task instance summaries."""
    return make_ti
