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

"""Tests for the task group clear flow."""

import pytest

from clearflow.entities import GroupTarget
from clearflow.errors import InvalidSelectionError, InvalidTransitionError
from clearflow.flow import ClearGroupFlow
from clearflow.states import FlowState


@pytest.fixture
def group():
    return GroupTarget("etl", "run_2", "ingest", ("extract", "transform"))


@pytest.fixture
def group_flow(service, executor, scheduler, group):
    return ClearGroupFlow(service, target=group, executor=executor, scheduler=scheduler)


class TestGroupFlow:
    """Tests for ClearGroupFlow."""

    def test_opens_straight_to_confirm(self, group_flow):
        group_flow.open()
        assert group_flow.state == FlowState.CONFIRM_OPEN

    def test_preview_covers_member_tasks(self, group_flow, service):
        group_flow.open()
        assert group_flow.affected.total_entries == 3
        body = service.calls_to("dry_run_clear")[0][1]
        assert body["task_ids"] == ["extract", "transform"]
        assert body["include_downstream"] is True
        assert body["include_upstream"] is False
        assert body["run_on_latest_version"] is False

    def test_confirm(self, group_flow, service):
        group_flow.open()
        assert group_flow.can_confirm
        future = group_flow.confirm()
        assert future.result().total_entries == 3
        assert group_flow.state == FlowState.CLOSED
        body = service.calls_to("clear")[0][1]
        assert body["prevent_running_task"] is True
        assert service.calls_to("patch_annotation") == []

    def test_cancel_closes(self, service, executor, scheduler, group):
        closed = []
        flow = ClearGroupFlow(
            service,
            target=group,
            executor=executor,
            scheduler=scheduler,
            on_close=lambda: closed.append(True),
        )
        flow.open()
        flow.cancel()
        assert flow.state == FlowState.CLOSED
        assert closed == [True]
        assert not flow.preview.active

    def test_no_options_stage(self, group_flow):
        group_flow.open()
        with pytest.raises(InvalidTransitionError):
            group_flow.request_confirm()

    def test_empty_group_disables_confirm(self, service, executor, scheduler):
        flow = ClearGroupFlow(
            service,
            target=GroupTarget("etl", "run_2", "ghost", ("missing_task",)),
            executor=executor,
            scheduler=scheduler,
        )
        flow.open()
        assert flow.affected.is_empty
        assert not flow.can_confirm
        assert flow.confirm() is None
        assert flow.state == FlowState.CONFIRM_OPEN

    def test_group_without_tasks_rejected(self, service, executor, scheduler):
        flow = ClearGroupFlow(
            service,
            target=GroupTarget("etl", "run_2", "empty"),
            executor=executor,
            scheduler=scheduler,
        )
        with pytest.raises(InvalidSelectionError) as exc_info:
            flow.open()
        assert exc_info.value.missing == ["task_ids"]

    def test_unchecked_prevent_running_task(self, group_flow, service):
        group_flow.open()
        group_flow.set_prevent_running_task(False)
        group_flow.confirm()
        assert "prevent_running_task" not in service.calls_to("clear")[0][1]

    def test_reopen_for_other_group(self, group_flow, service):
        group_flow.open()
        group_flow.close()
        group_flow.open(GroupTarget("etl", "run_2", "tail", ("load",)))
        assert group_flow.target.group_id == "tail"
        assert service.calls_to("dry_run_clear")[-1][1]["task_ids"] == ["load"]
        assert group_flow.affected.total_entries == 1
