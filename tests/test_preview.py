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

"""Tests for dry-run preview resolution."""

import logging

import pytest

from clearflow.entities import AffectedSet, ClearIntent
from clearflow.errors import PreviewUnavailableError
from clearflow.preview import DryRunPreviewResolver, PreviewRequest, RefreshPolicy
from clearflow.types import TaskIdSelector, TaskInstanceRef


def _request(task_id="transform", run_id="run_2", **scope):
    ref = TaskInstanceRef("etl", run_id, task_id)
    intent = ClearIntent(ref=ref, selectors=(TaskIdSelector.single(ref),))
    body = intent.to_request_body(dry_run=True)
    body.update(scope)
    return PreviewRequest("etl", body)


@pytest.fixture
def resolver(service, executor, scheduler):
    return DryRunPreviewResolver(service, executor, scheduler)


class TestRefreshPolicy:
    """Tests for RefreshPolicy."""

    def test_polls_while_pending(self, ti):
        pending = AffectedSet((ti("a", state="queued"),), 1)
        assert RefreshPolicy().next_delay(pending) == 3000

    def test_stops_when_terminal(self, ti):
        done = AffectedSet((ti("a", state="success"),), 1)
        assert RefreshPolicy().next_delay(done) is None

    def test_empty_result_does_not_poll(self):
        assert RefreshPolicy().next_delay(AffectedSet.empty()) is None

    def test_disabled(self, ti):
        pending = AffectedSet((ti("a", state="running"),), 1)
        assert RefreshPolicy.disabled().next_delay(pending) is None
        assert RefreshPolicy(interval_ms=0).next_delay(pending) is None

    def test_custom_predicate(self):
        policy = RefreshPolicy(interval_ms=500, predicate=lambda result: True)
        assert policy.next_delay(AffectedSet.empty()) == 500


class TestResolverLifecycle:
    """Tests for activation and request changes."""

    def test_inactive_does_nothing(self, resolver, service):
        resolver.update(_request())
        resolver.refresh()
        assert service.calls_to("dry_run_clear") == []
        assert resolver.affected.is_empty

    def test_activate_fetches(self, resolver, service):
        resolver.activate(_request())
        assert resolver.active
        assert resolver.fetch_count == 1
        assert resolver.affected.total_entries == 2
        assert not resolver.is_fetching
        dag_id, body = service.calls_to("dry_run_clear")[0]
        assert dag_id == "etl"
        assert body["dry_run"] is True

    def test_update_with_equal_request_is_noop(self, resolver):
        resolver.activate(_request())
        resolver.update(_request())
        assert resolver.fetch_count == 1

    def test_update_with_new_request_refetches(self, resolver):
        resolver.activate(_request())
        resolver.update(_request(include_upstream=True))
        assert resolver.fetch_count == 2
        assert resolver.affected.total_entries == 3

    def test_update_while_inactive_is_remembered(self, resolver):
        resolver.activate(_request())
        resolver.deactivate()
        resolver.update(_request(include_downstream=False))
        assert resolver.fetch_count == 1
        resolver.activate(_request(include_downstream=False))
        assert resolver.affected.total_entries == 1

    def test_listeners_receive_results(self, resolver):
        seen = []
        resolver.subscribe(seen.append)
        resolver.activate(_request())
        assert [r.total_entries for r in seen] == [2]

    def test_failure_degrades_to_empty(self, resolver, service, caplog):
        service.fail_next("dry_run_clear", PreviewUnavailableError("dry_run_clear", "down", 503))
        with caplog.at_level(logging.WARNING, logger="clearflow.preview"):
            resolver.activate(_request())
        assert resolver.affected.is_empty
        assert isinstance(resolver.last_error, PreviewUnavailableError)
        assert "Dry run unavailable" in caplog.text

    def test_unexpected_failure_degrades_to_empty(self, resolver, service):
        service.fail_next("dry_run_clear", RuntimeError("socket closed"))
        resolver.activate(_request())
        assert resolver.affected.is_empty
        assert isinstance(resolver.last_error, RuntimeError)

    def test_success_clears_last_error(self, resolver, service):
        service.fail_next("dry_run_clear", PreviewUnavailableError("dry_run_clear", "down"))
        resolver.activate(_request())
        resolver.refresh()
        assert resolver.last_error is None
        assert resolver.affected.total_entries == 2


class TestResolverPolling:
    """Tests for auto-refresh while instances are pending."""

    def test_polls_while_pending(self, resolver, service, scheduler, ti):
        service.add_instance(ti("load", state="queued"))
        resolver.activate(_request())
        assert resolver.is_polling
        assert scheduler.pending == 1

        scheduler.advance(3000)
        assert resolver.fetch_count == 2
        assert scheduler.pending == 1

    def test_stops_polling_when_terminal(self, resolver, service, scheduler, ti):
        service.add_instance(ti("load", state="running"))
        resolver.activate(_request())
        service.add_instance(ti("load", state="success"))

        scheduler.advance(3000)
        assert resolver.fetch_count == 2
        assert not resolver.is_polling
        assert scheduler.pending == 0

        scheduler.advance(10_000)
        assert resolver.fetch_count == 2

    def test_no_polling_when_terminal(self, resolver, scheduler):
        resolver.activate(_request())
        assert not resolver.is_polling
        assert scheduler.pending == 0

    def test_deactivate_cancels_polling(self, resolver, service, scheduler, ti):
        service.add_instance(ti("load", state="scheduled"))
        resolver.activate(_request())
        resolver.deactivate()
        assert scheduler.pending == 0
        scheduler.advance(3000)
        assert resolver.fetch_count == 1

    def test_request_change_restarts_poll(self, resolver, service, scheduler, ti):
        service.add_instance(ti("load", state="queued"))
        resolver.activate(_request())
        scheduler.advance(2000)
        resolver.update(_request(include_upstream=True))
        assert scheduler.pending == 1
        scheduler.advance(2000)
        assert resolver.fetch_count == 2
        scheduler.advance(1000)
        assert resolver.fetch_count == 3


class TestResolverStaleResults:
    """Tests for discarding superseded dry runs."""

    def test_superseded_result_discarded(self, service, deferred_executor, scheduler):
        resolver = DryRunPreviewResolver(service, deferred_executor, scheduler)
        seen = []
        resolver.subscribe(seen.append)

        resolver.activate(_request())
        resolver.update(_request(include_downstream=False))
        assert resolver.is_fetching
        assert deferred_executor.queued == 2

        deferred_executor.run_pending()
        assert [r.total_entries for r in seen] == [1]
        assert resolver.affected.total_entries == 1

    def test_result_after_deactivate_discarded(self, service, deferred_executor, scheduler):
        resolver = DryRunPreviewResolver(service, deferred_executor, scheduler)
        resolver.activate(_request())
        resolver.deactivate()
        deferred_executor.run_pending()
        assert resolver.affected.is_empty
        assert not resolver.is_fetching

    def test_change_resets_to_empty_until_result(self, service, deferred_executor, scheduler):
        resolver = DryRunPreviewResolver(service, deferred_executor, scheduler)
        resolver.activate(_request())
        deferred_executor.run_pending()
        assert resolver.affected.total_entries == 2

        resolver.update(_request(include_upstream=True))
        assert resolver.affected.is_empty
        deferred_executor.run_pending()
        assert resolver.affected.total_entries == 3
