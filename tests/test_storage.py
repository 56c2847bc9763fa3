"""Tests for the run, workflow and event stores."""

from datetime import datetime, timedelta

import pytest

from flowengine.core.event_store import EventStore
from flowengine.core.exceptions import NotFoundError, RunStateError, WorkflowValidationError
from flowengine.core.run_store import RunStore
from flowengine.core.workflow_manager import WorkflowManager
from flowengine.models.core import RunStatus, RunSummary, WorkflowDefinition, WorkflowStatus
from flowengine.storage.models import WorkflowEventModel, WorkflowRunModel

from .conftest import make_node, make_result


@pytest.fixture
def run_store(temp_db):
    return RunStore(session_factory=temp_db)


@pytest.fixture
def workflow_manager(temp_db):
    return WorkflowManager(session_factory=temp_db)


@pytest.fixture
def event_store(temp_db):
    return EventStore(session_factory=temp_db)


def sample_definition(name="Onboarding"):
    return WorkflowDefinition(name=name, nodes=[
        make_node("trigger", "Trigger", "trigger", triggerType="manual"),
        make_node("http", "Fetch", actionType="http",
                  config={"inputMapping": {"uri": "https://api.test", "method": "GET"}}),
    ])


class TestRunStore:

    def test_create_run_starts_running(self, run_store):
        run = run_store.create_run("wf-1", [{"id": "trigger"}], {"x": 1})

        assert run.status == RunStatus.RUNNING
        assert run.input == {"x": 1}
        assert run.nodes_snapshot == [{"id": "trigger"}]
        assert run.results == []
        assert run_store.get_run(run.id).workflow_id == "wf-1"

    def test_create_run_with_explicit_id(self, run_store):
        run = run_store.create_run("wf-1", [], run_id="run-42")
        assert run.id == "run-42"

    def test_update_writes_terminal_state(self, run_store):
        run = run_store.create_run("wf-1", [])
        results = [make_result("a", "A", {"v": 1}), make_result("b", "B", None, success=False)]
        completed_at = datetime.utcnow()

        run_store.update(
            run.id,
            RunStatus.FAILED,
            [result.to_record() for result in results],
            RunSummary.from_results(results),
            completed_at,
            12.5,
            error="B broke",
        )

        stored = run_store.get_run(run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.summary.total_nodes == 2
        assert stored.summary.success_rate == 50.0
        assert stored.execution_time == 12.5
        assert stored.error == "B broke"
        assert stored.results[0]["message"] == "A completed successfully"

    def test_update_refuses_non_terminal_status(self, run_store):
        run = run_store.create_run("wf-1", [])
        with pytest.raises(RunStateError):
            run_store.update(run.id, RunStatus.RUNNING, [], RunSummary(), datetime.utcnow(), 1.0)

    def test_update_refuses_finished_run(self, run_store):
        run = run_store.create_run("wf-1", [])
        run_store.update(run.id, RunStatus.COMPLETED, [], RunSummary(), datetime.utcnow(), 1.0)

        with pytest.raises(RunStateError):
            run_store.update(run.id, RunStatus.FAILED, [], RunSummary(), datetime.utcnow(), 1.0)

    def test_update_unknown_run(self, run_store):
        with pytest.raises(NotFoundError):
            run_store.update("missing", RunStatus.COMPLETED, [], RunSummary(), datetime.utcnow(), 1.0)

    def test_get_unknown_run(self, run_store):
        with pytest.raises(NotFoundError):
            run_store.get_run("missing")

    def test_list_runs_filters_by_workflow(self, run_store):
        run_store.create_run("wf-1", [])
        run_store.create_run("wf-1", [])
        run_store.create_run("wf-2", [])

        assert len(run_store.list_runs("wf-1")) == 2
        assert len(run_store.list_runs()) == 3
        assert len(run_store.list_runs(limit=1)) == 1

    def test_reconcile_stale_runs(self, run_store, temp_db):
        stale = run_store.create_run("wf-1", [])
        fresh = run_store.create_run("wf-1", [])
        finished = run_store.create_run("wf-1", [])
        run_store.update(finished.id, RunStatus.COMPLETED, [], RunSummary(), datetime.utcnow(), 1.0)

        db = temp_db()
        try:
            for run_id in (stale.id, finished.id):
                run_model = db.get(WorkflowRunModel, run_id)
                run_model.started_at = datetime.utcnow() - timedelta(hours=2)
                run_model.last_progress_at = run_model.started_at
            db.commit()
        finally:
            db.close()

        reconciled = run_store.reconcile_stale_runs(3600)

        assert reconciled == [stale.id]
        stale_run = run_store.get_run(stale.id)
        assert stale_run.status == RunStatus.FAILED
        assert "reconciliation" in stale_run.error
        assert run_store.get_run(fresh.id).status == RunStatus.RUNNING
        assert run_store.get_run(finished.id).status == RunStatus.COMPLETED

    def _age_run(self, temp_db, run_id, started_hours_ago, progress_minutes_ago):
        db = temp_db()
        try:
            run_model = db.get(WorkflowRunModel, run_id)
            run_model.started_at = datetime.utcnow() - timedelta(hours=started_hours_ago)
            run_model.last_progress_at = datetime.utcnow() - timedelta(minutes=progress_minutes_ago)
            db.commit()
        finally:
            db.close()

    def test_reconcile_measures_from_last_progress(self, run_store, temp_db):
        long_running = run_store.create_run("wf-1", [])
        self._age_run(temp_db, long_running.id, started_hours_ago=3, progress_minutes_ago=1)

        assert run_store.reconcile_stale_runs(3600) == []
        assert run_store.get_run(long_running.id).status == RunStatus.RUNNING

    def test_reconcile_skips_active_runs(self, run_store, temp_db):
        active = run_store.create_run("wf-1", [])
        abandoned = run_store.create_run("wf-1", [])
        for run_id in (active.id, abandoned.id):
            self._age_run(temp_db, run_id, started_hours_ago=3, progress_minutes_ago=120)

        reconciled = run_store.reconcile_stale_runs(3600, active_run_ids={active.id})

        assert reconciled == [abandoned.id]
        assert run_store.get_run(active.id).status == RunStatus.RUNNING

    def test_create_run_sets_progress_time(self, run_store):
        run = run_store.create_run("wf-1", [])
        assert run.last_progress_at == run.started_at

    def test_record_progress_stores_partial_results(self, run_store):
        run = run_store.create_run("wf-1", [])
        results = [make_result("a", "A", {"v": 1})]

        run_store.record_progress(run.id, [result.to_record() for result in results], RunSummary.from_results(results))

        stored = run_store.get_run(run.id)
        assert stored.status == RunStatus.RUNNING
        assert [record["nodeId"] for record in stored.results] == ["a"]
        assert stored.summary.successful_nodes == 1
        assert stored.last_progress_at >= run.last_progress_at

    def test_record_progress_refuses_finished_run(self, run_store):
        run = run_store.create_run("wf-1", [])
        run_store.update(run.id, RunStatus.COMPLETED, [], RunSummary(), datetime.utcnow(), 1.0)

        with pytest.raises(RunStateError):
            run_store.record_progress(run.id, [], RunSummary())

    def test_record_progress_unknown_run(self, run_store):
        with pytest.raises(NotFoundError):
            run_store.record_progress("missing", [], RunSummary())


class TestWorkflowManager:

    def test_create_and_get_workflow(self, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        definition = workflow_manager.get_workflow(workflow_id)

        assert definition.name == "Onboarding"
        assert [node.id for node in definition.nodes] == ["trigger", "http"]
        assert definition.nodes[1].action_type == "http"
        assert definition.nodes[1].input_mapping["method"] == "GET"

    def test_create_rejects_invalid_node_list(self, workflow_manager):
        definition = WorkflowDefinition.model_construct(name="Broken", nodes=[
            make_node("a", "A", actionType="http"),
            make_node("t", "Trigger", "trigger"),
        ])

        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.create_workflow(definition)
        assert "The trigger node must be the first node" in exc_info.value.validation_errors

    def test_list_workflows(self, workflow_manager):
        workflow_manager.create_workflow(sample_definition("First"))
        workflow_manager.create_workflow(sample_definition("Second"))

        summaries = workflow_manager.list_workflows()

        assert {summary.name for summary in summaries} == {"First", "Second"}
        assert all(summary.node_count == 2 for summary in summaries)

    def test_mark_run_sets_last_run(self, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        workflow_manager.mark_run(workflow_id)

        assert workflow_manager.list_workflows()[0].last_run_at is not None

    def test_delete_workflow(self, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        assert workflow_manager.delete_workflow(workflow_id) is True
        assert workflow_manager.delete_workflow(workflow_id) is False
        with pytest.raises(NotFoundError):
            workflow_manager.get_workflow(workflow_id)

    def test_workflows_start_inactive(self, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        assert workflow_manager.get_workflow(workflow_id).status == WorkflowStatus.INACTIVE
        assert workflow_manager.list_workflows()[0].status == WorkflowStatus.INACTIVE

    def test_set_status(self, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        workflow_manager.set_status(workflow_id, WorkflowStatus.ACTIVE)
        assert workflow_manager.get_workflow(workflow_id).status == WorkflowStatus.ACTIVE

        workflow_manager.set_status(workflow_id, WorkflowStatus.INACTIVE)
        assert workflow_manager.get_workflow(workflow_id).status == WorkflowStatus.INACTIVE

    def test_set_status_unknown_workflow(self, workflow_manager):
        with pytest.raises(NotFoundError):
            workflow_manager.set_status("missing", WorkflowStatus.ACTIVE)


class TestEventStore:

    def test_record_and_link_event(self, event_store, workflow_manager, run_store):
        workflow_id = workflow_manager.create_workflow(sample_definition())

        event = event_store.record_event(workflow_id, {"data": {"email": "ada@example.com"}})
        assert event.processed is False
        assert event.run_id is None

        run = run_store.create_run(workflow_id, [])
        event_store.link_run(event.id, run.id)

        stored = event_store.list_events(workflow_id)[0]
        assert stored.id == event.id
        assert stored.processed is True
        assert stored.run_id == run.id
        assert stored.event_data == {"data": {"email": "ada@example.com"}}

    def test_list_events_newest_first(self, event_store, workflow_manager, temp_db):
        workflow_id = workflow_manager.create_workflow(sample_definition())
        older = event_store.record_event(workflow_id, {"n": 1})
        newer = event_store.record_event(workflow_id, {"n": 2})

        db = temp_db()
        try:
            db.get(WorkflowEventModel, older.id).received_at = datetime.utcnow() - timedelta(minutes=5)
            db.commit()
        finally:
            db.close()

        assert [event.id for event in event_store.list_events(workflow_id)] == [newer.id, older.id]
        assert len(event_store.list_events(workflow_id, limit=1)) == 1
        assert event_store.list_events("other-workflow") == []

    def test_link_unknown_event(self, event_store):
        with pytest.raises(NotFoundError):
            event_store.link_run("missing", "run-1")

    def test_deleting_workflow_removes_events(self, event_store, workflow_manager):
        workflow_id = workflow_manager.create_workflow(sample_definition())
        event_store.record_event(workflow_id, {"n": 1})

        workflow_manager.delete_workflow(workflow_id)

        assert event_store.list_events(workflow_id) == []
