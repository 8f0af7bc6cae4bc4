import threading

import pytest

from railci.dsl import job, sh, wf
from railci.errors import WorkflowError
from railci.graph import JobGraph, build_dag, topo_levels, validate_workflow
from railci.model import JobStatus
from railci.trigger import admit

from conftest import push


def _job(name, needs=None):
    return job(name, sh(name, "true"), needs=needs)


def test_topo_levels_groups_independent_jobs():
    adj, indeg = build_dag([_job("build"), _job("lint"), _job("test", needs=["build"])])
    assert topo_levels(adj, indeg) == [["build", "lint"], ["test"]]


def test_duplicate_names_rejected():
    with pytest.raises(WorkflowError, match="Duplicate"):
        build_dag([_job("a"), _job("a")])


def test_unknown_need_rejected():
    with pytest.raises(WorkflowError, match="missing job"):
        build_dag([_job("a", needs=["ghost"])])


def test_cycle_rejected():
    with pytest.raises(WorkflowError, match="cycle"):
        validate_workflow(wf("test", _job("a", needs=["b"]), _job("b", needs=["a"])))


def test_empty_workflow_rejected():
    with pytest.raises(WorkflowError):
        validate_workflow(wf("test"))


class _Recorder:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.started = []
        self.completed = threading.Event()
        self.lock = threading.Lock()

    def run_job(self, run, inst):
        with self.lock:
            self.started.append(inst.name)
        run.set_job_status(inst.name, JobStatus.RUNNING)
        status = JobStatus.FAILED if inst.name in self.fail else JobStatus.SUCCEEDED
        run.set_job_status(inst.name, status)

    def on_complete(self, run):
        self.completed.set()


def test_independent_jobs_all_launch():
    rec = _Recorder()
    graph = JobGraph(rec.run_job, rec.on_complete, max_workers=4)
    run = admit(push(), wf("test", _job("a"), _job("b"), _job("c")))

    launched = graph.schedule(run)
    assert rec.completed.wait(5)
    graph.shutdown()

    assert {i.name for i in launched} == {"a", "b", "c"}
    assert sorted(rec.started) == ["a", "b", "c"]
    assert all(i.status is JobStatus.SUCCEEDED for i in run.jobs.values())


def test_dependents_wait_for_needs():
    rec = _Recorder()
    graph = JobGraph(rec.run_job, rec.on_complete, max_workers=4)
    run = admit(push(), wf("test", _job("build"), _job("test", needs=["build"]), _job("deploy", needs=["test"])))

    graph.schedule(run)
    assert rec.completed.wait(5)
    graph.shutdown()

    assert rec.started == ["build", "test", "deploy"]


def test_failed_need_cancels_dependents_only():
    rec = _Recorder(fail={"build"})
    graph = JobGraph(rec.run_job, rec.on_complete, max_workers=4)
    run = admit(push(), wf("test", _job("build"), _job("lint"), _job("test", needs=["build"])))

    graph.schedule(run)
    assert rec.completed.wait(5)
    graph.shutdown()

    assert run.jobs["build"].status is JobStatus.FAILED
    assert run.jobs["lint"].status is JobStatus.SUCCEEDED
    assert run.jobs["test"].status is JobStatus.CANCELLED
    assert "build" in run.jobs["test"].reason
    assert "test" not in rec.started


def test_handler_crash_marks_job_failed():
    def boom(run, inst):
        raise RuntimeError("kaboom")

    done = threading.Event()
    graph = JobGraph(boom, lambda run: done.set(), max_workers=2)
    run = admit(push(), wf("test", _job("a")))

    graph.schedule(run)
    assert done.wait(5)
    graph.shutdown()

    assert run.jobs["a"].status is JobStatus.FAILED
    assert "kaboom" in run.jobs["a"].reason


def test_dependents_of_a_cancelled_run_are_not_launched():
    rec = _Recorder()

    def cancel_then_succeed(run, inst):
        rec.started.append(inst.name)
        run.set_job_status(inst.name, JobStatus.RUNNING)
        # the run is cancelled while build is still running, then build succeeds
        run.cancel(reason="server shutting down")
        run.set_job_status(inst.name, JobStatus.SUCCEEDED)

    graph = JobGraph(cancel_then_succeed, rec.on_complete, max_workers=2)
    run = admit(push(), wf("test", _job("build"), _job("test", needs=["build"])))

    graph.schedule(run)
    assert rec.completed.wait(5)
    graph.shutdown()

    assert rec.started == ["build"]
    assert run.jobs["test"].status is JobStatus.CANCELLED
