import threading
import time

from railci.dsl import job, sh, wf
from railci.errors import StepFailure
from railci.model import Event, EventType, JobStatus, RunStatus, StepKind
from railci.pipelines.zksync import workflow as zksync_workflow
from railci.store import RunStore
from railci.trigger import Rejected, admit

from conftest import fake_handlers, pull_request, push, wait_until


def _succeed(ctx, step):
    ctx.check(step)


def test_push_main_runs_all_eight_jobs(make_orchestrator):
    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(_succeed))

    run = orch.dispatch(push("main"), timeout=10)

    assert run.status is RunStatus.SUCCEEDED
    assert len(run.jobs) == 8
    assert all(i.status is JobStatus.SUCCEEDED for i in run.jobs.values())
    assert run.concurrency_key == "test-main"


def test_push_to_unlisted_branch_has_no_side_effects(make_orchestrator):
    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(_succeed), with_store=True)

    result = orch.submit(push("feature/x"))

    assert isinstance(result, Rejected)
    assert orch.runs() == []
    assert orch.registry.active() == []
    assert orch.store.list_runs() == []


def test_new_push_supersedes_run_on_same_ref(make_orchestrator):
    gate = threading.Event()

    def blocking(ctx, step):
        while not gate.is_set():
            ctx.check(step)
            time.sleep(0.01)

    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(blocking))

    first = orch.submit(push("main", sha="1111"))
    assert wait_until(lambda: any(i.status is JobStatus.RUNNING for i in first.jobs.values()))

    second = orch.submit(push("main", sha="2222"))
    # the old run is cancelled before the new one gets going
    assert first.status is RunStatus.CANCELLED
    assert orch.registry.holder("test-main") is second

    assert first.wait(10)
    assert all(i.status is JobStatus.CANCELLED for i in first.jobs.values())

    gate.set()
    assert second.wait(10)
    assert second.status is RunStatus.SUCCEEDED


def test_pull_request_runs_do_not_cancel_main(make_orchestrator):
    gate = threading.Event()

    def blocking(ctx, step):
        while not gate.is_set():
            ctx.check(step)
            time.sleep(0.01)

    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(blocking))
    main = orch.submit(push("main"))
    pr = orch.submit(pull_request(head="feature"))

    assert main.status is RunStatus.RUNNING
    assert pr.concurrency_key == "test-feature"

    gate.set()
    assert main.wait(10) and pr.wait(10)
    assert main.status is RunStatus.SUCCEEDED
    assert pr.status is RunStatus.SUCCEEDED


def test_fmt_failure_does_not_affect_clippy(make_orchestrator):
    def handler(ctx, step):
        if step.run == "cargo fmt --all --check":
            raise StepFailure(job=ctx.job_name, step=step.name, cmd=step.run, exit_code=1)

    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(handler))
    run = orch.dispatch(push("main"), timeout=10)

    assert run.status is RunStatus.FAILED
    assert run.jobs["fmt"].status is JobStatus.FAILED
    assert run.jobs["clippy"].status is JobStatus.SUCCEEDED
    assert sum(i.status is JobStatus.SUCCEEDED for i in run.jobs.values()) == 7


def test_timed_out_job_fails_the_run(make_orchestrator):
    workflow = wf(
        "test",
        job("quick", sh("ok", "true")),
        job("slow", sh("hang", "sleep 30"), timeout_minutes=0.01),
    )
    orch = make_orchestrator(workflow)

    run = orch.dispatch(push("main"), timeout=20)

    assert run.jobs["slow"].status is JobStatus.TIMED_OUT
    assert run.jobs["quick"].status is JobStatus.SUCCEEDED
    assert run.status is RunStatus.FAILED


def test_manual_cancel(make_orchestrator):
    orch = make_orchestrator(wf("test", job("a", sh("hang", "sleep 30"))))

    run = orch.submit(push("main"))
    assert wait_until(lambda: run.jobs["a"].status is JobStatus.RUNNING)
    assert orch.cancel(run.id)

    assert run.wait(10)
    assert run.status is RunStatus.CANCELLED
    assert run.jobs["a"].status is JobStatus.CANCELLED
    assert orch.cancel(run.id) is False


def test_history_is_persisted(make_orchestrator):
    orch = make_orchestrator(wf("test", job("a", sh("ok", "true"))), with_store=True)

    run = orch.dispatch(push("main"), timeout=10)

    rec = orch.store.get(run.id)
    assert rec.status == "succeeded"
    assert [(j.name, j.status) for j in orch.store.jobs(run.id)] == [("a", "succeeded")]


def test_restart_supersedes_runs_left_active(make_orchestrator, settings):
    workflow = wf("test", job("a", sh("ok", "true")))
    gate = threading.Event()

    def blocking(ctx, step):
        while not gate.is_set():
            ctx.check(step)
            time.sleep(0.01)

    first = make_orchestrator(workflow, with_store=True, handlers=fake_handlers(blocking))
    stale = first.submit(push("main"))
    assert wait_until(lambda: first.store.get(stale.id).status == "running")

    # a second process over the same history sees the run as active
    second = make_orchestrator(workflow, with_store=True, handlers=fake_handlers(_succeed))
    assert second.registry.holder("test-main").id == stale.id

    fresh = second.dispatch(push("main"), timeout=10)
    assert fresh.status is RunStatus.SUCCEEDED
    assert second.store.get(stale.id).status == "cancelled"
    gate.set()


def test_zk_tests_see_the_node_endpoint(make_orchestrator):
    seen = {}

    def start_node(ctx, step):
        ctx.inject("TEST_MAINNET_URL", "http://127.0.0.1:18011")

    def run_command(ctx, step):
        if ctx.job_name == "zk-cargo-test":
            seen[step.run] = ctx.step_env(step).get("TEST_MAINNET_URL")

    handlers = fake_handlers(_succeed)
    handlers[StepKind.EXTERNAL_SERVICE] = start_node
    handlers[StepKind.RUN_COMMAND] = run_command
    orch = make_orchestrator(zksync_workflow(), handlers=handlers)

    run = orch.dispatch(push("main"), timeout=10)

    assert run.jobs["zk-cargo-test"].status is JobStatus.SUCCEEDED
    assert seen == {"cargo test zk": "http://127.0.0.1:18011"}


def test_restart_finalizes_runs_whose_jobs_all_ended(make_orchestrator, settings):
    workflow = wf("test", job("a", sh("ok", "true")), job("b", sh("ok", "true")))
    store = RunStore(settings.database_url)
    done = admit(push("main"), workflow)
    done.mark_running()
    for name in done.jobs:
        done.set_job_status(name, JobStatus.SUCCEEDED)
    # the process died before the run itself was finalized
    store.save(done)
    store.close()

    orch = make_orchestrator(workflow, with_store=True)

    assert orch.store.get(done.id).status == "succeeded"
    assert orch.get(done.id).finished.is_set()
    assert orch.registry.holder("test-main") is None


class _SlowLock:
    """Lock that stalls the calling thread before acquiring, to reorder writers."""

    def __init__(self, delay, thread):
        self._inner = threading.Lock()
        self._delay = delay
        self._thread = thread

    def __enter__(self):
        if threading.current_thread() is self._thread:
            time.sleep(self._delay)
        self._inner.acquire()
        return self

    def __exit__(self, *exc):
        self._inner.release()


def test_history_keeps_the_latest_status_under_concurrent_saves(make_orchestrator):
    orch = make_orchestrator(wf("test", job("a", sh("ok", "true"))), with_store=True, handlers=fake_handlers(_succeed))
    # the submitting thread saves last, after the job thread has finalized the run
    orch.store._lock = _SlowLock(0.5, threading.current_thread())

    run = orch.submit(push("main"))
    assert run.wait(10)

    assert run.status is RunStatus.SUCCEEDED
    assert orch.store.get(run.id).status == "succeeded"
    assert [(j.name, j.status) for j in orch.store.jobs(run.id)] == [("a", "succeeded")]


def test_pull_request_without_head_branch_stays_out_of_main_group(make_orchestrator):
    gate = threading.Event()

    def blocking(ctx, step):
        while not gate.is_set():
            ctx.check(step)
            time.sleep(0.01)

    orch = make_orchestrator(zksync_workflow(), handlers=fake_handlers(blocking))
    main = orch.submit(push("main"))
    pr = orch.submit(Event(EventType.PULL_REQUEST, target_ref="main", commit_sha="beef"))

    assert pr.concurrency_key == "test-pull/beef"
    assert main.status is RunStatus.RUNNING
    assert orch.registry.holder("test-main") is main

    gate.set()
    assert main.wait(10) and pr.wait(10)
    assert main.status is RunStatus.SUCCEEDED
