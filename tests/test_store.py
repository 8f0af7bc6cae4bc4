from datetime import timedelta

from railci.dsl import job, sh, wf
from railci.model import JobStatus, RunStatus
from railci.store import RunStore
from railci.trigger import admit

from conftest import pull_request, push

WORKFLOW = wf("test", job("a", sh("a", "true")), job("b", sh("b", "true")))


def test_save_and_read_back():
    store = RunStore("sqlite:///:memory:")
    run = admit(pull_request(head="feature", sha="cafe"), WORKFLOW)
    run.mark_running()
    run.set_job_status("a", JobStatus.RUNNING)
    store.save(run)

    rec = store.get(run.id)
    assert rec.status == "running"
    assert rec.ref == "feature"
    assert rec.target_ref == "main"
    assert rec.head_sha == "cafe"
    assert [(j.name, j.status) for j in store.jobs(run.id)] == [("a", "running"), ("b", "pending")]

    run.set_job_status("a", JobStatus.FAILED, reason="boom")
    store.save(run)
    assert store.jobs(run.id)[0].reason == "boom"
    store.close()


def test_list_runs_newest_first_and_by_key():
    store = RunStore("sqlite:///:memory:")
    older = admit(push("main"), WORKFLOW)
    newer = admit(push("main"), WORKFLOW)
    newer.created_at = older.created_at + timedelta(seconds=5)
    other = admit(pull_request(head="feature"), WORKFLOW)
    for r in (older, newer, other):
        store.save(r)

    assert [r.id for r in store.list_runs(concurrency_key="test-main")] == [newer.id, older.id]
    assert len(store.list_runs(limit=2)) == 2
    store.close()


def test_load_active_resets_unfinished_jobs(tmp_path):
    url = f"sqlite:///{tmp_path}/history.db"
    store = RunStore(url)
    run = admit(push("main"), WORKFLOW)
    run.mark_running()
    run.set_job_status("a", JobStatus.RUNNING)
    run.set_job_status("a", JobStatus.SUCCEEDED)
    run.set_job_status("b", JobStatus.RUNNING)
    store.save(run)

    done = admit(push("main"), WORKFLOW)
    done.cancel()
    store.save(done)
    store.close()

    reopened = RunStore(url)
    active = reopened.load_active(WORKFLOW)
    reopened.close()

    assert [r.id for r in active] == [run.id]
    loaded = active[0]
    assert loaded.status is RunStatus.RUNNING
    assert loaded.jobs["a"].status is JobStatus.SUCCEEDED
    assert loaded.jobs["b"].status is JobStatus.PENDING
    assert loaded.created_at.tzinfo is not None
