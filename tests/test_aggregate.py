from railci.aggregate import finalize, passed
from railci.dsl import job, sh, wf
from railci.model import JobStatus, RunStatus
from railci.trigger import admit

from conftest import push

WORKFLOW = wf(
    "test",
    job("clippy", sh("clippy", "true")),
    job("fmt", sh("fmt", "true")),
    job("docs", sh("docs", "true")),
)


def _run(**statuses):
    run = admit(push(), WORKFLOW)
    run.mark_running()
    for name, status in statuses.items():
        run.set_job_status(name, JobStatus.RUNNING)
        run.set_job_status(name, status)
    return run


def test_all_succeeded():
    run = _run(clippy=JobStatus.SUCCEEDED, fmt=JobStatus.SUCCEEDED, docs=JobStatus.SUCCEEDED)
    assert finalize(run) is RunStatus.SUCCEEDED
    assert passed(run)
    assert run.ended_at is not None


def test_one_failure_fails_the_run():
    run = _run(clippy=JobStatus.SUCCEEDED, fmt=JobStatus.FAILED, docs=JobStatus.SUCCEEDED)
    assert finalize(run) is RunStatus.FAILED
    assert not passed(run)
    # other jobs keep their own outcome
    assert run.jobs["clippy"].status is JobStatus.SUCCEEDED


def test_timeout_counts_as_failure():
    run = _run(clippy=JobStatus.SUCCEEDED, fmt=JobStatus.TIMED_OUT, docs=JobStatus.SUCCEEDED)
    assert finalize(run) is RunStatus.FAILED


def test_superseded_run_stays_cancelled():
    run = _run(clippy=JobStatus.FAILED)
    run.cancel()
    assert finalize(run) is RunStatus.CANCELLED
    assert not passed(run)


def test_terminal_status_is_not_recomputed():
    run = _run(clippy=JobStatus.FAILED, fmt=JobStatus.SUCCEEDED, docs=JobStatus.SUCCEEDED)
    assert finalize(run) is RunStatus.FAILED
    assert run.set_job_status("clippy", JobStatus.SUCCEEDED) is False
    assert finalize(run) is RunStatus.FAILED
