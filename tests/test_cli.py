import textwrap

import pytest
from click.testing import CliRunner

from railci.cli import cli
from railci.store import RunStore

WORKFLOW_SRC = textwrap.dedent(
    """
    from railci import job, sh, wf


    def workflow():
        return wf(
            "ci",
            job("build", sh("compile", "true")),
            job("test", sh("unit", "{test_cmd}"), needs=["build"]),
        )
    """
)


@pytest.fixture
def state(tmp_path, monkeypatch):
    monkeypatch.setenv("RAILCI_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("RAILCI_RUNNERS", "*=4")
    monkeypatch.setenv("RAILCI_CANCEL_GRACE", "1")
    monkeypatch.delenv("RAILCI_DATABASE_URL", raising=False)
    monkeypatch.delenv("RAILCI_WORKFLOW", raising=False)
    return tmp_path / "state"


def _workflow_file(tmp_path, test_cmd="true"):
    path = tmp_path / "ci_workflow.py"
    path.write_text(WORKFLOW_SRC.format(test_cmd=test_cmd))
    return str(path)


def test_plan_shows_stages(tmp_path, state):
    result = CliRunner().invoke(cli, ["plan", "--workflow", _workflow_file(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "Workflow: ci" in result.output
    assert "Stage 1" in result.output and "Stage 2" in result.output
    assert "(needs: build)" in result.output


def test_run_success_exits_zero_and_records_history(tmp_path, state):
    wf_file = _workflow_file(tmp_path)
    result = CliRunner().invoke(cli, ["run", "--workflow", wf_file, "--ref", "main", "--sha", "abc123"])

    assert result.exit_code == 0, result.output
    assert "RUN: SUCCEEDED" in result.output

    store = RunStore(f"sqlite:///{state}/history.db")
    records = store.list_runs()
    store.close()
    assert len(records) == 1 and records[0].status == "succeeded"

    listing = CliRunner().invoke(cli, ["runs"])
    assert records[0].id in listing.output

    shown = CliRunner().invoke(cli, ["show", records[0].id])
    assert shown.exit_code == 0
    assert "test: SUCCEEDED" in shown.output


def test_run_failure_exits_one(tmp_path, state):
    wf_file = _workflow_file(tmp_path, test_cmd="exit 1")
    result = CliRunner().invoke(cli, ["run", "--workflow", wf_file, "--ref", "main", "--sha", "abc123"])

    assert result.exit_code == 1
    assert "RUN: FAILED" in result.output


def test_rejected_event_exits_two(tmp_path, state):
    wf_file = _workflow_file(tmp_path)
    result = CliRunner().invoke(cli, ["run", "--workflow", wf_file, "--ref", "feature/x", "--sha", "abc123"])

    assert result.exit_code == 2
    assert "EVENT IGNORED" in result.output


def test_pull_request_against_main_is_admitted(tmp_path, state):
    wf_file = _workflow_file(tmp_path)
    result = CliRunner().invoke(
        cli,
        ["run", "--workflow", wf_file, "--event", "pull_request", "--ref", "feature/x", "--base", "main", "--sha", "abc"],
    )

    assert result.exit_code == 0, result.output
    assert "Concurrency group: ci-feature/x" in result.output


def test_missing_workflow_file(tmp_path, state):
    result = CliRunner().invoke(cli, ["plan", "--workflow", str(tmp_path / "nope.py")])
    assert result.exit_code == 1


def test_show_unknown_run(state):
    result = CliRunner().invoke(cli, ["show", "does-not-exist"])
    assert result.exit_code == 1
