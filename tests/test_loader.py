import pytest

from railci.errors import WorkflowError
from railci.loader import find_workflow_files, load_workflow
from railci.model import Workflow


def test_load_workflow_function(tmp_path):
    path = tmp_path / "ci_workflow.py"
    path.write_text(
        "from railci import job, sh, wf\n"
        "def workflow():\n"
        "    return wf('ci', job('a', sh('a', 'true')), branches=('main', 'release/*'))\n"
    )
    loaded = load_workflow(path)
    assert isinstance(loaded, Workflow)
    assert loaded.name == "ci"
    assert loaded.branches == ("main", "release/*")


def test_bare_job_list_named_after_file(tmp_path):
    path = tmp_path / "nightly_workflow.py"
    path.write_text("from railci import job, sh\nJOBS = [job('a', sh('a', 'true'))]\n")
    loaded = load_workflow(path)
    assert loaded.name == "nightly_workflow"
    assert [j.name for j in loaded.jobs] == ["a"]


def test_module_path():
    loaded = load_workflow("railci.pipelines.zksync")
    assert loaded.name == "test"


def test_invalid_definition(tmp_path):
    path = tmp_path / "bad_workflow.py"
    path.write_text("JOBS = ['not a job']\n")
    with pytest.raises(WorkflowError):
        load_workflow(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "missing.py")


def test_find_workflow_files_prefers_default(tmp_path):
    (tmp_path / "zz_workflow.py").write_text("")
    (tmp_path / "railci_workflow.py").write_text("")
    (tmp_path / "unrelated.py").write_text("")
    assert [p.name for p in find_workflow_files(tmp_path)] == ["railci_workflow.py", "zz_workflow.py"]
