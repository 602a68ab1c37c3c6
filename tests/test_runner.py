from __future__ import annotations

import pytest

from pagesflow import job, on_push, repository_is, sh, uses, wf
from pagesflow.groups import RunHandle
from pagesflow.runner import load_workflow, plan, run_workflow

from conftest import CANONICAL, push


def _run(workflow, event, tmp_path, settings, **kwargs):
    return run_workflow(workflow, event, workspace=tmp_path, settings=settings, **kwargs)


def test_failed_job_skips_dependents(tmp_path, settings):
    workflow = wf(
        job("build", sh("Build", "exit 3")),
        job("deploy", sh("Deploy", "true"), needs=["build"]),
    )
    report = _run(workflow, push(), tmp_path, settings)
    assert report.status == "failure"
    assert report.failed
    assert report.jobs == {"build": "failed", "deploy": "skipped(needs)"}


def test_guard_skips_job_and_its_dependents(tmp_path, settings):
    not_a_fork = repository_is(CANONICAL)
    workflow = wf(
        job("build", sh("Build", "true"), if_=not_a_fork),
        job("deploy", sh("Deploy", "true"), needs=["build"]),
    )
    report = _run(workflow, push(repository="someone/pixi"), tmp_path, settings)
    assert report.status == "success"
    assert report.jobs == {"build": "skipped(guard)", "deploy": "skipped(needs)"}


def test_not_triggered(tmp_path, settings):
    workflow = wf(job("build", sh("Build", "true")), on=[on_push(branches=["main"])])
    report = _run(workflow, push(ref="refs/heads/dev"), tmp_path, settings)
    assert report.status == "not_triggered"
    assert report.jobs == {}
    assert report.to_dict()["trigger"]["triggered"] is False


def test_steps_see_event_environment_and_job_env(tmp_path, settings):
    workflow = wf(
        job(
            "check",
            sh("repo", 'test "$GITHUB_REPOSITORY" = prefix-dev/pixi'),
            sh("ref", 'test "$GITHUB_REF_NAME" = main'),
            sh("job env", 'test "$SITE_DIR" = site && test "$GITHUB_JOB" = check'),
            env={"SITE_DIR": "site"},
        )
    )
    report = _run(workflow, push(), tmp_path, settings)
    assert report.jobs == {"check": "ok"}


def test_step_outputs_are_collected(tmp_path, settings):
    workflow = wf(job("build", uses("Setup Pages", "configure-pages", id="pages")))
    report = _run(workflow, push(), tmp_path, settings)
    assert report.outputs["build"]["pages.base_url"] == "https://prefix-dev.github.io/pixi/"
    assert report.outputs["build"]["pages.base_path"] == "/pixi"


def test_fail_fast_skips_jobs_not_yet_started(tmp_path, settings):
    workflow = wf(
        job("broken", sh("fail", "false")),
        job("slow", sh("wait", "sleep 0.5")),
        job("after", sh("noop", "true"), needs=["slow"]),
    )
    report = _run(workflow, push(), tmp_path, settings, fail_fast=True, max_workers=2)
    assert report.jobs["broken"] == "failed"
    assert report.jobs["slow"] == "ok"
    assert report.jobs["after"] == "skipped(fail-fast)"


def test_already_cancelled_handle_cancels_every_job(tmp_path, settings):
    handle = RunHandle("r1")
    handle.cancel()
    workflow = wf(job("build", sh("Build", "touch ran")), job("deploy", sh("Deploy", "true"), needs=["build"]))
    report = _run(workflow, push(), tmp_path, settings, handle=handle, run_id="r1")
    assert report.status == "cancelled"
    assert report.jobs == {"build": "cancelled", "deploy": "cancelled"}
    assert not (tmp_path / "ran").exists()


def test_unknown_action_is_rejected_before_running(tmp_path, settings):
    workflow = wf(job("build", uses("Nope", "no-such-action")))
    with pytest.raises(ValueError, match="no-such-action"):
        _run(workflow, push(), tmp_path, settings)


def test_load_workflow_from_jobs_list(tmp_path):
    path = tmp_path / "mini_workflow.py"
    path.write_text(
        "from pagesflow import job, sh\n"
        "JOBS = [job('a', sh('a', 'true')), job('b', sh('b', 'true'), needs=['a'])]\n",
        encoding="utf-8",
    )
    workflow = load_workflow(path)
    assert workflow.name == "mini_workflow"
    assert [j.name for j in workflow.jobs] == ["a", "b"]


def test_load_workflow_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "missing.py")

    bad = tmp_path / "bad_workflow.py"
    bad.write_text("WORKFLOW = 42\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_workflow(bad)


def test_plan_does_not_execute(tmp_path):
    workflow = wf(
        job("build", sh("Build", f"touch {tmp_path / 'ran'}"), if_=repository_is(CANONICAL)),
        job("deploy", sh("Deploy", "true"), needs=["build"]),
    )
    result = plan(workflow, push())
    assert result.jobs == {"build": "run", "deploy": "run"}
    assert result.guards == {"build": "github.repository == 'prefix-dev/pixi'", "deploy": "always"}
    assert not (tmp_path / "ran").exists()
