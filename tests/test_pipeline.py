"""End-to-end runs of the documentation pipeline with a stand-in pixi."""
from __future__ import annotations

import os
import stat

import pytest

from pagesflow import job, sh, uses, wf
from pagesflow.actions import registry
from pagesflow.runner import load_workflow, run_workflow

from conftest import pull_request, push

pytestmark = pytest.mark.skipif(os.name != "posix", reason="uses a shell script as pixi")

FAKE_PIXI = """#!/bin/sh
case "$1" in
  --version) echo "pixi 0.6.0" ;;
  install) mkdir -p .pixi/envs/default ;;
  run) mkdir -p site/guide && echo "<h1>pixi</h1>" > site/index.html && echo guide > site/guide/index.html ;;
  *) exit 2 ;;
esac
"""


@pytest.fixture
def repo(tmp_path, monkeypatch):
    ws = tmp_path / "pixi"
    (ws / "install").mkdir(parents=True)
    (ws / "install" / "install.sh").write_text("#!/bin/sh\necho install\n", encoding="utf-8")
    (ws / "install" / "install.ps1").write_text("Write-Host install\n", encoding="utf-8")
    (ws / "pixi.lock").write_text("version: 4\n", encoding="utf-8")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    pixi = bin_dir / "pixi"
    pixi.write_text(FAKE_PIXI, encoding="utf-8")
    pixi.chmod(pixi.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    # the workspace is already the checkout
    monkeypatch.setitem(registry.ACTIONS, "checkout", lambda ctx: {})
    return ws


def _published(settings):
    return settings.publish_dir / "prefix-dev.github.io" / "pixi"


def test_push_to_main_publishes_site(repo, settings, docs_workflow_path):
    report = run_workflow(
        load_workflow(docs_workflow_path),
        push(changed=["docs/index.md"]),
        workspace=repo,
        settings=settings,
        id_token_provider=lambda audience: None,
    )

    assert report.status == "success", report.jobs
    assert report.jobs == {"build": "ok", "deploy": "ok"}
    assert report.outputs["deploy"]["deployment.page_url"] == "https://prefix-dev.github.io/pixi/"

    site = _published(settings)
    assert (site / "index.html").read_text(encoding="utf-8").strip() == "<h1>pixi</h1>"
    assert (site / "guide" / "index.html").exists()
    assert (site / ".nojekyll").read_bytes() == b""
    assert (site / "install.sh").read_text(encoding="utf-8") == "#!/bin/sh\necho install\n"
    assert (site / "install.ps1").exists()


def test_pull_request_builds_without_publishing(repo, settings, docs_workflow_path):
    report = run_workflow(
        load_workflow(docs_workflow_path),
        pull_request(changed=["install/install.sh"]),
        workspace=repo,
        settings=settings,
        id_token_provider=lambda audience: None,
    )

    assert report.jobs == {"build": "ok", "deploy": "skipped(guard)"}
    assert (repo / "site" / ".nojekyll").exists()
    assert not _published(settings).exists()


def test_missing_install_script_fails_build(repo, settings, docs_workflow_path):
    (repo / "install" / "install.ps1").unlink()
    report = run_workflow(
        load_workflow(docs_workflow_path),
        push(),
        workspace=repo,
        settings=settings,
        id_token_provider=lambda audience: None,
    )

    assert report.status == "failure"
    assert report.jobs == {"build": "failed", "deploy": "skipped(needs)"}
    assert not _published(settings).exists()


def test_pixi_version_mismatch_fails_build(repo, settings):
    workflow = wf(job("build", uses("Setup pixi", "setup-env", tool="pixi", version="v0.7.0")))
    report = run_workflow(workflow, push(), workspace=repo, settings=settings)
    assert report.jobs == {"build": "failed"}


def test_deploy_requires_identity_token_permission(repo, settings):
    workflow = wf(
        job(
            "build",
            sh("Build", "mkdir -p site && echo docs > site/index.html"),
            uses("Upload artifact", "upload-pages-artifact", path="site"),
        ),
        job(
            "deploy",
            uses("Deploy", "deploy-pages"),
            needs=["build"],
            permissions={"pages": "write"},
        ),
    )
    report = run_workflow(workflow, push(), workspace=repo, settings=settings, id_token_provider=lambda a: "tok")
    assert report.jobs == {"build": "ok", "deploy": "failed"}
