from __future__ import annotations

import pytest

from pagesflow import job, uses
from pagesflow.actions import pages
from pagesflow.artifacts import ArtifactStore
from pagesflow.cache import CacheStore
from pagesflow.context import RunContext, StepContext
from pagesflow.errors import CIError
from pagesflow.groups import RunHandle
from pagesflow.hosting import (
    DirectoryHost,
    HostingError,
    HttpHost,
    make_host,
    pages_context,
    request_id_token,
)
from pagesflow.model import Event


def test_project_site_context():
    ctx = pages_context("prefix-dev/pixi")
    assert ctx.base_url == "https://prefix-dev.github.io/pixi/"
    assert ctx.origin == "https://prefix-dev.github.io"
    assert ctx.host == "prefix-dev.github.io"
    assert ctx.base_path == "/pixi"


def test_user_site_is_served_from_root():
    ctx = pages_context("Octo/octo.github.io")
    assert ctx.base_url == "https://octo.github.io/"
    assert ctx.base_path == ""


def test_custom_base_url():
    ctx = pages_context("prefix-dev/pixi", base_url="https://docs.example.com/pixi")
    assert ctx.base_url == "https://docs.example.com/pixi/"
    assert ctx.host == "docs.example.com"
    assert ctx.base_path == "/pixi"


def test_bad_repository():
    with pytest.raises(ValueError):
        pages_context("pixi")


def test_no_token_outside_ci():
    assert request_id_token("pages", environ={}) is None


def _artifact(tmp_path, run_id, files):
    site = tmp_path / f"site-{run_id}"
    site.mkdir()
    for name, text in files.items():
        (site / name).write_text(text, encoding="utf-8")
    return ArtifactStore(tmp_path / "artifacts", run_id).upload("github-pages", site)


def test_directory_host_replaces_previous_site(tmp_path):
    host = DirectoryHost(tmp_path / "published")
    ctx = pages_context("prefix-dev/pixi")

    first = host.deploy(_artifact(tmp_path, "r1", {"index.html": "v1", "old.html": "gone soon"}), ctx)
    target = tmp_path / "published" / "prefix-dev.github.io" / "pixi"
    assert first.location == str(target.resolve())
    assert first.page_url == "https://prefix-dev.github.io/pixi/"
    assert (target / "old.html").exists()

    second = host.deploy(_artifact(tmp_path, "r2", {"index.html": "v2"}), ctx)
    assert second.deployment_id != first.deployment_id
    assert (target / "index.html").read_text(encoding="utf-8") == "v2"
    assert not (target / "old.html").exists()
    assert sorted(p.name for p in target.parent.iterdir()) == ["pixi"]


def test_http_host_needs_token(tmp_path):
    artifact = _artifact(tmp_path, "r1", {"index.html": "v1"})
    with pytest.raises(HostingError, match="identity token"):
        HttpHost("https://pages.example.com/api").deploy(artifact, pages_context("prefix-dev/pixi"))


def test_make_host(tmp_path):
    assert isinstance(make_host("directory", publish_dir=tmp_path), DirectoryHost)
    assert isinstance(make_host("http", publish_dir=tmp_path, api_url="https://x"), HttpHost)
    with pytest.raises(ValueError):
        make_host("http", publish_dir=tmp_path)
    with pytest.raises(ValueError):
        make_host("ftp", publish_dir=tmp_path)


def test_deploy_step_reports_failed_token_request(tmp_path, settings):
    def no_token(audience):
        raise HostingError("id token request failed: 503 Service Unavailable")

    run_ctx = RunContext(
        run_id="r1",
        workflow="docs",
        event=Event(name="push", ref="refs/heads/main", repository="prefix-dev/pixi"),
        workspace=tmp_path,
        settings=settings,
        artifacts=ArtifactStore(tmp_path / "artifacts", "r1"),
        cache=CacheStore(tmp_path / "cache"),
        handle=RunHandle("r1"),
        id_token_provider=no_token,
    )
    _artifact(tmp_path, "r1", {"index.html": "v1"})
    step = uses("Deploy", "deploy-pages")
    deploy_job = job("deploy", step, permissions={"pages": "write", "id-token": "write"})

    with pytest.raises(CIError) as exc:
        pages.deploy(StepContext(run=run_ctx, job=deploy_job, step=step))
    assert exc.value.kind == "deploy_failed"
    assert "503" in exc.value.message
