from __future__ import annotations

import pytest

from pagesflow import job, on_dispatch, on_pull_request, on_push, sh, wf
from pagesflow.triggers import evaluate, glob_match, matches_filters

from conftest import dispatch, pull_request, push


def _wf(*on):
    return wf(job("build", sh("noop", "true")), on=list(on))


@pytest.mark.parametrize(
    "path,pattern,expected",
    [
        ("docs/index.md", "docs/**", True),
        ("docs/a/b/c.md", "docs/**", True),
        ("docs/a/b.md", "docs/*", False),
        ("docs/a.md", "docs/*", True),
        ("mkdocs.yml", "mkdocs.yml", True),
        ("pixi.toml", "pixi.*", True),
        ("pixi.lock", "pixi.*", True),
        ("sub/pixi.toml", "pixi.*", False),
        ("README.md", "**/*.md", True),
        ("a/b/README.md", "**/*.md", True),
        ("docs/x.md", "docs/?.md", True),
        ("docs/xy.md", "docs/?.md", False),
    ],
)
def test_glob_match(path, pattern, expected):
    assert glob_match(path, pattern) is expected


def test_negated_pattern_unmatches():
    patterns = ["docs/**", "!docs/drafts/**"]
    assert matches_filters("docs/index.md", patterns)
    assert not matches_filters("docs/drafts/wip.md", patterns)


def test_last_matching_pattern_wins():
    patterns = ["docs/**", "!docs/drafts/**", "docs/drafts/keep.md"]
    assert matches_filters("docs/drafts/keep.md", patterns)
    assert not matches_filters("docs/drafts/other.md", patterns)


def test_push_branch_and_path_filter():
    workflow = _wf(on_push(branches=["main"], paths=["docs/**", "mkdocs.yml"]))

    assert evaluate(workflow, push(changed=["docs/index.md"])).triggered
    assert evaluate(workflow, push(changed=["mkdocs.yml", "src/lib.rs"])).triggered

    decision = evaluate(workflow, push(changed=["src/lib.rs"]))
    assert not decision
    assert "no changed file matches" in decision.reason

    decision = evaluate(workflow, push(ref="refs/heads/feature"))
    assert not decision
    assert "branch 'feature'" in decision.reason


def test_tag_push_fails_branch_filter():
    workflow = _wf(on_push(branches=["main"]))
    decision = evaluate(workflow, push(ref="refs/tags/v0.6.0"))
    assert not decision
    assert "tag" in decision.reason


def test_unknown_diff_passes_path_filter():
    workflow = _wf(on_push(branches=["main"], paths=["docs/**"]))
    assert evaluate(workflow, push(changed=None)).triggered


def test_branches_ignore_and_paths_ignore():
    workflow = _wf(on_push(branches_ignore=["gh-pages"], paths_ignore=["**/*.md"]))

    assert not evaluate(workflow, push(ref="refs/heads/gh-pages", changed=["a.py"]))
    assert not evaluate(workflow, push(changed=["README.md", "docs/x.md"]))
    assert evaluate(workflow, push(changed=["README.md", "setup.py"]))


def test_pull_request_matches_base_branch():
    workflow = _wf(on_pull_request(branches=["main"], paths=["docs/**", "install/**"]))

    assert evaluate(workflow, pull_request(changed=["install/install.sh"])).triggered
    assert not evaluate(workflow, pull_request(base="release"))
    assert not evaluate(workflow, pull_request(changed=["src/lib.rs"]))


def test_pull_request_activity_types():
    workflow = _wf(on_pull_request(branches=["main"]))

    for action in ("opened", "synchronize", "reopened"):
        assert evaluate(workflow, pull_request(action=action)).triggered

    decision = evaluate(workflow, pull_request(action="closed"))
    assert not decision
    assert "closed" in decision.reason

    labeled = _wf(on_pull_request(types=["labeled"]))
    assert evaluate(labeled, pull_request(action="labeled")).triggered


def test_dispatch_always_triggers_when_declared():
    workflow = _wf(on_push(branches=["main"]), on_dispatch())
    decision = evaluate(workflow, dispatch(ref="refs/heads/anything"))
    assert decision.triggered
    assert decision.reason == "manual dispatch"


def test_undeclared_event_does_not_trigger():
    workflow = _wf(on_push(branches=["main"]))
    decision = evaluate(workflow, pull_request())
    assert not decision
    assert decision.reason == "event 'pull_request' not in ['push']"


def test_workflow_without_triggers_always_runs():
    decision = evaluate(_wf(), push(ref="refs/heads/whatever", changed=["x"]))
    assert decision.triggered
    assert decision.reason == "no triggers declared"


def test_any_matching_trigger_is_enough():
    workflow = _wf(
        on_push(branches=["main"], paths=["docs/**"]),
        on_push(branches=["release/*"]),
    )
    assert evaluate(workflow, push(ref="refs/heads/release/1.0", changed=["src/x.rs"])).triggered
    decision = evaluate(workflow, push(ref="refs/heads/dev", changed=["src/x.rs"]))
    assert not decision
    assert ";" in decision.reason
