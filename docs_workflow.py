# docs_workflow.py
# Deploy Docs: build the documentation site and publish it to the pages host.
from __future__ import annotations

from pagesflow import (
    concurrency,
    job,
    on_dispatch,
    on_pull_request,
    on_push,
    ref_is,
    repository_is,
    sh,
    uses,
    wf,
)

CANONICAL_REPOSITORY = "prefix-dev/pixi"


def workflow():
    # Don't run on forks
    not_a_fork = repository_is(CANONICAL_REPOSITORY)

    return wf(
        job(
            "build",
            uses("Checkout repository", "checkout", submodules="recursive"),
            uses("Setup pixi", "setup-env", tool="pixi", version="v0.6.0", cache=True),
            uses("Setup Pages", "configure-pages", id="pages"),
            sh("Build pixi Documentation", "pixi run build-docs"),
            # .nojekyll disables Jekyll processing on the host; the install
            # scripts are served from the site root.
            uses(
                "Finalize documentation",
                "finalize-site",
                site="site",
                source="install",
                files=["install.sh", "install.ps1"],
            ),
            # the artifact packager must be able to read every file
            uses("Fix permissions", "normalize-permissions", path="site"),
            uses("Upload artifact", "upload-pages-artifact", path="site"),
            if_=not_a_fork,
        ),
        job(
            "deploy",
            uses("Deploy to GitHub Pages", "deploy-pages", id="deployment"),
            needs=["build"],
            if_=not_a_fork & ref_is("refs/heads/main"),
            permissions={
                "contents": "read",
                "pages": "write",
                "id-token": "write",
            },
        ),
        name="Deploy Docs",
        on=[
            on_push(
                branches=["main"],
                paths=["docs/**", "mkdocs.yml"],
            ),
            on_pull_request(
                branches=["main"],
                paths=[
                    "docs/**",
                    "install/**",
                    ".github/workflows/docs.yml",
                    "mkdocs.yml",
                    "pixi.*",
                ],
            ),
            on_dispatch(),
        ],
        # one deployment at a time; a newer run cancels the one in progress
        concurrency=concurrency("pages", cancel_in_progress=True),
    )
