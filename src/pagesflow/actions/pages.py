# actions/pages.py
from __future__ import annotations

from typing import Dict

from ..artifacts import PAGES_ARTIFACT, ArtifactError
from ..context import StepContext
from ..hosting import HostingError, make_host, pages_context


def configure(ctx: StepContext) -> Dict[str, str]:
    """Compute the hosting target metadata; later steps read it from the job state."""
    settings = ctx.run.settings
    try:
        context = pages_context(ctx.run.event.repository, base_url=settings.pages_base_url)
    except ValueError as e:
        raise ctx.error("pages_config_failed", str(e))
    ctx.state["pages"] = context
    return context.to_outputs()


def deploy(ctx: StepContext) -> Dict[str, str]:
    """
    Publish the pages artifact of this run.

    Needs `pages: write` and `id-token: write` on the job.
    """
    job = ctx.job
    if not job.has_permission("pages", "write"):
        raise ctx.error(
            "permission_denied",
            "deploying pages requires 'pages: write'",
            permissions=job.permissions or {},
        )

    name = ctx.step.inputs.get("artifact_name", PAGES_ARTIFACT)
    try:
        artifact = ctx.run.artifacts.get(name)
    except ArtifactError as e:
        raise ctx.error("artifact_missing", str(e), artifact=name)

    settings = ctx.run.settings
    context = ctx.state.get("pages") or pages_context(ctx.run.event.repository, base_url=settings.pages_base_url)
    try:
        token = ctx.id_token(ctx.step.inputs.get("audience"))
        host = make_host(
            settings.pages_host,
            publish_dir=ctx.workspace / settings.publish_dir,
            api_url=settings.pages_api_url,
        )
        deployment = host.deploy(artifact, context, token=token)
    except (HostingError, ValueError) as e:
        raise ctx.error("deploy_failed", str(e), host=settings.pages_host)

    return {
        "page_url": deployment.page_url,
        "location": deployment.location,
        "deployment_id": deployment.deployment_id,
    }
