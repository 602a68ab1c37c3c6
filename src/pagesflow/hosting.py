# hosting.py
from __future__ import annotations

import json
import os
import shutil
import tarfile
import urllib.error
import urllib.request
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote, urljoin

from .artifacts import ArtifactHandle


class HostingError(Exception):
    """Raised when publishing to the pages host fails."""


@dataclass(frozen=True)
class PagesContext:
    base_url: str      # https://prefix-dev.github.io/pixi/
    origin: str        # https://prefix-dev.github.io
    host: str          # prefix-dev.github.io
    base_path: str     # /pixi

    def to_outputs(self) -> dict:
        return asdict(self)


def pages_context(repository: str, base_url: str | None = None) -> PagesContext:
    """
    Hosting metadata for `owner/name`.

    A repository called `<owner>.github.io` is served from the root.
    """
    if base_url:
        base = base_url if base_url.endswith("/") else base_url + "/"
        scheme, _, rest = base.partition("://")
        host, _, path = rest.partition("/")
        base_path = "/" + path.rstrip("/") if path.rstrip("/") else ""
        return PagesContext(base_url=base, origin=f"{scheme}://{host}", host=host, base_path=base_path)

    owner, _, name = repository.partition("/")
    if not owner or not name:
        raise ValueError(f"repository must be 'owner/name', got {repository!r}")
    host = f"{owner.lower()}.github.io"
    origin = f"https://{host}"
    if name.lower() == host:
        return PagesContext(base_url=origin + "/", origin=origin, host=host, base_path="")
    return PagesContext(base_url=f"{origin}/{name}/", origin=origin, host=host, base_path=f"/{name}")


# ---------------------------------------------------------------------
# Identity token
# ---------------------------------------------------------------------

def request_id_token(audience: str | None = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Mint a short-lived identity token from the CI platform.

    Returns None when the platform does not provide a token endpoint
    (local runs).
    """
    env = os.environ if environ is None else environ
    url = env.get("ACTIONS_ID_TOKEN_REQUEST_URL")
    bearer = env.get("ACTIONS_ID_TOKEN_REQUEST_TOKEN")
    if not url or not bearer:
        return None
    if audience:
        sep = "&" if "?" in url else "?"
        url = f"{url}{sep}audience={quote(audience)}"

    req = urllib.request.Request(url, headers={"Authorization": f"Bearer {bearer}"}, method="GET")
    try:
        with urllib.request.urlopen(req) as response:
            data = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise HostingError(f"id token request failed: {e.code} {e.reason}")
    except urllib.error.URLError as e:
        raise HostingError(f"id token request failed: {e.reason}")
    token = data.get("value")
    if not token:
        raise HostingError("id token response has no 'value'")
    return token


# ---------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Deployment:
    page_url: str
    location: str
    deployment_id: str


class DirectoryHost:
    """
    Publishes into <publish_root>/<host><base_path>.

    The artifact is extracted next to the live directory and swapped in, so a
    failed extraction leaves the previous site untouched.
    """

    def __init__(self, publish_root: str | Path):
        self.publish_root = Path(publish_root).resolve()

    def deploy(self, artifact: ArtifactHandle, context: PagesContext, token: str | None = None) -> Deployment:
        target = self.publish_root / context.host / context.base_path.lstrip("/")
        target.parent.mkdir(parents=True, exist_ok=True)
        deployment_id = uuid.uuid4().hex[:12]
        staging = target.parent / f".{target.name or 'root'}.{deployment_id}.staging"
        previous = target.parent / f".{target.name or 'root'}.{deployment_id}.previous"

        try:
            staging.mkdir()
            with tarfile.open(artifact.path, mode="r:gz") as tar:
                tar.extractall(path=str(staging), filter="data")
        except (tarfile.TarError, OSError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise HostingError(f"could not unpack artifact {artifact.name!r}: {e}")

        if target.exists():
            target.rename(previous)
        staging.rename(target)
        shutil.rmtree(previous, ignore_errors=True)

        return Deployment(page_url=context.base_url, location=str(target), deployment_id=deployment_id)


class HttpHost:
    """Uploads the artifact archive to a pages API with the identity token."""

    def __init__(self, api_url: str):
        self.api_url = api_url.rstrip("/")

    def deploy(self, artifact: ArtifactHandle, context: PagesContext, token: str | None = None) -> Deployment:
        if not token:
            raise HostingError("HTTP pages host requires an identity token (permissions: id-token: write)")

        url = urljoin(self.api_url + "/", f"deployments?host={quote(context.host)}&path={quote(context.base_path or '/')}")
        body = Path(artifact.path).read_bytes()
        req = urllib.request.Request(
            url,
            data=body,
            headers={
                "Content-Type": "application/gzip",
                "Authorization": f"Bearer {token}",
                "X-Artifact-Sha256": artifact.sha256,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req) as response:
                data = json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise HostingError(f"deployment failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise HostingError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise HostingError(f"Invalid JSON response: {e}")

        return Deployment(
            page_url=data.get("page_url") or context.base_url,
            location=url,
            deployment_id=str(data.get("id", "")),
        )


def make_host(kind: str, *, publish_dir: str | Path, api_url: str | None = None):
    if kind == "directory":
        return DirectoryHost(publish_dir)
    if kind == "http":
        if not api_url:
            raise ValueError("pages host 'http' needs PAGESFLOW_PAGES_API_URL")
        return HttpHost(api_url)
    raise ValueError(f"Unknown pages host: {kind!r}")
