# actions/setup_env.py
from __future__ import annotations

import re
import subprocess
from typing import Dict, List

from ..cache import CacheSpec
from ..context import StepContext, run_shell
from ..errors import TOOL_HINTS
from ..ui.console import get_console

_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?)")


def _normalize_version(version: str) -> str:
    return version.strip().lstrip("v")


def tool_version(ctx: StepContext, tool: str) -> str:
    """`<tool> --version`, raising a tool_unavailable error when missing."""
    try:
        proc = subprocess.run(
            [tool, "--version"],
            capture_output=True,
            text=True,
            check=True,
            env=ctx.env(),
            cwd=str(ctx.workspace),
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise ctx.error(
            "tool_unavailable",
            f"{tool} is not available",
            hint=TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."),
            tool=tool,
        )
    text = (proc.stdout or proc.stderr or "").strip()
    m = _VERSION_RE.search(text)
    return m.group(1) if m else text


def cache_spec(tool: str, version: str, inputs: Dict) -> CacheSpec:
    paths: List[str] = list(inputs.get("cache_paths") or [f".{tool}"])
    key_files: List[str] = list(inputs.get("key_files") or [f"{tool}.lock"])
    return CacheSpec(name=f"env-{tool}", paths=paths, key_files=key_files, version=version)


def run_step(ctx: StepContext) -> Dict[str, str]:
    """
    Provision the build environment.

    inputs:
      tool           environment manager (default: pixi)
      version        pinned version, e.g. "v0.6.0" ("latest" skips the check)
      cache          restore/save the environment dirs keyed by lockfile contents
      cache_paths    dirs to cache (default: .<tool>)
      key_files      files hashed into the cache key (default: <tool>.lock)
      install        run `<tool> install` (default: true)
      install_args   extra arguments for the install command
    """
    inputs = ctx.step.inputs
    console = get_console()
    tool = inputs.get("tool", "pixi")
    pinned = inputs.get("version", "latest")

    found = tool_version(ctx, tool)
    if pinned != "latest" and _normalize_version(found) != _normalize_version(pinned):
        raise ctx.error(
            "tool_version_mismatch",
            f"{tool} {found} found, {pinned} required",
            tool=tool,
            found=found,
            required=pinned,
        )

    use_cache = bool(inputs.get("cache", False))
    spec = cache_spec(tool, found, inputs)
    hit = False
    if use_cache:
        result = ctx.run.cache.restore(spec, workspace=ctx.workspace)
        hit = result.hit
        console.print_cache(ctx.job.name, result.reason)

    if inputs.get("install", True):
        args = str(inputs.get("install_args", "")).strip()
        run_shell(ctx, f"{tool} install {args}".strip(), cwd=ctx.workspace)

    if use_cache and not hit:
        key, _manifest = ctx.run.cache.save(spec, workspace=ctx.workspace)
        ctx.run.cache.prune(spec.name, keep=ctx.run.settings.cache_keep)
        console.print_cache(ctx.job.name, f"saved ({key[:12]}...)")

    return {"version": found, "cache-hit": "true" if hit else "false"}
