# actions/site.py
from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path
from typing import Dict, Iterable

from ..artifacts import PAGES_ARTIFACT, ArtifactError
from ..context import StepContext

NOJEKYLL = ".nojekyll"
INSTALL_SCRIPTS = ("install.sh", "install.ps1")

_READ_ALL = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
_EXEC_ALL = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


# ---------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------

def finalize_site(site: Path, source_dir: Path, files: Iterable[str] = INSTALL_SCRIPTS, *, nojekyll: bool = True) -> list[str]:
    """
    Add the files the static host needs next to the generator output:
    an empty .nojekyll marker and the installer scripts.

    Returns the names written into `site`.
    """
    if not site.is_dir():
        raise FileNotFoundError(f"site directory not found: {site}")

    written: list[str] = []
    if nojekyll:
        (site / NOJEKYLL).write_bytes(b"")
        written.append(NOJEKYLL)

    for name in files:
        src = source_dir / name
        if not src.is_file():
            raise FileNotFoundError(f"file to copy not found: {src}")
        shutil.copy(src, site / Path(name).name)
        written.append(Path(name).name)
    return written


def make_readable(root: Path) -> int:
    """
    Recursive `chmod +rX`: read for everyone on every entry, execute for
    everyone on directories and on files that already had an execute bit.

    Returns the number of entries whose mode changed.
    """
    changed = 0

    def _fix(path: Path, is_dir: bool) -> None:
        nonlocal changed
        mode = stat.S_IMODE(path.lstat().st_mode)
        new = mode | _READ_ALL
        if is_dir or mode & _EXEC_ALL:
            new |= _EXEC_ALL
        if new != mode:
            os.chmod(path, new)
            changed += 1

    if not root.is_dir():
        raise FileNotFoundError(f"directory not found: {root}")

    _fix(root, True)
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for d in dirnames:
            p = base / d
            if not p.is_symlink():
                _fix(p, True)
        for f in filenames:
            p = base / f
            if not p.is_symlink():
                _fix(p, False)
    return changed


# ---------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------

def finalize(ctx: StepContext) -> Dict[str, str]:
    """
    inputs:
      site      output directory (default: site)
      source    directory holding the files to copy (default: install)
      files     names to copy (default: install.sh, install.ps1)
      nojekyll  write the .nojekyll marker (default: true)
    """
    inputs = ctx.step.inputs
    site = ctx.cwd / inputs.get("site", "site")
    source = ctx.cwd / inputs.get("source", "install")
    files = inputs.get("files", INSTALL_SCRIPTS)
    try:
        written = finalize_site(site, source, files, nojekyll=bool(inputs.get("nojekyll", True)))
    except FileNotFoundError as e:
        raise ctx.error("site_finalize_failed", str(e))
    return {"files": ",".join(written)}


def normalize_permissions(ctx: StepContext) -> Dict[str, str]:
    path = ctx.cwd / ctx.step.inputs.get("path", "site")
    try:
        changed = make_readable(path)
    except FileNotFoundError as e:
        raise ctx.error("permissions_failed", str(e))
    return {"changed": str(changed)}


def upload(ctx: StepContext) -> Dict[str, str]:
    """
    inputs:
      path  directory to package (default: site)
      name  artifact name (default: github-pages)
    """
    inputs = ctx.step.inputs
    path = ctx.cwd / inputs.get("path", "site")
    name = inputs.get("name", PAGES_ARTIFACT)
    try:
        handle = ctx.run.artifacts.upload(name, path)
    except ArtifactError as e:
        raise ctx.error("artifact_upload_failed", str(e), path=str(path))
    return {"name": handle.name, "sha256": handle.sha256, "file_count": str(handle.file_count)}
