# artifacts.py
"""
Run-scoped artifacts handed from one job to another.

    <root>/<run_id>/<name>.tar.gz
    <root>/<run_id>/<name>.json     (digest, size, file count)
"""
from __future__ import annotations

import hashlib
import json
import os
import shutil
import tarfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

PAGES_ARTIFACT = "github-pages"
DEFAULT_ARTIFACT_EXCLUDES = (".git", ".github")


@dataclass(frozen=True)
class ArtifactHandle:
    name: str
    path: str
    sha256: str
    size: int
    file_count: int


class ArtifactError(Exception):
    pass


def _unreadable_files(directory: Path) -> List[str]:
    bad: List[str] = []
    for dirpath, dirnames, filenames in os.walk(directory):
        for d in dirnames:
            p = Path(dirpath) / d
            if not os.access(p, os.R_OK | os.X_OK):
                bad.append(str(p.relative_to(directory)) + "/")
        for f in filenames:
            p = Path(dirpath) / f
            if not os.access(p, os.R_OK):
                bad.append(str(p.relative_to(directory)))
    return sorted(bad)


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class ArtifactStore:
    def __init__(self, root: str | Path, run_id: str):
        self.run_id = run_id
        self.dir = Path(root).resolve() / run_id
        self.dir.mkdir(parents=True, exist_ok=True)

    def _archive(self, name: str) -> Path:
        return self.dir / f"{name}.tar.gz"

    def _meta(self, name: str) -> Path:
        return self.dir / f"{name}.json"

    def upload(
        self,
        name: str,
        directory: str | Path,
        *,
        exclude: tuple = DEFAULT_ARTIFACT_EXCLUDES,
    ) -> ArtifactHandle:
        """
        Package the contents of `directory` (not the directory itself).

        Raises ArtifactError when the directory is missing or holds files the
        packager cannot read.
        """
        src = Path(directory).resolve()
        if not src.is_dir():
            raise ArtifactError(f"artifact path is not a directory: {src}")

        unreadable = _unreadable_files(src)
        if unreadable:
            raise ArtifactError(
                f"artifact {name!r} has {len(unreadable)} unreadable entries "
                f"(fix permissions first): {unreadable[:10]}"
            )

        def _skip(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
            parts = Path(info.name).parts
            if any(p in exclude for p in parts):
                return None
            return info

        archive = self._archive(name)
        tmp = archive.with_suffix(".tmp")
        count = 0
        try:
            with tarfile.open(str(tmp), mode="w:gz", dereference=True) as tar:
                for entry in sorted(src.iterdir()):
                    tar.add(str(entry), arcname=entry.name, filter=_skip)
                count = sum(1 for m in tar.getmembers() if m.isfile())
            tmp.replace(archive)
        finally:
            tmp.unlink(missing_ok=True)

        handle = ArtifactHandle(
            name=name,
            path=str(archive),
            sha256=_sha256_file(archive),
            size=archive.stat().st_size,
            file_count=count,
        )
        self._meta(name).write_text(json.dumps(asdict(handle), indent=2), encoding="utf-8")
        return handle

    def get(self, name: str) -> ArtifactHandle:
        meta = self._meta(name)
        if not meta.exists():
            raise ArtifactError(f"artifact {name!r} not found for run {self.run_id}")
        handle = ArtifactHandle(**json.loads(meta.read_text(encoding="utf-8")))
        if _sha256_file(Path(handle.path)) != handle.sha256:
            raise ArtifactError(f"artifact {name!r} digest mismatch")
        return handle

    def download(self, name: str, dest: str | Path) -> Path:
        """Extract artifact `name` into `dest` (created, replaced if present)."""
        handle = self.get(name)
        dest = Path(dest)
        if dest.exists():
            shutil.rmtree(dest)
        dest.mkdir(parents=True)
        with tarfile.open(handle.path, mode="r:gz") as tar:
            tar.extractall(path=str(dest), filter="data")
        return dest

    def names(self) -> List[str]:
        return sorted(p.name[: -len(".json")] for p in self.dir.glob("*.json"))
