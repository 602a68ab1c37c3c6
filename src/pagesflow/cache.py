# cache.py
from __future__ import annotations

import hashlib
import io
import json
import platform
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

# ---------------------------------------------------------------------
# Environment cache
# ---------------------------------------------------------------------
#   cache_key = hash(
#       cache name (e.g. "pixi"),
#       tool version,
#       platform,
#       contents of key files (lockfiles, manifests),
#       optional salt
#   )
#
# Cache artifact:
#   <root>/<name>/<key>.tar.gz        the cached directories
#   <root>/<name>/<key>.manifest.json what went into the key
# ---------------------------------------------------------------------

DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".pagesflow/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]
_MANIFEST_PREFIX = ".pagesflow_cache_manifest/"


@dataclass(frozen=True)
class CacheSpec:
    name: str
    paths: List[str]                         # dirs/files to store and restore
    key_files: List[str]                     # globs hashed into the key
    version: str = ""
    salt: Dict[str, str] = field(default_factory=dict)
    exclude: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand key file patterns into concrete paths.
    Supports a plain path ("pixi.lock"), a dir ("docs/") or a glob ("pixi.*").
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(root.glob(pat)) if m.exists())

    # de-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def _hash_key_files(root: Path, patterns: List[str], *, excludes: List[str]) -> Tuple[str, Dict]:
    file_fps: List[Tuple[str, str, int]] = []
    for p in _resolve_globs(root, patterns):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            rel = _relpath(f, root)
            if _matches_any_glob(rel, excludes):
                continue
            file_fps.append((rel, _hash_file_contents(f), f.stat().st_size))

    file_fps.sort(key=lambda t: t[0])
    payload = {"files": file_fps}
    return _sha256_str(_json_dumps_stable(payload)), payload


def compute_cache_key(spec: CacheSpec, *, workspace: str | Path = ".") -> Tuple[str, Dict]:
    """Returns (cache_key, manifest) for `spec` evaluated in `workspace`."""
    root = Path(workspace).resolve()
    excludes = list(DEFAULT_CACHE_EXCLUDES) + list(spec.exclude)
    files_hash, files_manifest = _hash_key_files(root, spec.key_files, excludes=excludes)

    payload = {
        "v": 1,  # bump when the key format changes
        "name": spec.name,
        "version": spec.version,
        "platform": f"{platform.system()}-{platform.machine()}",
        "paths": sorted(spec.paths),
        "key_files_hash": files_hash,
        "salt": dict(spec.salt),
    }
    key = _sha256_str(_json_dumps_stable(payload))
    manifest = {
        "key": key,
        "payload": payload,
        "key_files": files_manifest,
        "excludes": excludes,
        "generated_at_unix": int(time.time()),
    }
    return key, manifest


def _tar_add_path(tar: tarfile.TarFile, root: Path, src: Path, *, exclude_globs: List[str]) -> None:
    src = src.resolve()
    if not src.exists():
        return
    files = [src] if src.is_file() else list(_iter_files_under(src))
    for f in files:
        rel = _relpath(f, root)
        if _matches_any_glob(rel, exclude_globs):
            continue
        tar.add(str(f), arcname=rel, recursive=False)


class CacheStore:
    """
    File-based cache store:
      root/
        <cache name>/
          <key>.tar.gz
          <key>.manifest.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _dir(self, name: str) -> Path:
        d = self.root / name
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, name: str, key: str) -> Path:
        return self._dir(name) / f"{key}.tar.gz"

    def manifest_path(self, name: str, key: str) -> Path:
        return self._dir(name) / f"{key}.manifest.json"

    def restore(self, spec: CacheSpec, *, workspace: str | Path = ".") -> CacheHit:
        """
        Restore cached paths into the workspace (overwrite by extraction).
        """
        root = Path(workspace).resolve()
        if not spec.paths:
            return CacheHit(hit=False, key="", reason="no cache paths specified", manifest={})

        key, manifest = compute_cache_key(spec, workspace=root)
        art = self.artifact_path(spec.name, key)
        man = self.manifest_path(spec.name, key)

        if not art.exists() or not man.exists():
            return CacheHit(hit=False, key=key, reason="cache miss", manifest=manifest)

        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                members = [m for m in tar.getmembers() if not m.name.startswith(_MANIFEST_PREFIX)]
                tar.extractall(path=str(root), members=members, filter="data")
        except (tarfile.TarError, OSError) as e:
            return CacheHit(hit=False, key=key, reason=f"cache exists but restore failed: {e}", manifest=manifest)

        stored = json.loads(man.read_text(encoding="utf-8"))
        return CacheHit(hit=True, key=key, reason="cache hit: restored", manifest=stored)

    def save(self, spec: CacheSpec, *, workspace: str | Path = ".") -> Tuple[str, Dict]:
        """
        Save the spec's paths under its current key. Returns (key, manifest).
        Written to a temp file first, then renamed into place.
        """
        root = Path(workspace).resolve()
        key, manifest = compute_cache_key(spec, workspace=root)
        if not spec.paths:
            return key, manifest

        exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(spec.exclude)
        art = self.artifact_path(spec.name, key)
        man = self.manifest_path(spec.name, key)

        tmp = art.with_suffix(".tmp")
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for entry in spec.paths:
                    _tar_add_path(tar, root, root / entry, exclude_globs=exclude_globs)

                payload = json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False).encode("utf-8")
                info = tarfile.TarInfo(name=f"{_MANIFEST_PREFIX}{spec.name}/{key}.manifest.json")
                info.size = len(payload)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(payload))

            tmp.replace(art)
            man.write_text(json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
        finally:
            tmp.unlink(missing_ok=True)

        return key, manifest

    def prune(self, name: str, keep: int = 3) -> List[str]:
        """
        Keep only the newest `keep` entries for `name` (by mtime).
        Returns the removed keys.
        """
        d = self._dir(name)
        tars = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed: List[str] = []
        for p in tars[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{key}.manifest.json").unlink(missing_ok=True)
            removed.append(key)
        return removed
