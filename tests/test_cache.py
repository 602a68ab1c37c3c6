from __future__ import annotations

from pagesflow.cache import CacheSpec, CacheStore, compute_cache_key


def _workspace(tmp_path, lock="version: 1\n"):
    ws = tmp_path / "ws"
    (ws / ".pixi" / "envs").mkdir(parents=True)
    (ws / ".pixi" / "envs" / "default.txt").write_text("env", encoding="utf-8")
    (ws / "pixi.lock").write_text(lock, encoding="utf-8")
    return ws


SPEC = CacheSpec(name="env-pixi", paths=[".pixi"], key_files=["pixi.lock"], version="0.6.0")


def test_key_depends_on_lockfile_and_version(tmp_path):
    ws = _workspace(tmp_path)
    key, manifest = compute_cache_key(SPEC, workspace=ws)
    assert manifest["payload"]["version"] == "0.6.0"
    assert compute_cache_key(SPEC, workspace=ws)[0] == key

    (ws / "pixi.lock").write_text("version: 2\n", encoding="utf-8")
    assert compute_cache_key(SPEC, workspace=ws)[0] != key

    other = CacheSpec(name="env-pixi", paths=[".pixi"], key_files=["pixi.lock"], version="0.7.0")
    assert compute_cache_key(other, workspace=ws)[0] != compute_cache_key(SPEC, workspace=ws)[0]


def test_miss_then_save_then_hit(tmp_path):
    ws = _workspace(tmp_path)
    store = CacheStore(tmp_path / "cache")

    miss = store.restore(SPEC, workspace=ws)
    assert not miss.hit
    assert miss.reason == "cache miss"

    key, _ = store.save(SPEC, workspace=ws)
    (ws / ".pixi" / "envs" / "default.txt").unlink()

    hit = store.restore(SPEC, workspace=ws)
    assert hit.hit
    assert hit.key == key
    assert (ws / ".pixi" / "envs" / "default.txt").read_text(encoding="utf-8") == "env"
    assert not (ws / ".pagesflow_cache_manifest").exists()


def test_no_paths_is_never_a_hit(tmp_path):
    store = CacheStore(tmp_path / "cache")
    spec = CacheSpec(name="empty", paths=[], key_files=[])
    assert store.restore(spec, workspace=tmp_path).reason == "no cache paths specified"


def test_prune_keeps_newest(tmp_path):
    ws = _workspace(tmp_path)
    store = CacheStore(tmp_path / "cache")
    first, _ = store.save(SPEC, workspace=ws)
    (ws / "pixi.lock").write_text("version: 2\n", encoding="utf-8")
    second, _ = store.save(SPEC, workspace=ws)
    assert first != second

    removed = store.prune("env-pixi", keep=1)
    assert len(removed) == 1
    remaining = [p.name for p in (tmp_path / "cache" / "env-pixi").glob("*.tar.gz")]
    assert len(remaining) == 1
