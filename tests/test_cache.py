from railci.cache import CacheStore, compute_cache_key


def _workspace(tmp_path, lock="v1"):
    ws = tmp_path / "ws"
    (ws / "target" / "debug").mkdir(parents=True, exist_ok=True)
    (ws / "target" / "debug" / "artifact.bin").write_text("built")
    (ws / "Cargo.lock").write_text(lock)
    return ws


def test_key_changes_with_inputs(tmp_path):
    ws = _workspace(tmp_path)
    k1, _ = compute_cache_key("clippy", workspace=ws, dirs=["target"], inputs=["Cargo.lock"])
    k2, _ = compute_cache_key("clippy", workspace=ws, dirs=["target"], inputs=["Cargo.lock"])
    (ws / "Cargo.lock").write_text("v2")
    k3, _ = compute_cache_key("clippy", workspace=ws, dirs=["target"], inputs=["Cargo.lock"])

    assert k1 == k2
    assert k1 != k3


def test_save_then_restore_into_fresh_workspace(tmp_path):
    store = CacheStore(tmp_path / "cache")
    ws = _workspace(tmp_path)
    key, manifest = compute_cache_key("clippy", workspace=ws, dirs=["target"], inputs=["Cargo.lock"])

    assert not store.restore("clippy", key, manifest, workspace=ws).hit
    store.save("clippy", key, manifest, ["target"], workspace=ws)

    fresh = tmp_path / "fresh"
    fresh.mkdir()
    hit = store.restore("clippy", key, manifest, workspace=fresh)
    assert hit.hit
    assert (fresh / "target" / "debug" / "artifact.bin").read_text() == "built"


def test_prune_keeps_newest(tmp_path):
    store = CacheStore(tmp_path / "cache")
    ws = _workspace(tmp_path)
    for i in range(4):
        (ws / "Cargo.lock").write_text(f"v{i}")
        key, manifest = compute_cache_key("fmt", workspace=ws, dirs=["target"], inputs=["Cargo.lock"])
        store.save("fmt", key, manifest, ["target"], workspace=ws)

    store.prune("fmt", keep=2)
    assert len(list((tmp_path / "cache" / "fmt").glob("*.tar.gz"))) == 2
