"""Unit tests for the two-phase cache key and the tarball cache store."""

import json
import os
import threading
import time

import pytest

from relayci.cache import CacheStore, Manifest, compute_cache_key, find_key_files, materialize
from relayci.errors import CacheKeyError


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def store(tmp_path):
    return CacheStore(tmp_path / "cache")


class TestKeyDerivation:
    def test_materialize_runs_before_hashing(self, workspace):
        manifest = materialize("echo 'serde = 1' > Cargo.lock", ["**/Cargo.lock"], workspace)
        assert manifest.files == ("Cargo.lock",)

        key, bits = compute_cache_key(manifest, "Linux")
        assert key.startswith("Linux-")
        assert bits["inputs"]["files"][0][0] == "Cargo.lock"

    def test_key_changes_with_contents(self, workspace):
        first, _ = compute_cache_key(materialize("echo a > Cargo.lock", ["Cargo.lock"], workspace), "Linux")
        again, _ = compute_cache_key(materialize("echo a > Cargo.lock", ["Cargo.lock"], workspace), "Linux")
        second, _ = compute_cache_key(materialize("echo b > Cargo.lock", ["Cargo.lock"], workspace), "Linux")
        assert first == again
        assert first != second

    def test_prefix_partitions_keys(self, workspace):
        manifest = materialize("echo a > Cargo.lock", ["Cargo.lock"], workspace)
        assert compute_cache_key(manifest, "Linux")[0] != compute_cache_key(manifest, "macOS")[0]

    def test_nested_key_files_are_found(self, workspace):
        (workspace / "crates" / "core").mkdir(parents=True)
        manifest = materialize(
            "echo x > Cargo.lock && echo y > crates/core/Cargo.lock",
            ["**/Cargo.lock"],
            workspace,
        )
        assert manifest.files == ("Cargo.lock", "crates/core/Cargo.lock")

    def test_no_match_yields_empty_manifest(self, workspace):
        manifest = materialize("true", ["**/Cargo.lock"], workspace)
        assert manifest.files == ()
        key, _ = compute_cache_key(manifest, "Linux")
        assert key.startswith("Linux-")

    def test_materialize_requires_a_command(self, workspace):
        with pytest.raises(CacheKeyError):
            materialize("  ", ["Cargo.lock"], workspace)

    def test_failing_materialize_raises(self, workspace):
        with pytest.raises(CacheKeyError, match="exit=3"):
            materialize("exit 3", ["Cargo.lock"], workspace)

    def test_key_needs_a_manifest(self, workspace):
        with pytest.raises(CacheKeyError):
            compute_cache_key(["Cargo.lock"], "Linux")

    def test_stale_manifest_is_rejected(self, workspace):
        manifest = materialize("echo a > Cargo.lock", ["Cargo.lock"], workspace)
        (workspace / "Cargo.lock").unlink()
        with pytest.raises(CacheKeyError, match="disappeared"):
            compute_cache_key(manifest, "Linux")

    def test_excluded_paths_do_not_count(self, workspace):
        (workspace / ".git").mkdir()
        (workspace / ".git" / "Cargo.lock").write_text("x")
        (workspace / "Cargo.lock").write_text("y")
        assert find_key_files(workspace, ["**/Cargo.lock"]) == ["Cargo.lock"]


class TestCacheStore:
    def test_unknown_key_is_a_miss(self, store, workspace):
        assert store.restore("Linux-missing", dest=workspace) is None

    def test_save_then_restore(self, store, workspace, tmp_path):
        (workspace / "target" / "debug").mkdir(parents=True)
        (workspace / "target" / "debug" / "app").write_text("binary")
        (workspace / "notes.txt").write_text("hello")

        key = store.save("Linux-abc", ["target", "notes.txt"], root=workspace, prefix="Linux")
        assert key == "Linux-abc"
        assert store.exists(key)

        fresh = tmp_path / "fresh"
        fresh.mkdir()
        assert store.restore(key, dest=fresh) == ["target", "notes.txt"]
        assert (fresh / "target" / "debug" / "app").read_text() == "binary"
        assert (fresh / "notes.txt").read_text() == "hello"

    def test_missing_paths_are_recorded_not_fatal(self, store, workspace, tmp_path):
        key = store.save("Linux-gone", ["does-not-exist"], root=workspace)
        fresh = tmp_path / "fresh"
        fresh.mkdir()
        assert store.restore(key, dest=fresh) == ["does-not-exist"]
        assert not (fresh / "does-not-exist").exists()

    def test_entries_are_immutable(self, store, workspace, tmp_path):
        (workspace / "data.txt").write_text("first")
        store.save("Linux-k", ["data.txt"], root=workspace)
        (workspace / "data.txt").write_text("second")
        store.save("Linux-k", ["data.txt"], root=workspace)

        fresh = tmp_path / "fresh"
        fresh.mkdir()
        store.restore("Linux-k", dest=fresh)
        assert (fresh / "data.txt").read_text() == "first"

    def test_corrupt_archive_is_a_miss(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        key = store.save("Linux-bad", ["data.txt"], root=workspace)
        store.archive_path(key).write_bytes(b"not a tarball")
        assert store.restore(key, dest=workspace) is None

    def test_truncated_archive_is_a_miss(self, store, workspace, tmp_path):
        (workspace / "blob.bin").write_bytes(os.urandom(200_000))
        key = store.save("Linux-trunc", ["blob.bin"], root=workspace)
        archive = store.archive_path(key)
        data = archive.read_bytes()
        archive.write_bytes(data[: len(data) // 2])

        fresh = tmp_path / "fresh"
        fresh.mkdir()
        assert store.restore(key, dest=fresh) is None

    def test_corrupt_manifest_is_a_miss(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        key = store.save("Linux-badjson", ["data.txt"], root=workspace)
        store.manifest_path(key).write_text("{not json")
        assert store.restore(key, dest=workspace) is None

    def test_archive_without_manifest_does_not_exist(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        key = store.save("Linux-half", ["data.txt"], root=workspace)
        store.manifest_path(key).unlink()
        assert not store.exists(key)
        assert store.restore(key, dest=workspace) is None

    def test_no_temp_files_left_behind(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        store.save("Linux-clean", ["data.txt"], root=workspace)
        assert not list(store.root.glob("*.tmp"))

    def test_concurrent_saves_of_one_key(self, store, tmp_path):
        payloads = {}
        for name in ("a", "b"):
            ws = tmp_path / f"ws-{name}"
            ws.mkdir()
            payloads[name] = os.urandom(3_000_000)
            (ws / "blob.bin").write_bytes(payloads[name])

        barrier = threading.Barrier(2)
        errors = []

        def _save(name):
            barrier.wait()
            try:
                store.save("Linux-same", ["blob.bin"], root=tmp_path / f"ws-{name}", prefix="Linux")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=_save, args=(n,)) for n in payloads]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        fresh = tmp_path / "fresh"
        fresh.mkdir()
        assert store.restore("Linux-same", dest=fresh) == ["blob.bin"]
        assert (fresh / "blob.bin").read_bytes() in payloads.values()
        assert not list(store.root.glob("*.tmp"))

    def test_prune_keeps_newest_per_prefix(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        for i in range(4):
            store.save(f"Linux-{i}", ["data.txt"], root=workspace, prefix="Linux")
            # saved_at ordering must be strict
            time.sleep(0.01)
        store.save("macOS-0", ["data.txt"], root=workspace, prefix="macOS")

        removed = store.prune(keep=2)
        assert sorted(removed) == ["Linux-0", "Linux-1"]
        assert sorted(e["key"] for e in store.entries()) == ["Linux-2", "Linux-3", "macOS-0"]

    def test_prune_single_prefix(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        store.save("Linux-0", ["data.txt"], root=workspace, prefix="Linux")
        store.save("macOS-0", ["data.txt"], root=workspace, prefix="macOS")
        assert store.prune(keep=0, prefix="macOS") == ["macOS-0"]
        assert [e["key"] for e in store.entries()] == ["Linux-0"]

    def test_manifest_contents(self, store, workspace):
        (workspace / "data.txt").write_text("x")
        key = store.save("Linux-m", ["data.txt"], root=workspace, prefix="Linux")
        manifest = json.loads(store.manifest_path(key).read_text())
        assert manifest["key"] == key
        assert manifest["prefix"] == "Linux"
        assert manifest["entries"] == [{"path": "data.txt", "kind": "file"}]

    def test_manifest_records_key_inputs(self, store, workspace):
        (workspace / "Cargo.lock").write_text("lock")
        key, bits = compute_cache_key(materialize("true", ["Cargo.lock"], workspace), "Linux")
        store.save(key, ["Cargo.lock"], root=workspace, prefix="Linux", inputs=bits["inputs"])
        manifest = json.loads(store.manifest_path(key).read_text())
        assert manifest["inputs"]["patterns"] == ["Cargo.lock"]
        assert [f[0] for f in manifest["inputs"]["files"]] == ["Cargo.lock"]


def test_manifest_is_a_plain_value(tmp_path):
    m = Manifest(root=tmp_path, patterns=("Cargo.lock",), files=(), command="true")
    with pytest.raises(AttributeError):
        m.files = ("x",)
