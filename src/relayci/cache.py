# cache.py
from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import subprocess
import tarfile
import tempfile
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import CacheKeyError

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Key-addressed caching in two phases:
#
#   1. materialize(): run the command that generates the manifest files
#      (e.g. a lockfile) inside the workspace.
#   2. compute_cache_key(manifest, prefix):
#        key = prefix + "-" + sha256(relpaths + contents of manifest files)
#
# compute_cache_key only accepts a Manifest, and the only way to get one is
# materialize(), so the hash can never be taken before the lockfile exists.
#
# Entry layout:
#   root/
#     <key>.tar.gz          archive, one top-level member per cached path
#     <key>.manifest.json   written last; an entry without it does not exist
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".relayci/cache"
DEFAULT_KEY_EXCLUDES = [
    ".git/**",
    ".relayci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


@dataclass(frozen=True)
class Manifest:
    """Files a cache key is derived from, captured after materialisation."""
    root: Path
    patterns: Tuple[str, ...]
    files: Tuple[str, ...]
    command: str
    output: str = ""


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


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
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def find_key_files(root: Path, patterns: Iterable[str]) -> List[str]:
    """
    Expand key-file patterns into sorted relative paths.
    Supports:
      - file path: "Cargo.lock"
      - glob:      "**/Cargo.lock", "requirements/*.txt"
    """
    root = root.resolve()
    found = set()
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        candidates = [root / pat] if (root / pat).is_file() else sorted(root.glob(pat))
        for p in candidates:
            if not p.is_file():
                continue
            rel = _relpath(p, root)
            if _matches_any_glob(rel, DEFAULT_KEY_EXCLUDES):
                continue
            found.add(rel)
    return sorted(found)


# ---------------------------------------------------------------------
# Phase 1 + 2
# ---------------------------------------------------------------------

def materialize(
    command: str,
    patterns: Iterable[str],
    root: str | Path,
    *,
    env: Optional[Dict[str, str]] = None,
) -> Manifest:
    """
    Run the manifest-generating command, then snapshot which key files exist.
    Raises CacheKeyError if the command fails.
    """
    if not command or not command.strip():
        raise CacheKeyError("a materialize command is required before computing a cache key")

    root_p = Path(root).resolve()
    proc = subprocess.run(
        command,
        shell=True,
        cwd=str(root_p),
        env=env,
        text=True,
        capture_output=True,
    )
    output = (proc.stdout or "") + (proc.stderr or "")
    if proc.returncode != 0:
        raise CacheKeyError(
            f"materialize command failed (exit={proc.returncode}): {command}\n{output[-2000:]}"
        )

    pats = tuple(patterns)
    return Manifest(
        root=root_p,
        patterns=pats,
        files=tuple(find_key_files(root_p, pats)),
        command=command,
        output=output,
    )


def compute_cache_key(manifest: Manifest, prefix: str) -> Tuple[str, Dict]:
    """
    Returns (cache_key, manifest_bits) where manifest_bits can be stored for explainability.
    """
    if not isinstance(manifest, Manifest):
        raise CacheKeyError("cache keys are computed from a materialized Manifest")

    file_fps = []
    for rel in manifest.files:
        p = manifest.root / rel
        if not p.is_file():
            # removed after materialize(); the snapshot is stale
            raise CacheKeyError(f"key file disappeared after materialize: {rel}")
        file_fps.append((rel, _hash_file_contents(p)))

    payload = {
        "v": 1,  # bump this if you change hashing format
        "patterns": sorted(manifest.patterns),
        "files": file_fps,
    }
    digest = _sha256_str(_json_dumps_stable(payload))
    key = f"{prefix}-{digest}" if prefix else digest
    return key, {"key": key, "prefix": prefix, "inputs": payload}


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

def _safe_key(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", key)


def _resolve_entry(entry: str, root: Path) -> Path:
    p = Path(entry).expanduser()
    if not p.is_absolute():
        p = root / p
    return p


class CacheStore:
    """
    File-based key -> paths cache store:
      root/
        <key>.tar.gz
        <key>.manifest.json
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def archive_path(self, key: str) -> Path:
        return self.root / f"{_safe_key(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{_safe_key(key)}.manifest.json"

    def exists(self, key: str) -> bool:
        return self.manifest_path(key).exists() and self.archive_path(key).exists()

    def _load_manifest(self, key: str) -> Optional[Dict]:
        try:
            return json.loads(self.manifest_path(key).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

    def restore(self, key: str, *, dest: str | Path = ".") -> Optional[List[str]]:
        """
        Restore cached paths under dest. Returns the saved path list, or None
        on a miss. A miss (or an unreadable entry) is never an error.

        NOTE: restore is "overwrite by extraction". Existing files are replaced.
        """
        if not self.exists(key):
            return None
        stored = self._load_manifest(key)
        if stored is None:
            return None

        dest_p = Path(dest).resolve()
        try:
            with tempfile.TemporaryDirectory(dir=str(self.root)) as tmp:
                with tarfile.open(str(self.archive_path(key)), mode="r:gz") as tar:
                    tar.extractall(path=tmp, filter="data")
                for idx, entry in enumerate(stored.get("entries", [])):
                    src = Path(tmp) / str(idx)
                    if not src.exists():
                        continue
                    target = _resolve_entry(entry["path"], dest_p)
                    if src.is_dir():
                        shutil.copytree(src, target, dirs_exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(src, target)
        except (OSError, EOFError, zlib.error, tarfile.TarError):
            return None

        return list(stored.get("paths", []))

    def _mktemp(self, key: str, suffix: str) -> Path:
        fd, name = tempfile.mkstemp(dir=str(self.root), prefix=f".{_safe_key(key)}.", suffix=suffix)
        os.close(fd)
        return Path(name)

    def save(
        self,
        key: str,
        paths: List[str],
        *,
        root: str | Path = ".",
        prefix: str = "",
        excludes: Optional[List[str]] = None,
        inputs: Optional[Dict] = None,
    ) -> str:
        """
        Save paths (relative to root, absolute, or ~-prefixed) under key.
        Returns the key. Entries are immutable: saving an existing key is a no-op.

        Each call builds into its own temp files, so concurrent saves of one key
        never share a file. Whichever finishes first wins; the others drop their
        copy. `inputs` (the key derivation payload) is kept in the manifest.
        """
        if self.exists(key):
            return key

        root_p = Path(root).resolve()
        exclude_globs = list(excludes or [])
        entries = []

        art = self.archive_path(key)
        man = self.manifest_path(key)
        tmp = self._mktemp(key, ".tar.gz.tmp")
        man_tmp: Optional[Path] = None
        try:
            # Build tar.gz in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for idx, entry in enumerate(paths):
                    src = _resolve_entry(entry, root_p)
                    kind = "missing"
                    if src.is_file():
                        kind = "file"
                        tar.add(str(src), arcname=str(idx), recursive=False)
                    elif src.is_dir():
                        kind = "dir"
                        for f in _iter_files_under(src):
                            rel = _relpath(f, src)
                            if _matches_any_glob(rel, exclude_globs):
                                continue
                            tar.add(str(f), arcname=f"{idx}/{rel}", recursive=False)
                    entries.append({"path": entry, "kind": kind})

            if self.exists(key):
                return key

            manifest = {
                "key": key,
                "prefix": prefix,
                "paths": list(paths),
                "entries": entries,
                "inputs": inputs or {},
                "saved_at_unix": time.time(),
            }
            man_tmp = self._mktemp(key, ".json.tmp")
            man_tmp.write_text(json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")

            # Archive first: the manifest is what makes an entry visible.
            os.replace(tmp, art)
            os.replace(man_tmp, man)
        finally:
            tmp.unlink(missing_ok=True)
            if man_tmp is not None:
                man_tmp.unlink(missing_ok=True)

        return key

    def entries(self) -> List[Dict]:
        out = []
        for man in sorted(self.root.glob("*.manifest.json")):
            try:
                out.append(json.loads(man.read_text(encoding="utf-8")))
            except (OSError, ValueError):
                continue
        return out

    def prune(self, keep: int = 3, prefix: Optional[str] = None) -> List[str]:
        """
        Keep only the newest N entries per key prefix.
        Returns the removed keys.
        """
        groups: Dict[str, List[Dict]] = {}
        for m in self.entries():
            p = m.get("prefix", "")
            if prefix is not None and p != prefix:
                continue
            groups.setdefault(p, []).append(m)

        removed = []
        for items in groups.values():
            items.sort(key=lambda m: m.get("saved_at_unix", 0), reverse=True)
            for m in items[keep:]:
                key = m["key"]
                self.manifest_path(key).unlink(missing_ok=True)
                self.archive_path(key).unlink(missing_ok=True)
                removed.append(key)
        return removed
