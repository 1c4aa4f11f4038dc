# artifacts.py
from __future__ import annotations

import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Union

from .errors import ArtifactAccessDenied, ArtifactExists, ArtifactNotAvailable

# ---------------------------------------------------------------------
# Artifact channel
# ---------------------------------------------------------------------
# Per-run layout:
#   root/<run_id>/
#     .staging/<job>/<name>    written by publish(), invisible to consumers
#     <name>                   moved here by finalize() with one os.replace
#
# finalize() is only called once the producer reached `succeeded`, so a
# consumer either sees the complete artifact or ArtifactNotAvailable.
# ---------------------------------------------------------------------

Content = Union[bytes, str, Path]


@dataclass(frozen=True)
class ArtifactHandle:
    name: str
    producer: str
    location: Path
    kind: str  # "tree" | "file" | "bytes"


class ArtifactStore:
    def __init__(self, root: str | Path, run_id: str):
        self.run_id = run_id
        self.root = Path(root).resolve() / run_id
        self.staging = self.root / ".staging"
        self.staging.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._handles: Dict[str, ArtifactHandle] = {}
        self._finalized: set[str] = set()

    def _staged_path(self, job_id: str, name: str) -> Path:
        return self.staging / job_id / name

    def publish(self, job_id: str, name: str, content: Content) -> ArtifactHandle:
        """
        Stage bytes, a file or a directory tree as artifact `name`.
        Nothing is visible to other jobs until finalize(job_id).
        """
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"invalid artifact name: {name!r}")

        with self._lock:
            if name in self._handles:
                raise ArtifactExists(
                    f"artifact '{name}' already published by job '{self._handles[name].producer}'"
                )
            # reserve the name before copying so two jobs cannot race for it
            self._handles[name] = ArtifactHandle(name=name, producer=job_id, location=self.root / name, kind="")

        staged = self._staged_path(job_id, name)
        staged.parent.mkdir(parents=True, exist_ok=True)
        try:
            if isinstance(content, bytes):
                kind = "bytes"
                staged.write_bytes(content)
            else:
                src = Path(content)
                if src.is_dir():
                    kind = "tree"
                    shutil.copytree(src, staged)
                elif src.is_file():
                    kind = "file"
                    shutil.copy2(src, staged)
                else:
                    raise FileNotFoundError(f"artifact source not found: {src}")
        except Exception:
            with self._lock:
                self._handles.pop(name, None)
            raise

        handle = ArtifactHandle(name=name, producer=job_id, location=self.root / name, kind=kind)
        with self._lock:
            self._handles[name] = handle
        return handle

    def finalize(self, job_id: str) -> List[ArtifactHandle]:
        """Make every artifact staged by job_id visible."""
        done: List[ArtifactHandle] = []
        with self._lock:
            for name, handle in sorted(self._handles.items()):
                if handle.producer != job_id or name in self._finalized:
                    continue
                os.replace(self._staged_path(job_id, name), handle.location)
                self._finalized.add(name)
                done.append(handle)
        shutil.rmtree(self.staging / job_id, ignore_errors=True)
        return done

    def discard(self, job_id: str) -> None:
        """Drop artifacts staged by a job that did not succeed."""
        with self._lock:
            for name in [n for n, h in self._handles.items() if h.producer == job_id]:
                if name not in self._finalized:
                    del self._handles[name]
        shutil.rmtree(self.staging / job_id, ignore_errors=True)

    def fetch(
        self,
        ref: ArtifactHandle | str,
        *,
        consumer: str | None = None,
        consumer_needs: Iterable[str] = (),
    ) -> Path:
        """
        Return the finalized location of an artifact.

        Raises ArtifactNotAvailable while the producer has not succeeded, and
        ArtifactAccessDenied when `consumer` does not list the producer in
        its needs.
        """
        name = ref.name if isinstance(ref, ArtifactHandle) else ref
        with self._lock:
            handle = self._handles.get(name)
            visible = name in self._finalized

        if handle is None or not visible:
            raise ArtifactNotAvailable(f"artifact '{name}' is not yet available")
        if consumer is not None and handle.producer not in set(consumer_needs):
            raise ArtifactAccessDenied(
                f"job '{consumer}' does not need '{handle.producer}', which produced '{name}'"
            )
        return handle.location

    def read_bytes(self, ref: ArtifactHandle | str, **kwargs) -> bytes:
        path = self.fetch(ref, **kwargs)
        if path.is_dir():
            raise IsADirectoryError(f"artifact '{path.name}' is a directory tree")
        return path.read_bytes()

    def available(self) -> List[ArtifactHandle]:
        with self._lock:
            return [self._handles[n] for n in sorted(self._finalized)]
