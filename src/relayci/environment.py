# environment.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

from .artifacts import ArtifactStore
from .cache import CacheStore
from .model import Job, TriggerContext


@dataclass
class JobEnvironment:
    """
    Everything the steps of one job share: the job's exclusive workspace,
    its env, the trigger, and the two sanctioned cross-job channels
    (cache and artifacts).
    """
    job: Job
    workspace: Path
    trigger: TriggerContext
    env: Dict[str, str]
    artifacts: ArtifactStore
    cache: CacheStore
    source: Path
    publish_dir: Path
    pages_url: str = ""

    # step id -> outputs, filled in as steps finish
    step_outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)

    # run after every step succeeded (e.g. cache save); failures only warn
    post: List[Callable[[], None]] = field(default_factory=list)

    def step_env(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        env = dict(self.env)
        env.update(extra or {})
        return env
