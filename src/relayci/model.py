# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .errors import InvalidTransition, WorkflowError

if TYPE_CHECKING:
    from .conditions import Condition


@dataclass(frozen=True)
class Step:
    """
    A single step inside a job: either a shell command (`run`) or an
    action reference (`uses`, e.g. "checkout@v4").
    """
    name: str
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise WorkflowError(f"step '{self.name}' must define exactly one of run/uses")

    @property
    def is_action(self) -> bool:
        return self.uses is not None

    @property
    def action(self) -> Tuple[str, Optional[str]]:
        """Split `uses` into (action name, version pin)."""
        if self.uses is None:
            raise WorkflowError(f"step '{self.name}' is not an action step")
        name, _, version = self.uses.partition("@")
        return name, (version or None)


@dataclass(frozen=True)
class Environment:
    """Deployment environment a job targets; `url` may reference step outputs."""
    name: str
    url: str | None = None


@dataclass
class Job:
    """
    A CI job: ordered steps sharing one workspace, plus the gate inputs
    (upstream jobs in `needs` and an optional guard condition).
    """
    name: str
    steps: list[Step]

    needs: list[str] = field(default_factory=list)
    runs_on: str = "local"
    if_: Optional["Condition"] = None
    env: Dict[str, str] = field(default_factory=dict)

    # capability -> "read" | "write" | "none"
    permissions: Dict[str, str] = field(default_factory=dict)

    # name -> template, e.g. "${{ steps.deployment.outputs.page_url }}"
    outputs: Dict[str, str] = field(default_factory=dict)
    environment: Optional[Environment] = None

    def has_permission(self, scope: str, level: str = "write") -> bool:
        granted = self.permissions.get(scope, "none")
        if level == "read":
            return granted in ("read", "write")
        return granted == level


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.SKIPPED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
}


def check_transition(job: str, current: JobStatus, new: JobStatus) -> JobStatus:
    if new not in _TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"job '{job}' cannot move from {current.value} to {new.value}")
    return new


@dataclass(frozen=True)
class TriggerContext:
    """Immutable description of the event that started a run."""
    event: str
    ref: str
    sha: str = ""
    repository: str = ""

    def __post_init__(self) -> None:
        # accept bare branch names, store the full ref
        if not self.ref.startswith("refs/"):
            object.__setattr__(self, "ref", f"refs/heads/{self.ref}")

    @property
    def branch(self) -> str:
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return self.ref

    @classmethod
    def push(cls, branch: str, sha: str = "", repository: str = "") -> TriggerContext:
        return cls(event="push", ref=branch, sha=sha, repository=repository)

    @classmethod
    def pull_request(cls, branch: str, sha: str = "", repository: str = "") -> TriggerContext:
        return cls(event="pull_request", ref=branch, sha=sha, repository=repository)


@dataclass
class Pipeline:
    """A named set of jobs plus the trigger filters and process-wide env."""
    name: str
    jobs: List[Job]

    # event -> branch patterns (empty list means any branch)
    triggers: Dict[str, List[str]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    trunk: str = "main"

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def matches(self, context: TriggerContext) -> bool:
        """True when the trigger passes the pipeline's `on:` filters."""
        if not self.triggers:
            return True
        if context.event not in self.triggers:
            return False
        branches = self.triggers[context.event]
        if not branches:
            return True
        return any(fnmatch(context.branch, b) for b in branches)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    success: bool
    output: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)
    exit_code: int | None = None
    error: str | None = None


@dataclass
class JobResult:
    name: str
    status: JobStatus
    reason: str = ""
    steps: List[StepResult] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    url: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass
class PipelineResult:
    name: str
    status: str  # "succeeded" | "failed" | "not_triggered"; cancelled runs are "failed"
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    run_id: str = ""
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"

    def statuses(self) -> Dict[str, str]:
        return {name: r.status.value for name, r in self.jobs.items()}

    @property
    def outputs(self) -> Dict[str, str]:
        """Flattened job outputs, e.g. {"deploy.page_url": "..."}."""
        out: Dict[str, str] = {}
        for name, r in self.jobs.items():
            for k, v in r.outputs.items():
                out[f"{name}.{k}"] = v
            if r.url:
                out[f"{name}.url"] = r.url
        return out
