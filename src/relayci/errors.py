# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - recording into job results
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class WorkflowError(ValueError):
    """Raised when a workflow cannot be loaded or fails validation."""
    pass


class InvalidTransition(RuntimeError):
    """Raised on a job status change the state machine does not allow."""
    pass


class CacheKeyError(RuntimeError):
    """Raised when a cache key cannot be derived."""
    pass


class ArtifactError(Exception):
    """Base class for artifact channel errors."""
    pass


class ArtifactNotAvailable(ArtifactError):
    """The artifact is unknown or its producer has not succeeded yet."""
    pass


class ArtifactAccessDenied(ArtifactError):
    """The consumer job does not declare a dependency on the producer."""
    pass


class ArtifactExists(ArtifactError):
    """An artifact with this name was already published in the run."""
    pass
