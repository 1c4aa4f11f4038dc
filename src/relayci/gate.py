# gate.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .model import Job, JobStatus, TriggerContext


@dataclass(frozen=True)
class GateDecision:
    run: bool
    reason: str

    def __bool__(self) -> bool:
        return self.run


def should_run(
    job: Job,
    context: TriggerContext,
    upstream_results: Mapping[str, JobStatus],
) -> GateDecision:
    """
    Decide whether a job runs once every job in `needs` is terminal.

    A job runs iff all upstream jobs succeeded and its guard (if any) is
    true for the trigger. Anything else is a skip, never a failure.
    """
    for dep in job.needs:
        status = upstream_results.get(dep, JobStatus.PENDING)
        if not status.terminal:
            raise ValueError(f"gate for '{job.name}' evaluated while '{dep}' is {status.value}")

    # report the first blocking upstream in declaration order
    for dep in job.needs:
        status = upstream_results[dep]
        if status is not JobStatus.SUCCEEDED:
            return GateDecision(False, f"upstream {dep} {status.value}")

    if job.if_ is not None and not job.if_.evaluate(context):
        return GateDecision(False, f"condition false: {job.if_.describe()}")

    if job.needs:
        return GateDecision(True, "upstream succeeded")
    return GateDecision(True, "no upstream jobs")
