from .conditions import BranchEquals, EventEquals, RefEquals, on_branch, parse_condition
from .dsl import JobBuilder, build, job, sh, uses, wf
from .model import Environment, Job, JobStatus, Pipeline, Step, TriggerContext
from .runner import CancelToken, load_workflow, run_pipeline

__all__ = [
    "BranchEquals",
    "CancelToken",
    "Environment",
    "EventEquals",
    "Job",
    "JobBuilder",
    "JobStatus",
    "Pipeline",
    "RefEquals",
    "Step",
    "TriggerContext",
    "build",
    "job",
    "load_workflow",
    "on_branch",
    "parse_condition",
    "run_pipeline",
    "sh",
    "uses",
    "wf",
]
