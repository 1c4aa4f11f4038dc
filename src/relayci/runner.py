# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import subprocess
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from . import actions, settings
from .artifacts import ArtifactStore
from .cache import CacheStore
from .dag import build_dag, topo_levels
from .environment import JobEnvironment
from .errors import WorkflowError
from .expressions import parse_step_outputs, render, render_params
from .gate import GateDecision, should_run
from .model import (
    Job,
    JobResult,
    JobStatus,
    Pipeline,
    PipelineResult,
    Step,
    StepResult,
    TriggerContext,
    check_transition,
)
from .ui.console import get_console


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def _as_pipeline(obj, default_name: str) -> Pipeline:
    if isinstance(obj, Pipeline):
        return obj
    if isinstance(obj, list) and all(isinstance(j, Job) for j in obj):
        return Pipeline(name=default_name, jobs=obj, trunk=settings.TRUNK)
    raise TypeError(
        "Workflow must return/define a Pipeline or a List[Job]. "
        "Define workflow() -> Pipeline, PIPELINE = wf(...) or JOBS = [Job, ...]."
    )


def _load_python_workflow(wf_path: Path) -> Pipeline:
    module_name = f"relayci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        obj = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        obj = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        obj = globals_dict["JOBS"]
    else:
        obj = None
    return _as_pipeline(obj, wf_path.stem)


def validate_pipeline(pipeline: Pipeline) -> Pipeline:
    """
    Load-time checks: graph shape (duplicates, unknown needs, cycles),
    action references and action parameters.
    """
    if not pipeline.jobs:
        raise WorkflowError(f"pipeline '{pipeline.name}' has no jobs")
    build_dag(pipeline.jobs)
    for job in pipeline.jobs:
        if not job.steps:
            raise WorkflowError(f"job '{job.name}' has no steps")
        ids = [s.id for s in job.steps if s.id]
        if len(ids) != len(set(ids)):
            raise WorkflowError(f"job '{job.name}' has duplicate step ids")
        for step in job.steps:
            if step.is_action:
                actions.validate_step(step)
    return pipeline


def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a workflow from a python or YAML file path.

    A python file must define one of:
      - workflow() -> Pipeline | List[Job]
      - PIPELINE = Pipeline(...)
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        pipeline = _load_python_workflow(wf_path)
    elif wf_path.suffix in (".yml", ".yaml"):
        from .workflow_yaml import load_yaml_workflow

        pipeline = load_yaml_workflow(wf_path)
    else:
        raise WorkflowError(f"Workflow must be a .py or .yml file, got: {wf_path.name}")

    return validate_pipeline(pipeline)


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------

class CancelToken:
    """Cooperative cancellation, honoured between steps and before jobs start."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_shell(step: Step, env: JobEnvironment) -> StepResult:
    cwd = (env.workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        return StepResult(
            name=step.name,
            success=False,
            error=f"[{env.job.name}] step '{step.name}' cwd not found: {cwd}",
        )

    try:
        cmd = render(step.run or "", env.step_outputs, env.trigger)
    except WorkflowError as e:
        return StepResult(name=step.name, success=False, error=f"[{env.job.name}] step '{step.name}': {e}")
    proc = subprocess.run(
        cmd,
        shell=True,
        cwd=str(cwd),
        env=env.step_env(step.env),
        text=True,
        capture_output=True,
    )
    output = (proc.stdout or "") + (proc.stderr or "")
    ok = proc.returncode == 0
    return StepResult(
        name=step.name,
        success=ok,
        output=output,
        outputs=parse_step_outputs(proc.stdout or ""),
        exit_code=proc.returncode,
        error=None if ok else f"[{env.job.name}] step '{step.name}' failed (exit={proc.returncode}): {cmd}",
    )


def _run_action(step: Step, env: JobEnvironment) -> StepResult:
    try:
        params = render_params(step.with_, env.step_outputs, env.trigger)
        outputs = actions.invoke(env, step, params)
    except Exception as e:
        return StepResult(name=step.name, success=False, error=str(e))
    return StepResult(name=step.name, success=True, outputs=outputs)


def run_step(step: Step, env: JobEnvironment) -> StepResult:
    """
    Run one step in the job environment. Never raises for step-level
    problems; failure is reported through StepResult.success.
    """
    if step.is_action:
        return _run_action(step, env)
    return _run_shell(step, env)


def run_job(job: Job, env: JobEnvironment, cancel: Optional[CancelToken] = None) -> JobResult:
    """
    Run a job's steps in order, stopping at the first failure.
    Returns a JobResult with status succeeded or failed.
    """
    console = get_console()
    result = JobResult(name=job.name, status=JobStatus.RUNNING, started_at=time.time())

    for step in job.steps:
        if cancel is not None and cancel.cancelled:
            result.status = JobStatus.FAILED
            result.reason = "cancelled"
            break

        console.print_step(job.name, step.name)
        sr = run_step(step, env)
        result.steps.append(sr)
        if step.id:
            env.step_outputs[step.id] = dict(sr.outputs)
        if sr.output:
            console.print_debug(sr.output.rstrip())

        if not sr.success:
            console.print_failure(step.name, sr.error or "step failed", exit_code=sr.exit_code, output=sr.output)
            result.status = JobStatus.FAILED
            result.reason = sr.error or f"step '{step.name}' failed"
            break
    else:
        result.status = JobStatus.SUCCEEDED

    if result.status is JobStatus.SUCCEEDED:
        for hook in env.post:
            try:
                hook()
            except Exception as e:
                # post-job work (cache save) never fails a job
                console.print_warning(f"[{job.name}] post-job step failed: {e}")

        try:
            result.outputs = {k: render(v, env.step_outputs, env.trigger) for k, v in job.outputs.items()}
            if job.environment is not None and job.environment.url:
                result.url = render(job.environment.url, env.step_outputs, env.trigger)
        except WorkflowError as e:
            result.status = JobStatus.FAILED
            result.reason = str(e)

    result.finished_at = time.time()
    return result


def _job_env(
    pipeline: Pipeline,
    job: Job,
    context: TriggerContext,
    run_id: str,
    workspace: Path,
) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(pipeline.env)
    env.update(job.env)
    env.update(
        {
            "CI": "true",
            "RELAYCI": "true",
            "RELAYCI_RUN_ID": run_id,
            "RELAYCI_JOB": job.name,
            "RELAYCI_EVENT": context.event,
            "RELAYCI_REF": context.ref,
            "RELAYCI_BRANCH": context.branch,
            "RELAYCI_SHA": context.sha,
            "RELAYCI_WORKSPACE": str(workspace),
        }
    )
    return env


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def plan(pipeline: Pipeline, context: TriggerContext) -> List[List[Tuple[str, GateDecision]]]:
    """
    Stages with the gate decision each job would get if every job it can
    run succeeds. Nothing is executed.
    """
    adj, indeg = build_dag(pipeline.jobs)
    by_name = {j.name: j for j in pipeline.jobs}
    assumed: Dict[str, JobStatus] = {}
    out: List[List[Tuple[str, GateDecision]]] = []
    for level in topo_levels(adj, indeg):
        row = []
        for name in level:
            decision = should_run(by_name[name], context, assumed)
            assumed[name] = JobStatus.SUCCEEDED if decision.run else JobStatus.SKIPPED
            row.append((name, decision))
        out.append(row)
    return out


def run_pipeline(
    pipeline: Pipeline,
    context: TriggerContext,
    *,
    source: str | Path = ".",
    home: str | Path | None = None,
    cache_root: str | Path | None = None,
    publish_dir: str | Path | None = None,
    pages_url: str | None = None,
    max_workers: int | None = None,
    cancel: Optional[CancelToken] = None,
    run_id: str | None = None,
    keep_workspaces: bool = False,
) -> PipelineResult:
    """
    Run a pipeline for one trigger.

    - Jobs become eligible once all their upstream jobs are terminal.
    - Eligible jobs pass through the gate: run, or skip with a reason.
    - Running jobs execute in parallel on a thread pool, each in its own
      workspace; artifacts are finalized before dependents are released.
    """
    console = get_console()
    if not pipeline.matches(context):
        console.print_not_triggered(pipeline.name, context.event, context.ref)
        return PipelineResult(name=pipeline.name, status="not_triggered")

    adj, indeg = build_dag(pipeline.jobs)
    by_name = {j.name: j for j in pipeline.jobs}
    indeg = dict(indeg)

    run_id = run_id or uuid.uuid4().hex[:12]
    home_p = Path(home or settings.HOME).resolve()
    source_p = Path(source).resolve()
    artifacts = ArtifactStore(home_p / "artifacts", run_id)
    cache = CacheStore(cache_root or settings.CACHE_DIR)
    publish_p = Path(publish_dir or settings.PUBLISH_DIR).resolve()
    pages = settings.PAGES_URL if pages_url is None else pages_url
    work_root = home_p / "work" / run_id

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    console.print_run_started(
        pipeline=pipeline.name,
        event=context.event,
        ref=context.ref,
        job_count=len(pipeline.jobs),
        run_id=run_id,
    )

    states: Dict[str, JobStatus] = {name: JobStatus.PENDING for name in by_name}
    results: Dict[str, JobResult] = {}
    ready: List[str] = sorted(name for name, deg in indeg.items() if deg == 0)
    in_flight: Dict[Future, str] = {}

    def _set(name: str, status: JobStatus) -> None:
        states[name] = check_transition(name, states[name], status)

    def _release(name: str) -> None:
        # dependents become eligible once every upstream is terminal
        for nxt in sorted(adj[name]):
            indeg[nxt] -= 1
            if indeg[nxt] == 0:
                ready.append(nxt)

    def _execute(job: Job) -> JobResult:
        workspace = work_root / job.name
        shutil.rmtree(workspace, ignore_errors=True)
        workspace.mkdir(parents=True)
        env = JobEnvironment(
            job=job,
            workspace=workspace,
            trigger=context,
            env=_job_env(pipeline, job, context, run_id, workspace),
            artifacts=artifacts,
            cache=cache,
            source=source_p,
            publish_dir=publish_p,
            pages_url=pages,
        )
        try:
            return run_job(job, env, cancel)
        finally:
            if not keep_workspaces:
                shutil.rmtree(workspace, ignore_errors=True)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            # gate and schedule everything currently eligible
            while ready:
                name = ready.pop(0)
                job = by_name[name]
                if cancel is not None and cancel.cancelled:
                    decision = GateDecision(False, "cancelled")
                else:
                    decision = should_run(job, context, states)

                if not decision.run:
                    _set(name, JobStatus.SKIPPED)
                    results[name] = JobResult(name=name, status=JobStatus.SKIPPED, reason=decision.reason)
                    console.print_job_skipped(name, decision.reason)
                    _release(name)
                    continue

                _set(name, JobStatus.RUNNING)
                console.print_job_start(name)
                in_flight[pool.submit(_execute, job)] = name

            if not in_flight:
                break

            # wait for one completion, then loop to gate newly-eligible jobs
            fut = next(as_completed(list(in_flight.keys())))
            name = in_flight.pop(fut)

            try:
                jr = fut.result()
            except Exception as e:
                jr = JobResult(name=name, status=JobStatus.FAILED, reason=f"{type(e).__name__}: {e}")

            if jr.status is JobStatus.SUCCEEDED:
                artifacts.finalize(name)
                console.print_success(name)
            else:
                artifacts.discard(name)
                console.print_failure(name, jr.reason, is_job=True)

            _set(name, jr.status)
            results[name] = jr
            _release(name)

    if not keep_workspaces:
        shutil.rmtree(work_root, ignore_errors=True)

    ordered = {name: results[name] for name in by_name}
    cancelled = bool(cancel is not None and cancel.cancelled)
    # a cancelled run never counts as a success, even if no job had started
    failed = cancelled or any(r.status is JobStatus.FAILED for r in ordered.values())
    return PipelineResult(
        name=pipeline.name,
        status="failed" if failed else "succeeded",
        jobs=ordered,
        run_id=run_id,
        cancelled=cancelled,
    )
