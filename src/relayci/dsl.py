# src/relayci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

from . import settings
from .conditions import Condition, on_branch
from .model import Environment, Job, Pipeline, Step


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    id: str | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, id=id, env=env or {})


def uses(
    ref: str,
    *,
    name: str | None = None,
    id: str | None = None,
    with_: Optional[Dict[str, Any]] = None,
    **params: Any,
) -> Step:
    """
    Create an action step.

        uses("checkout@v4", submodules=True)
        uses("cache@v3", with_={"key-files": ["**/Cargo.lock"], ...})

    Keyword params are merged over `with_`; use `with_` for keys that are
    not valid python identifiers.
    """
    merged = dict(with_ or {})
    merged.update(params)
    return Step(name=name or ref, uses=ref, with_=merged, id=id)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    when: Optional[Condition] = None,
    env: Optional[Dict[str, str]] = None,
    permissions: Optional[Dict[str, str]] = None,
    outputs: Optional[Dict[str, str]] = None,
    environment: Optional[Environment] = None,
    runs_on: str = "local",
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None or s.is_action else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        runs_on=runs_on,
        if_=when,
        env=dict(env or {}),
        permissions=dict(permissions or {}),
        outputs=dict(outputs or {}),
        environment=environment,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._when: Optional[Condition] = None
        self._permissions: dict[str, str] = {}
        self._outputs: dict[str, str] = {}
        self._environment: Optional[Environment] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, id: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd, id=id))
        return self

    def use_action(self, ref: str, *, name: str | None = None, id: str | None = None, **params: Any):
        self._steps.append(uses(ref, name=name, id=id, **params))
        return self

    def when(self, condition: Condition):
        self._when = condition
        return self

    def only_on(self, branch: str):
        return self.when(on_branch(branch))

    def grant(self, **permissions: str):
        # python names can't hold "-", so id_token -> id-token
        self._permissions.update({k.replace("_", "-"): v for k, v in permissions.items()})
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def output(self, name: str, template: str):
        self._outputs[name] = template
        return self

    def deploys_to(self, name: str, url: str | None = None):
        self._environment = Environment(name=name, url=url)
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            if_=self._when,
            env=dict(self._env),
            permissions=dict(self._permissions),
            outputs=dict(self._outputs),
            environment=self._environment,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    name: str = "workflow",
    on: Optional[Dict[str, List[str]]] = None,
    env: Optional[Dict[str, str]] = None,
    trunk: str | None = None,
) -> Pipeline:
    """
    Workflow definition helper.

    Users can write:
        from relayci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
                on={"push": ["main"]},
            )

    Or define PIPELINE = wf(...) directly.
    """
    return Pipeline(
        name=name,
        jobs=list(jobs),
        triggers=dict(on or {}),
        env=dict(env or {}),
        trunk=trunk or settings.TRUNK,
    )
