"""
Declarative (YAML) workflows.

Loads a GitHub-Actions-shaped document, validates it with pydantic and
converts it into the dataclass model the runner executes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from . import settings
from .conditions import parse_condition
from .errors import WorkflowError
from .model import Environment, Job, Pipeline, Step


def _stringify(value: Dict[str, Any]) -> Dict[str, str]:
    out = {}
    for k, v in (value or {}).items():
        # YAML turns `true` / `1` into bool / int; env values are strings
        out[str(k)] = str(v).lower() if isinstance(v, bool) else str(v)
    return out


class StepModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _stringify(v)

    @model_validator(mode="after")
    def one_of_run_uses(self) -> StepModel:
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self

    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        return (self.run or "").strip().splitlines()[0] if (self.run or "").strip() else "run"


class EnvironmentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    url: Optional[str] = None


class JobModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    runs_on: Union[str, List[str]] = Field(default="local", alias="runs-on")
    needs: List[str] = Field(default_factory=list)
    if_: Optional[str] = Field(default=None, alias="if")
    permissions: Dict[str, str] = Field(default_factory=dict)
    env: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, str] = Field(default_factory=dict)
    environment: Optional[Union[str, EnvironmentModel]] = None
    steps: List[StepModel] = Field(min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _stringify(v)

    @field_validator("needs", mode="before")
    @classmethod
    def needs_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v or []


class TriggerFilter(BaseModel):
    model_config = ConfigDict(extra="allow")

    branches: List[str] = Field(default_factory=list)


class WorkflowModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Optional[TriggerFilter]]] = Field(default_factory=dict)
    trunk: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobModel]

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _stringify(v)

    def triggers(self) -> Dict[str, List[str]]:
        if isinstance(self.on, str):
            return {self.on: []}
        if isinstance(self.on, list):
            return {event: [] for event in self.on}
        return {event: (f.branches if f else []) for event, f in self.on.items()}


# ----------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------

def _to_step(model: StepModel) -> Step:
    return Step(
        name=model.display_name(),
        run=model.run,
        uses=model.uses,
        with_=dict(model.with_),
        id=model.id,
        cwd=model.working_directory,
        env=dict(model.env),
    )


def _to_job(name: str, model: JobModel, trunk: str) -> Job:
    environment = None
    if isinstance(model.environment, str):
        environment = Environment(name=model.environment)
    elif model.environment is not None:
        environment = Environment(name=model.environment.name, url=model.environment.url)

    try:
        guard = parse_condition(model.if_, trunk) if model.if_ else None
    except WorkflowError as e:
        raise WorkflowError(f"job '{name}': {e}") from e

    runs_on = model.runs_on if isinstance(model.runs_on, str) else ",".join(model.runs_on)
    return Job(
        name=name,
        steps=[_to_step(s) for s in model.steps],
        needs=list(model.needs),
        runs_on=runs_on,
        if_=guard,
        env=dict(model.env),
        permissions=dict(model.permissions),
        outputs=dict(model.outputs),
        environment=environment,
    )


def parse_workflow(raw: Any, default_name: str = "workflow") -> Pipeline:
    """Validate an already-parsed YAML document and build a Pipeline."""
    if not isinstance(raw, dict):
        raise WorkflowError("workflow document must be a mapping")

    # YAML 1.1 reads a bare `on:` key as the boolean True
    if True in raw:
        raw = dict(raw)
        raw["on"] = raw.pop(True)

    try:
        model = WorkflowModel.model_validate(raw)
    except ValidationError as e:
        raise WorkflowError(f"invalid workflow:\n{e}") from e

    trunk = model.trunk or settings.TRUNK
    return Pipeline(
        name=model.name or default_name,
        jobs=[_to_job(name, jm, trunk) for name, jm in model.jobs.items()],
        triggers=model.triggers(),
        env=dict(model.env),
        trunk=trunk,
    )


def load_yaml_workflow(path: str | Path) -> Pipeline:
    p = Path(path)
    if not p.exists():
        raise WorkflowError(f"Workflow file not found: {p}")
    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise WorkflowError(f"Invalid YAML syntax in {p}: {e}") from e
    if not raw:
        raise WorkflowError(f"Workflow file is empty: {p}")
    return parse_workflow(raw, default_name=p.stem)
