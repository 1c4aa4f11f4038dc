# registry.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..environment import JobEnvironment
from ..errors import CIError, WorkflowError
from ..model import Step

# An action gets the job environment, its step and rendered parameters and
# returns its outputs. Raising fails the step.
ActionFn = Callable[[JobEnvironment, Step, Dict[str, Any]], Optional[Dict[str, str]]]
Validator = Callable[[Step], None]


@dataclass(frozen=True)
class ActionSpec:
    name: str
    fn: ActionFn
    versions: Tuple[str, ...]
    permissions: Dict[str, str] = field(default_factory=dict)
    validate: Optional[Validator] = None


_REGISTRY: Dict[str, ActionSpec] = {}
OWNER_PREFIX = "actions/"


def action(
    name: str,
    *,
    versions: Tuple[str, ...] = ("v1",),
    permissions: Optional[Dict[str, str]] = None,
    validate: Optional[Validator] = None,
):
    """Register a built-in action under `name`."""

    def deco(fn: ActionFn) -> ActionFn:
        if name in _REGISTRY:
            raise ValueError(f"action '{name}' registered twice")
        _REGISTRY[name] = ActionSpec(
            name=name,
            fn=fn,
            versions=tuple(versions),
            permissions=dict(permissions or {}),
            validate=validate,
        )
        return fn

    return deco


def registered() -> Dict[str, ActionSpec]:
    return dict(_REGISTRY)


def resolve(step: Step) -> Tuple[ActionSpec, Optional[str]]:
    """Look up the action a step uses and check its version pin."""
    name, version = step.action
    # GitHub-style references name the owner: actions/checkout@v4
    name = name.removeprefix(OWNER_PREFIX)
    spec = _REGISTRY.get(name)
    if spec is None:
        raise WorkflowError(
            f"step '{step.name}' uses unknown action '{name}'. Known actions: {sorted(_REGISTRY)}"
        )
    if version is not None and version not in spec.versions:
        raise WorkflowError(
            f"step '{step.name}' pins {name}@{version}; supported: {', '.join(spec.versions)}"
        )
    return spec, version


def validate_step(step: Step) -> None:
    spec, _version = resolve(step)
    if spec.validate is not None:
        spec.validate(step)


def invoke(env: JobEnvironment, step: Step, params: Mapping[str, Any]) -> Dict[str, str]:
    """Run an action step. Returns its outputs; raises on failure."""
    spec, _version = resolve(step)

    missing = [
        f"{scope}: {level}"
        for scope, level in spec.permissions.items()
        if not env.job.has_permission(scope, level)
    ]
    if missing:
        raise CIError(
            kind="permission_denied",
            job=env.job.name,
            step=step.name,
            message=f"action '{spec.name}' needs permissions the job was not granted",
            details={"missing": ", ".join(missing)},
        )

    outputs = spec.fn(env, step, dict(params)) or {}
    return {k: str(v) for k, v in outputs.items()}


# ---------------------------------------------------------------------
# Parameter helpers shared by the built-in actions
# ---------------------------------------------------------------------

def as_list(value: Any) -> list[str]:
    """Accept a YAML list or a newline separated block."""
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    return [str(v) for v in value]


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "recursive")
    return bool(value)
