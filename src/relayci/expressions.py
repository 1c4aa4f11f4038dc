# expressions.py
# ${{ ... }} substitution for step commands, action parameters and job outputs,
# plus the "::set-output name=k::v" protocol shell steps use to publish outputs.
from __future__ import annotations

import platform
import re
from typing import Any, Dict, Mapping, Optional

from .errors import WorkflowError
from .model import TriggerContext

_EXPR_RE = re.compile(r"\$\{\{\s*(?P<expr>[^}]+?)\s*\}\}")
_SET_OUTPUT_RE = re.compile(r"^::set-output name=(?P<name>[A-Za-z0-9_.\-]+)::(?P<value>.*)$")


def runner_os() -> str:
    # same spelling as hosted runners: Linux / macOS / Windows
    system = platform.system()
    return {"Darwin": "macOS"}.get(system, system)


def parse_step_outputs(output: str) -> Dict[str, str]:
    outputs: Dict[str, str] = {}
    for line in output.splitlines():
        m = _SET_OUTPUT_RE.match(line.strip())
        if m:
            outputs[m.group("name")] = m.group("value")
    return outputs


def _lookup(
    expr: str,
    step_outputs: Mapping[str, Mapping[str, str]],
    context: Optional[TriggerContext],
) -> str:
    parts = expr.split(".")

    if parts[0] == "steps":
        if len(parts) != 4 or parts[2] != "outputs":
            raise WorkflowError(f"expected steps.<id>.outputs.<name>, got {expr!r}")
        # unknown step/output renders empty, like hosted runners do
        return step_outputs.get(parts[1], {}).get(parts[3], "")

    if expr == "runner.os":
        return runner_os()

    if parts[0] == "github" and len(parts) == 2:
        if context is None:
            return ""
        return {
            "ref": context.ref,
            "ref_name": context.branch,
            "sha": context.sha,
            "event_name": context.event,
            "repository": context.repository,
        }.get(parts[1], "")

    raise WorkflowError(f"unsupported expression: ${{{{ {expr} }}}}")


def render(
    template: str,
    step_outputs: Optional[Mapping[str, Mapping[str, str]]] = None,
    context: Optional[TriggerContext] = None,
) -> str:
    step_outputs = step_outputs or {}
    return _EXPR_RE.sub(lambda m: _lookup(m.group("expr"), step_outputs, context), template)


def render_params(
    params: Mapping[str, Any],
    step_outputs: Optional[Mapping[str, Mapping[str, str]]] = None,
    context: Optional[TriggerContext] = None,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in params.items():
        out[k] = render(v, step_outputs, context) if isinstance(v, str) else v
    return out
