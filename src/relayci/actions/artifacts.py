# actions/artifacts.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Dict

from ..environment import JobEnvironment
from ..errors import WorkflowError
from ..model import Step
from .registry import action

PAGES_ARTIFACT = "github-pages"


def _workspace_path(env: JobEnvironment, value: str) -> Path:
    p = (env.workspace / value).resolve()
    if not p.is_relative_to(env.workspace.resolve()):
        raise ValueError(f"path escapes the job workspace: {value}")
    return p


def _require(*keys: str):
    def _validate(step: Step) -> None:
        for k in keys:
            if not step.with_.get(k):
                raise WorkflowError(f"step '{step.name}' ({step.uses}) needs '{k}'")
    return _validate


@action("upload-artifact", versions=("v3", "v4"), validate=_require("name", "path"))
def upload_artifact(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    src = _workspace_path(env, str(params["path"]))
    handle = env.artifacts.publish(env.job.name, str(params["name"]), src)
    return {"artifact": handle.name}


@action("upload-pages-artifact", versions=("v3",), validate=_require("path"))
def upload_pages_artifact(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    src = _workspace_path(env, str(params["path"]))
    if not src.is_dir():
        raise NotADirectoryError(f"pages artifact must be a directory: {params['path']}")
    name = str(params.get("name") or PAGES_ARTIFACT)
    handle = env.artifacts.publish(env.job.name, name, src)
    return {"artifact": handle.name}


@action("download-artifact", versions=("v3", "v4"), validate=_require("name"))
def download_artifact(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    location = env.artifacts.fetch(
        str(params["name"]),
        consumer=env.job.name,
        consumer_needs=env.job.needs,
    )
    dest = _workspace_path(env, str(params.get("path") or "."))
    if location.is_dir():
        shutil.copytree(location, dest, dirs_exist_ok=True)
    else:
        dest.mkdir(parents=True, exist_ok=True)
        shutil.copy2(location, dest / location.name)
    return {"download-path": str(dest)}
