# actions/checkout.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Dict

from .. import settings
from ..environment import JobEnvironment
from ..git_facts import git
from ..model import Step
from .registry import action, as_bool


def _copy_tree(src: Path, dest: Path) -> None:
    home = Path(settings.HOME).name
    shutil.copytree(
        src,
        dest,
        dirs_exist_ok=True,
        ignore=shutil.ignore_patterns(home, ".git"),
    )


@action("checkout", versions=("v3", "v4"))
def checkout(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    """
    Populate the job workspace with the sources.

    Params:
      submodules: clone submodules recursively ("true" / true)
      path:       copy this local directory instead of cloning the source repo
    """
    if params.get("path"):
        src = Path(params["path"]).expanduser()
        if not src.is_absolute():
            src = env.source / src
        if not src.is_dir():
            raise FileNotFoundError(f"checkout path not found: {src}")
        _copy_tree(src, env.workspace)
        return {"source": str(src)}

    source = env.source
    if git.is_repo(source):
        # workspace is created empty by the runner; git clone accepts that
        git.clone(
            git.repo_root(source),
            env.workspace,
            sha=env.trigger.sha or None,
            submodules=as_bool(params.get("submodules", False)),
        )
        return {"source": str(source), "sha": git.head_sha(env.workspace)}

    _copy_tree(source, env.workspace)
    return {"source": str(source)}
