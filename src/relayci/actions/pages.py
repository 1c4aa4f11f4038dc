# actions/pages.py
from __future__ import annotations

import html
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict

from ..environment import JobEnvironment
from ..errors import WorkflowError
from ..model import Step
from .artifacts import PAGES_ARTIFACT, _workspace_path
from .registry import action

REDIRECT_TEMPLATE = '<meta http-equiv="refresh" content="0; url={target}">\n'


def publish_tree(src: Path, dest: Path) -> None:
    """
    Replace dest with a copy of src. The copy is built next to dest and
    swapped in, so readers never see a half-written site.
    """
    dest = dest.resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = Path(tempfile.mkdtemp(prefix=f".{dest.name}.", dir=str(dest.parent)))
    old = dest.with_name(f".{dest.name}.old")
    try:
        shutil.copytree(src, tmp, dirs_exist_ok=True)
        if dest.exists():
            shutil.rmtree(old, ignore_errors=True)
            dest.rename(old)
        tmp.rename(dest)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
        shutil.rmtree(old, ignore_errors=True)


@action(
    "deploy-pages",
    versions=("v4",),
    permissions={"pages": "write", "id-token": "write"},
)
def deploy_pages(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    """
    Publish the pages artifact produced by an upstream job into the publish
    directory and report where it is served.
    """
    name = str(params.get("artifact_name") or PAGES_ARTIFACT)
    location = env.artifacts.fetch(name, consumer=env.job.name, consumer_needs=env.job.needs)
    if not location.is_dir():
        raise NotADirectoryError(f"pages artifact '{name}' is not a directory tree")

    publish_tree(location, env.publish_dir)

    if env.pages_url:
        page_url = env.pages_url.rstrip("/") + "/"
    else:
        page_url = env.publish_dir.resolve().as_uri() + "/"
    return {"page_url": page_url}


def _validate_redirect(step: Step) -> None:
    if not step.with_.get("target"):
        raise WorkflowError(f"step '{step.name}' (redirect-index) needs 'target'")


@action("redirect-index", versions=("v1",), validate=_validate_redirect)
def redirect_index(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    """Write <path>/index.html that immediately redirects to `target`."""
    root = _workspace_path(env, str(params.get("path") or "."))
    root.mkdir(parents=True, exist_ok=True)
    index = root / "index.html"
    index.write_text(REDIRECT_TEMPLATE.format(target=html.escape(str(params["target"]), quote=True)), encoding="utf-8")
    return {"index": str(index)}
