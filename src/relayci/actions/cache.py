# actions/cache.py
from __future__ import annotations

from typing import Any, Dict

from ..cache import compute_cache_key, materialize
from ..environment import JobEnvironment
from ..errors import WorkflowError
from ..expressions import runner_os
from ..model import Step
from ..ui.console import get_console
from .registry import action, as_list


def _validate(step: Step) -> None:
    params = step.with_
    if not str(params.get("materialize", "")).strip():
        raise WorkflowError(
            f"cache step '{step.name}' needs a 'materialize' command that generates its key files"
        )
    if not as_list(params.get("key-files")):
        raise WorkflowError(f"cache step '{step.name}' needs 'key-files'")
    if not as_list(params.get("path")):
        raise WorkflowError(f"cache step '{step.name}' needs at least one 'path'")


@action("cache", versions=("v3", "v4"), validate=_validate)
def cache(env: JobEnvironment, step: Step, params: Dict[str, Any]) -> Dict[str, str]:
    """
    Restore `path` entries keyed by a hash of `key-files`, saving them after
    the job when the key missed.

    Params:
      materialize: command that generates the key files (e.g. a lockfile)
      key-files:   globs hashed into the key, e.g. "**/Cargo.lock"
      path:        paths to cache (relative to the workspace, absolute or ~)
      prefix:      key prefix, defaults to the runner os
    """
    console = get_console()
    job = env.job.name

    manifest = materialize(
        params["materialize"],
        as_list(params.get("key-files")),
        env.workspace,
        env=env.step_env(step.env),
    )
    prefix = str(params.get("prefix") or runner_os())
    key, bits = compute_cache_key(manifest, prefix)
    paths = as_list(params.get("path"))

    if not manifest.files:
        # an empty key set identifies nothing; never restore or save under it
        console.print_warning(
            f"[{job}] no key files match {list(manifest.patterns)} after '{manifest.command}'"
        )
        console.print_cache_miss(job, key)
        return {"cache-hit": "false", "key": key}

    restored = env.cache.restore(key, dest=env.workspace)
    if restored is not None:
        console.print_cache_hit(job, key)
        return {"cache-hit": "true", "key": key}

    console.print_cache_miss(job, key)

    def _save() -> None:
        env.cache.save(key, paths, root=env.workspace, prefix=prefix, inputs=bits["inputs"])
        console.print_cache_saved(job, key)

    env.post.append(_save)
    return {"cache-hit": "false", "key": key}
