# cli.py
from __future__ import annotations

import subprocess
import sys
import traceback
from pathlib import Path

import click

from . import settings
from .cache import CacheStore
from .errors import WorkflowError
from .git_facts.git import get_current_ref, get_remote_url, head_sha, is_dirty
from .model import TriggerContext
from .runner import load_workflow, plan, run_pipeline
from .ui.console import Console, get_console, set_console

WORKFLOW_GLOBS = ("*_workflow.py", "*_workflow.yml", "*_workflow.yaml")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found = set()
    for pattern in WORKFLOW_GLOBS:
        found.update(current_dir.glob(pattern))
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    # If workflow is explicitly provided, use it
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix == "":
            for suffix in (".py", ".yml", ".yaml"):
                candidate = workflow_path.with_suffix(suffix)
                if candidate.exists():
                    workflow_path = candidate
                    break
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow docs_workflow.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *[f"  {g}" for g in WORKFLOW_GLOBS]],
            suggestion="Create a workflow file:\n  relayci_workflow.py\n\nOr specify a workflow explicitly:\n  relayci run --workflow my_workflow.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow relayci_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_or_exit(workflow: str | None, debug: bool):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except (WorkflowError, TypeError, FileNotFoundError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if debug:
            traceback.print_exc()
        sys.exit(1)


def build_trigger(event: str, ref: str | None, sha: str | None) -> TriggerContext:
    """Trigger from CLI options, falling back to the local git state."""
    console = get_console()
    if ref is None:
        try:
            ref = get_current_ref()
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_debug("not a git checkout; assuming trunk branch")
            ref = settings.TRUNK
    if sha is None:
        try:
            sha = head_sha()
            if is_dirty():
                console.print_warning(f"working tree has uncommitted changes; checkout uses HEAD {sha[:12]}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = ""
    try:
        repository = get_remote_url("origin")
    except (subprocess.CalledProcessError, FileNotFoundError):
        repository = Path(".").resolve().name
    return TriggerContext(event=event, ref=ref, sha=sha, repository=repository)


trigger_options = [
    click.option("--event", type=click.Choice(["push", "pull_request"]), default="push", show_default=True, help="Trigger event kind"),
    click.option("--ref", default=None, help="Branch or full ref (defaults to the current git branch)"),
    click.option("--sha", default=None, help="Commit sha (defaults to git HEAD)"),
]


def with_trigger_options(fn):
    for opt in reversed(trigger_options):
        fn = opt(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci: local pipeline runner with gated jobs, caches and artifacts."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (.py or .yml)")
@with_trigger_options
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--home", default=settings.HOME, show_default=True, help="State directory (work dirs, artifacts)")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--publish-dir", default=settings.PUBLISH_DIR, show_default=True, help="Where deploy-pages publishes")
@click.option("--pages-url", default=settings.PAGES_URL, help="Base URL reported as page_url")
@click.option("--keep-workspaces", is_flag=True, default=False, help="Leave job workspaces on disk")
@click.pass_context
def run(ctx, workflow, event, ref, sha, workers, home, cache_dir, publish_dir, pages_url, keep_workspaces):
    """Run a workflow for one trigger. Exits non-zero when a job fails or the run is cancelled."""
    console = get_console()
    debug = ctx.obj.get("debug", False)
    _path, pipeline = _load_or_exit(workflow, debug)

    try:
        context = build_trigger(event, ref, sha)
        result = run_pipeline(
            pipeline,
            context,
            source=".",
            home=home,
            cache_root=cache_dir,
            publish_dir=publish_dir,
            pages_url=pages_url,
            max_workers=workers,
            keep_workspaces=keep_workspaces,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if result.status == "not_triggered":
        return

    console.print_results(result.statuses(), result.outputs)
    if not result.succeeded:
        sys.exit(1)


@cli.command("plan")
@click.option("--workflow", default=None, help="Workflow file path (.py or .yml)")
@with_trigger_options
@click.pass_context
def plan_cmd(ctx, workflow, event, ref, sha):
    """Show stages and which jobs a trigger would run or skip."""
    console = get_console()
    _path, pipeline = _load_or_exit(workflow, ctx.obj.get("debug", False))
    context = build_trigger(event, ref, sha)

    if not pipeline.matches(context):
        console.print_not_triggered(pipeline.name, context.event, context.ref)
        return

    console.print_header(f"{pipeline.name}: {context.event} {context.ref}")
    console.print_plan(plan(pipeline, context))


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (.py or .yml)")
@click.pass_context
def validate(ctx, workflow):
    """Load a workflow and check its job graph and actions."""
    console = get_console()
    path, pipeline = _load_or_exit(workflow, ctx.obj.get("debug", False))
    console.print_info(f"{path}: OK ({len(pipeline.jobs)} job(s))")


@cli.group()
def cache():
    """Inspect and prune the local cache."""


@cache.command("list")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True)
def cache_list(cache_dir):
    console = get_console()
    entries = CacheStore(cache_dir).entries()
    if not entries:
        console.print_info("cache is empty")
    for e in entries:
        console.print_info(f"{e['key']}  {', '.join(e.get('paths', []))}")


@cache.command("prune")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True)
@click.option("--keep", default=settings.CACHE_KEEP, show_default=True, type=int, help="Entries to keep per key prefix")
@click.option("--prefix", default=None, help="Only prune entries with this key prefix")
def cache_prune(cache_dir, keep, prefix):
    console = get_console()
    removed = CacheStore(cache_dir).prune(keep=keep, prefix=prefix)
    console.print_info(f"removed {len(removed)} cache entr{'y' if len(removed) == 1 else 'ies'}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
