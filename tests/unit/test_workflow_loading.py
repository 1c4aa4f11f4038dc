"""Unit tests for loading YAML and python workflow files."""

import textwrap
from pathlib import Path

import pytest
import yaml

from relayci.conditions import RefEquals
from relayci.errors import WorkflowError
from relayci.model import Environment, TriggerContext
from relayci.runner import load_workflow, validate_pipeline
from relayci.workflow_yaml import parse_workflow

EXAMPLE = Path(__file__).resolve().parents[2] / "examples" / "docs_workflow.yml"

DOCS_YAML = """
name: docs
on:
  push:
    branches: [main]
  pull_request:
    branches: [main]
env:
  CARGO_TERM_COLOR: always
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: checkout@v4
        with:
          submodules: true
      - uses: cache@v3
        with:
          materialize: cargo tree
          key-files: "**/Cargo.lock"
          path: |
            ~/.cargo/registry
            target
      - name: Build
        run: cargo build --verbose
      - uses: upload-pages-artifact@v3
        with:
          path: docs
  deploy:
    needs: build
    if: github.ref == 'refs/heads/main'
    permissions:
      pages: write
      id-token: write
    environment:
      name: github-pages
      url: ${{ steps.deployment.outputs.page_url }}
    steps:
      - id: deployment
        uses: deploy-pages@v4
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text))
    return path


class TestYaml:
    def test_docs_workflow(self, tmp_path):
        pipeline = load_workflow(_write(tmp_path, "docs_workflow.yml", DOCS_YAML))

        assert pipeline.name == "docs"
        assert pipeline.triggers == {"push": ["main"], "pull_request": ["main"]}
        assert pipeline.env == {"CARGO_TERM_COLOR": "always"}

        build = pipeline.job("build")
        assert build.runs_on == "ubuntu-latest"
        assert [s.uses or s.name for s in build.steps] == [
            "checkout@v4",
            "cache@v3",
            "Build",
            "upload-pages-artifact@v3",
        ]
        assert build.steps[0].with_ == {"submodules": True}

        deploy = pipeline.job("deploy")
        assert deploy.needs == ["build"]
        assert deploy.if_ == RefEquals("refs/heads/main")
        assert deploy.has_permission("pages") and deploy.has_permission("id-token")
        assert deploy.environment == Environment("github-pages", "${{ steps.deployment.outputs.page_url }}")
        assert deploy.steps[0].id == "deployment"

    def test_bare_on_key(self):
        # PyYAML (YAML 1.1) reads `on` as True
        raw = yaml.safe_load("on: push\njobs:\n  a:\n    steps:\n      - run: 'true'\n")
        assert True in raw
        pipeline = parse_workflow(raw)
        assert pipeline.triggers == {"push": []}
        assert pipeline.matches(TriggerContext.push("anything"))

    def test_trunk_guard(self):
        raw = {
            "trunk": "develop",
            "jobs": {"a": {"if": "branch == trunk", "steps": [{"run": "true"}]}},
        }
        pipeline = parse_workflow(raw)
        assert pipeline.trunk == "develop"
        assert pipeline.job("a").if_.evaluate(TriggerContext.push("develop"))

    def test_step_names_default(self):
        raw = {"jobs": {"a": {"steps": [{"run": "echo one\necho two"}, {"uses": "checkout@v4"}]}}}
        steps = parse_workflow(raw).job("a").steps
        assert [s.name for s in steps] == ["echo one", "checkout@v4"]

    def test_env_values_become_strings(self):
        raw = {"env": {"DEBUG": True, "LEVEL": 3}, "jobs": {"a": {"steps": [{"run": "true"}]}}}
        assert parse_workflow(raw).env == {"DEBUG": "true", "LEVEL": "3"}

    @pytest.mark.parametrize(
        "raw,match",
        [
            ({"jobs": {"a": {"steps": []}}}, "invalid workflow"),
            ({"jobs": {"a": {"steps": [{"run": "x", "uses": "checkout@v4"}]}}}, "exactly one"),
            ({"jobs": {"a": {"steps": [{"run": "x"}], "bogus": 1}}}, "invalid workflow"),
            ({"jobs": {"a": {"if": "runner.os == 'Linux'", "steps": [{"run": "x"}]}}}, "job 'a'"),
            ([1, 2], "mapping"),
        ],
    )
    def test_invalid_documents(self, raw, match):
        with pytest.raises(WorkflowError, match=match):
            parse_workflow(raw)

    @pytest.mark.parametrize(
        "step,match",
        [
            ({"uses": "nope@v1"}, "unknown action"),
            ({"uses": "checkout@v1"}, "supported: v3, v4"),
            ({"uses": "cache@v3", "with": {"key-files": "Cargo.lock", "path": "target"}}, "materialize"),
            ({"uses": "cache@v3", "with": {"materialize": "true", "path": "target"}}, "key-files"),
            ({"uses": "redirect-index@v1"}, "target"),
            ({"uses": "upload-artifact@v3", "with": {"path": "x"}}, "name"),
        ],
    )
    def test_action_validation(self, step, match):
        pipeline = parse_workflow({"jobs": {"a": {"steps": [step]}}})
        with pytest.raises(WorkflowError, match=match):
            validate_pipeline(pipeline)

    def test_graph_errors_at_load(self, tmp_path):
        text = """
        jobs:
          a:
            needs: b
            steps: [{run: 'true'}]
          b:
            needs: a
            steps: [{run: 'true'}]
        """
        with pytest.raises(WorkflowError, match="cycle"):
            load_workflow(_write(tmp_path, "cycle_workflow.yml", text))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(WorkflowError, match="Invalid YAML"):
            load_workflow(_write(tmp_path, "bad_workflow.yml", "jobs: [unclosed\n"))

    def test_empty_file(self, tmp_path):
        with pytest.raises(WorkflowError, match="empty"):
            load_workflow(_write(tmp_path, "empty_workflow.yml", ""))

    def test_shipped_example_loads(self):
        pipeline = load_workflow(EXAMPLE)
        assert [j.name for j in pipeline.jobs] == ["build", "deploy"]
        assert pipeline.job("deploy").outputs == {"page_url": "${{ steps.deployment.outputs.page_url }}"}


class TestPython:
    def test_workflow_function(self, tmp_path):
        path = _write(
            tmp_path,
            "ci_workflow.py",
            """
            from relayci import job, sh, wf

            def workflow():
                return wf(job("a", sh("ok", "true")), name="py", on={"push": ["main"]})
            """,
        )
        pipeline = load_workflow(path)
        assert pipeline.name == "py"
        assert pipeline.triggers == {"push": ["main"]}

    def test_jobs_list(self, tmp_path):
        path = _write(
            tmp_path,
            "list_workflow.py",
            """
            from relayci import job, sh

            JOBS = [job("a", sh("ok", "true")), job("b", sh("ok", "true"), needs=["a"])]
            """,
        )
        pipeline = load_workflow(path)
        assert pipeline.name == "list_workflow"
        assert [j.name for j in pipeline.jobs] == ["a", "b"]

    def test_nothing_defined(self, tmp_path):
        with pytest.raises(TypeError):
            load_workflow(_write(tmp_path, "nothing_workflow.py", "X = 1\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow(tmp_path / "missing.yml")

    def test_wrong_suffix(self, tmp_path):
        with pytest.raises(WorkflowError):
            load_workflow(_write(tmp_path, "workflow.toml", "x = 1\n"))

    def test_duplicate_step_ids(self, tmp_path):
        path = _write(
            tmp_path,
            "dupe_workflow.py",
            """
            from relayci import job, sh, wf

            PIPELINE = wf(job("a", sh("one", "true", id="x"), sh("two", "true", id="x")))
            """,
        )
        with pytest.raises(WorkflowError, match="duplicate step ids"):
            load_workflow(path)
