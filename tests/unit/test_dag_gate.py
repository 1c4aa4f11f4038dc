"""Unit tests for the job graph and the run/skip gate."""

import pytest

from relayci.conditions import RefEquals
from relayci.dag import build_dag, levels_for, topo_levels
from relayci.errors import WorkflowError
from relayci.gate import GateDecision, should_run
from relayci.model import Job, JobStatus, Step, TriggerContext


def _job(name, needs=None, when=None):
    return Job(name=name, steps=[Step(name="noop", run="true")], needs=list(needs or []), if_=when)


class TestDag:
    def test_levels(self):
        jobs = [
            _job("build"),
            _job("lint"),
            _job("test", ["build"]),
            _job("deploy", ["test", "lint"]),
        ]
        assert levels_for(jobs) == [["build", "lint"], ["test"], ["deploy"]]

    def test_adjacency_and_indegree(self):
        adj, indeg = build_dag([_job("build"), _job("deploy", ["build"])])
        assert adj == {"build": {"deploy"}, "deploy": set()}
        assert indeg == {"build": 0, "deploy": 1}
        assert topo_levels(adj, indeg) == [["build"], ["deploy"]]

    def test_duplicate_names(self):
        with pytest.raises(WorkflowError, match="Duplicate"):
            build_dag([_job("a"), _job("a")])

    def test_unknown_need(self):
        with pytest.raises(WorkflowError, match="missing job 'nope'"):
            build_dag([_job("a", ["nope"])])

    def test_self_need(self):
        with pytest.raises(WorkflowError, match="itself"):
            build_dag([_job("a", ["a"])])

    def test_cycle(self):
        with pytest.raises(WorkflowError, match="cycle"):
            build_dag([_job("a", ["c"]), _job("b", ["a"]), _job("c", ["b"])])


class TestGate:
    def test_root_job_runs(self):
        decision = should_run(_job("build"), TriggerContext.push("main"), {})
        assert decision == GateDecision(True, "no upstream jobs")
        assert decision

    def test_runs_when_upstream_succeeded(self):
        decision = should_run(_job("deploy", ["build"]), TriggerContext.push("main"), {"build": JobStatus.SUCCEEDED})
        assert decision.run
        assert decision.reason == "upstream succeeded"

    @pytest.mark.parametrize("status", [JobStatus.FAILED, JobStatus.SKIPPED])
    def test_blocked_upstream_skips(self, status):
        decision = should_run(_job("deploy", ["build"]), TriggerContext.push("main"), {"build": status})
        assert not decision
        assert decision.reason == f"upstream build {status.value}"

    def test_first_blocking_upstream_is_reported(self):
        decision = should_run(
            _job("deploy", ["a", "b"]),
            TriggerContext.push("main"),
            {"a": JobStatus.SUCCEEDED, "b": JobStatus.FAILED},
        )
        assert decision.reason == "upstream b failed"

    def test_false_guard_skips(self):
        job = _job("deploy", ["build"], when=RefEquals("refs/heads/main"))
        decision = should_run(job, TriggerContext.push("feature"), {"build": JobStatus.SUCCEEDED})
        assert not decision.run
        assert decision.reason.startswith("condition false")

    def test_upstream_failure_wins_over_guard(self):
        job = _job("deploy", ["build"], when=RefEquals("refs/heads/main"))
        decision = should_run(job, TriggerContext.push("feature"), {"build": JobStatus.FAILED})
        assert decision.reason == "upstream build failed"

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.RUNNING])
    def test_non_terminal_upstream_is_an_error(self, status):
        with pytest.raises(ValueError):
            should_run(_job("deploy", ["build"]), TriggerContext.push("main"), {"build": status})

    def test_missing_upstream_is_an_error(self):
        with pytest.raises(ValueError):
            should_run(_job("deploy", ["build"]), TriggerContext.push("main"), {})
