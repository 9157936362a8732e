"""Tests for the scheduler: stage lifecycle, groups, gates and hooks."""

import asyncio

import pytest

from controller.src.engine.context import new_context
from controller.src.engine.errors import AgentUnavailable, StructuralError
from controller.src.engine.graph import build_graph
from controller.src.engine.interfaces import ActionResult
from controller.src.engine.reporter import Outcome
from controller.src.engine.scheduler import AGENT_HOST_VARIABLE, Scheduler


class FakeRunner:
    """Records invocations. Actions listed in `failing` fail."""

    def __init__(self, failing=(), delays=None):
        self.failing = set(failing)
        self.delays = delays or {}
        self.calls = []
        self.finished = []
        self.snapshots = {}

    async def invoke(self, action_id, snapshot):
        self.calls.append(action_id)
        self.snapshots[action_id] = snapshot
        await asyncio.sleep(self.delays.get(action_id, 0))
        self.finished.append(action_id)
        if action_id in self.failing:
            return ActionResult(outcome=Outcome.FAILURE, error=f"{action_id} exited 1")
        return ActionResult(outcome=Outcome.SUCCESS, log_ref=f"log:{action_id}")


class FakeNotifier:
    def __init__(self):
        self.messages = []

    async def notify(self, channel, severity, message):
        self.messages.append((channel, severity, message))


class FakeSelector:
    def can_run(self, requirement):
        if requirement == "gpu":
            raise AgentUnavailable(requirement)
        return "agent-1"


def action(name, **extra):
    return {"name": name, "image": "alpine", "commands": [f"echo {name}"], **extra}


def run_pipeline(config, runner=None, notifier=None, decide=None, **trigger):
    """Run a pipeline to completion. `decide` is called with the first pending gate."""
    runner = runner or FakeRunner()
    notifier = notifier or FakeNotifier()
    scheduler = Scheduler(runner, selector=FakeSelector(), notifier=notifier)
    graph = build_graph(config)

    async def drive():
        context = new_context("run-1", env=graph.env, **trigger)
        task = asyncio.ensure_future(scheduler.run(graph, context))
        if decide is not None:
            for _ in range(1000):
                if scheduler.pending_gate is not None:
                    decide(scheduler)
                    break
                await asyncio.sleep(0.001)
        return await task

    return asyncio.run(drive()), runner, notifier


def outcomes(report):
    return {r.path: r.outcome for r in report.records}


def test_sequential_success():
    report, runner, _ = run_pipeline({"stages": [action("Build"), action("Test")]})

    assert report.outcome == Outcome.SUCCESS
    assert runner.calls == ["Build", "Test"]
    assert report.record_for("Build").log_ref == "log:Build"


def test_failure_skips_rest_of_sequence():
    report, runner, _ = run_pipeline(
        {"stages": [action("Build"), action("Test"), action("Deploy")]},
        runner=FakeRunner(failing={"Test"}),
    )

    assert report.outcome == Outcome.FAILURE
    assert runner.calls == ["Build", "Test"]
    deploy = report.record_for("Deploy")
    assert deploy.outcome == Outcome.SKIPPED
    assert deploy.reason == "upstream-failed"
    assert report.record_for("Test").reason == "action-failed"
    assert report.error == "Test: Test exited 1"


def test_best_effort_sequence_keeps_going():
    report, runner, _ = run_pipeline(
        {"stages": [{"name": "Checks", "best_effort": True, "stages": [action("Lint"), action("Audit")]}]},
        runner=FakeRunner(failing={"Checks/Lint"}),
    )

    assert runner.calls == ["Checks/Lint", "Checks/Audit"]
    assert report.record_for("Checks").outcome == Outcome.FAILURE
    assert report.record_for("Checks").reason == "child-failed"


def test_skipped_stage_runs_only_always_hooks():
    config = {"stages": [{
        "name": "Frontend",
        "when": {"changeset": "frontend/**"},
        "stages": [action("Build"), action("Test")],
        "post": {
            "always": [{"notify": "always"}],
            "success": [{"notify": "success"}],
            "failure": [{"notify": "failure"}],
        },
    }]}
    report, runner, notifier = run_pipeline(config, changed_paths=["backend/Foo.java"])

    frontend = report.record_for("Frontend")
    assert frontend.outcome == Outcome.SKIPPED
    assert frontend.reason == "condition"
    assert runner.calls == []
    assert [m[0] for m in notifier.messages] == ["always"]
    assert report.outcome == Outcome.SUCCESS


def test_parallel_group_fails_together():
    config = {"stages": [{
        "name": "Matrix",
        "parallel": [action("One"), action("Two"), action("Three")],
    }]}
    runner = FakeRunner(failing={"Matrix/Two"}, delays={"Matrix/One": 0.02, "Matrix/Three": 0.05})
    report, _, _ = run_pipeline(config, runner=runner)

    assert sorted(runner.finished) == ["Matrix/One", "Matrix/Three", "Matrix/Two"]
    assert report.record_for("Matrix/One").outcome == Outcome.SUCCESS
    assert report.record_for("Matrix/Two").outcome == Outcome.FAILURE
    assert report.record_for("Matrix/Three").outcome == Outcome.SUCCESS
    matrix = report.record_for("Matrix")
    assert matrix.outcome == Outcome.FAILURE
    assert matrix.error == "Failed: Two"


def test_hooks_fire_once_on_failure():
    config = {"stages": [action("Flaky", post={
        "always": [{"notify": "always"}],
        "success": [{"notify": "success"}],
        "failure": [{"notify": "failure"}],
    })]}
    report, _, notifier = run_pipeline(config, runner=FakeRunner(failing={"Flaky"}))

    assert [m[0] for m in notifier.messages] == ["always", "failure"]
    assert report.record_for("Flaky").outcome == Outcome.FAILURE


def test_hook_failure_does_not_stop_other_hooks():
    config = {"stages": [action("Build", post={"always": [
        {"run": {"image": "alpine", "commands": ["exit 1"]}},
        {"notify": "ops", "message": "{stage} {outcome} {nope}"},
        {"notify": "ops"},
    ]})]}
    report, runner, notifier = run_pipeline(config, runner=FakeRunner(failing={"Build#always-0"}))

    build = report.record_for("Build")
    assert build.outcome == Outcome.SUCCESS
    assert len(build.hook_errors) == 2
    assert len(notifier.messages) == 1
    assert "Build#always-0" in runner.calls


def test_stage_hook_reuses_leaf_action():
    config = {"stages": [
        action("Build", post={"failure": [{"stage": "Cleanup"}]}),
        action("Cleanup", when={"branch": "never"}),
    ]}
    report, runner, _ = run_pipeline(config, runner=FakeRunner(failing={"Build"}), branch="main")

    assert runner.calls == ["Build", "Cleanup"]
    assert runner.snapshots["Cleanup"].stage_path == "Build"


def test_overlay_is_not_visible_to_siblings():
    config = {
        "env": {"APP": "demo"},
        "stages": [action("Integration", env={"DB_HOST": "test"}), action("Package")],
    }
    _, runner, _ = run_pipeline(config)

    assert runner.snapshots["Integration"].variables == {"APP": "demo", "DB_HOST": "test"}
    assert runner.snapshots["Package"].variables == {"APP": "demo"}


def test_gate_timeout_fails_stage():
    config = {"stages": [
        action("Deploy", approval={"message": "Deploy?", "timeout": 0.1}),
        action("Smoke"),
    ]}
    report, runner, notifier = run_pipeline(config)

    deploy = report.record_for("Deploy")
    assert deploy.outcome == Outcome.FAILURE
    assert deploy.reason == "gate-timeout"
    assert runner.calls == []
    assert report.record_for("Smoke").reason == "upstream-failed"
    assert notifier.messages[0][0] == "approvals"


def test_fatal_gate_timeout_cancels_run():
    config = {"stages": [
        {"name": "Release", "best_effort": True, "stages": [
            action("Deploy", approval={"timeout": 0.1, "fatal": True}),
            action("Smoke"),
        ]},
        action("Announce"),
    ]}
    report, runner, _ = run_pipeline(config)

    assert runner.calls == []
    assert report.record_for("Release/Smoke").reason == "cancelled"
    assert report.record_for("Announce").outcome == Outcome.SKIPPED
    assert report.error.startswith("Release/Deploy:")


def test_approved_gate_runs_stage():
    config = {"stages": [action("Deploy", approval={"approvers": ["alice"]})]}
    report, runner, _ = run_pipeline(
        config, decide=lambda scheduler: scheduler.pending_gate.approve("alice")
    )

    assert report.outcome == Outcome.SUCCESS
    assert runner.calls == ["Deploy"]


def test_abort_while_waiting():
    config = {"stages": [action("Deploy", approval="Deploy?"), action("Smoke")]}
    report, runner, _ = run_pipeline(config, decide=lambda scheduler: scheduler.abort("stop"))

    assert runner.calls == []
    assert report.record_for("Deploy").reason == "gate-timeout"
    assert report.record_for("Smoke").reason == "cancelled"
    assert report.error == "stop"


def test_agent_requirement():
    config = {"stages": [action("Build", agent="linux"), action("Train", agent="gpu")]}
    report, runner, _ = run_pipeline(config)

    assert runner.snapshots["Build"].variables[AGENT_HOST_VARIABLE] == "agent-1"
    train = report.record_for("Train")
    assert train.outcome == Outcome.FAILURE
    assert train.reason == "no-eligible-agent"


def test_pipeline_hooks_run_exactly_once():
    config = {
        "stages": [action("Build")],
        "post": {
            "always": [{"notify": "always"}],
            "success": [{"notify": "success", "message": "{stage} on {branch}: {outcome}"}],
            "failure": [{"notify": "failure"}],
        },
    }
    report, _, notifier = run_pipeline(config, branch="main")

    assert notifier.messages == [
        ("always", "info", "Unnamed Pipeline: success (run run-1)"),
        ("success", "info", "Unnamed Pipeline on main: success"),
    ]
    assert report.hook_errors == ()


def test_release_with_rejected_approval():
    config = {
        "name": "Release",
        "stages": [
            action("Checkout"),
            {"name": "Tests", "parallel": [
                action("BackendTest"),
                action("FrontendTest", when={"changeset": "frontend/**"}),
            ]},
            action("Deploy", approval={"message": "Deploy?", "fatal": True}),
        ],
        "post": {
            "success": [{"notify": "success"}],
            "failure": [{"notify": "failure", "message": "{stage} failed: {error}"}],
        },
    }
    report, runner, notifier = run_pipeline(
        config,
        changed_paths=["backend/Foo.java"],
        decide=lambda scheduler: scheduler.pending_gate.reject("bob", "not today"),
    )

    assert outcomes(report) == {
        "Checkout": Outcome.SUCCESS,
        "Tests/BackendTest": Outcome.SUCCESS,
        "Tests/FrontendTest": Outcome.SKIPPED,
        "Tests": Outcome.SUCCESS,
        "Deploy": Outcome.FAILURE,
    }
    assert report.record_for("Deploy").reason == "gate-rejected"
    assert report.outcome == Outcome.FAILURE
    assert "Deploy" not in runner.calls
    failures = [m for m in notifier.messages if m[0] == "failure"]
    assert len(failures) == 1
    assert "not today" in failures[0][2]
    assert not [m for m in notifier.messages if m[0] == "success"]


@pytest.mark.parametrize("config", [
    {"stages": [action("A"), action("A")]},
    {"stages": [{"name": "G", "parallel": []}]},
])
def test_invalid_graph_never_runs(config):
    with pytest.raises(StructuralError):
        run_pipeline(config)


def test_malformed_condition_skips_stage():
    config = {"stages": [action("Build", when="main"), action("Test")]}
    report, runner, _ = run_pipeline(config, branch="main")

    assert report.record_for("Build").outcome == Outcome.SKIPPED
    assert report.record_for("Build").reason == "condition"
    assert runner.calls == ["Test"]
    assert report.outcome == Outcome.SUCCESS


def test_skipped_stage_hooks_see_stage_variables():
    config = {"stages": [action("Deploy", when={"branch": "release/*"}, env={"TARGET": "prod"}, dir="deploy", post={
        "always": [{"run": {"image": "alpine", "commands": ["cleanup"]}}],
    })]}
    report, runner, _ = run_pipeline(config, branch="main")

    snapshot = runner.snapshots["Deploy#always-0"]
    assert snapshot.variables["TARGET"] == "prod"
    assert snapshot.workdir == "deploy"
    assert report.record_for("Deploy").outcome == Outcome.SKIPPED


def test_run_stage_outside_a_run():
    graph = build_graph({"stages": [action("Build")]})
    scheduler = Scheduler(FakeRunner())

    with pytest.raises(RuntimeError, match="Scheduler.run"):
        asyncio.run(scheduler.run_stage(graph.stages[0], new_context("run-1")))


def test_run_stage_after_run_finished():
    graph = build_graph({"stages": [action("Build")]})
    scheduler = Scheduler(FakeRunner())

    async def scenario():
        context = new_context("run-1")
        await scheduler.run(graph, context)
        await scheduler.run_stage(graph.stages[0], context)

    with pytest.raises(RuntimeError, match="Scheduler.run"):
        asyncio.run(scenario())
