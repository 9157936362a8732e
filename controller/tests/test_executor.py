"""Tests for running a queued job end to end with the cluster stubbed out."""

import asyncio
import threading

import pytest

from controller.src.engine.interfaces import ActionResult
from controller.src.engine.reporter import Outcome
from controller.src.models.job import RunStatus
from controller.src.services import executor


class StubRunner:
    def __init__(self, run_id, actions, on_logs=None):
        self.actions = actions

    async def invoke(self, action_id, snapshot):
        if "fail" in self.actions[action_id].commands:
            return ActionResult(outcome=Outcome.FAILURE, error="exit 1")
        return ActionResult(outcome=Outcome.SUCCESS)


@pytest.fixture
def statuses(monkeypatch):
    recorded = []

    async def no_approvals(run_id, scheduler, on_gate_change=None):
        await asyncio.Event().wait()

    monkeypatch.setattr(executor, "KubernetesActionRunner", StubRunner)
    monkeypatch.setattr(executor, "ensure_namespace", lambda: None)
    monkeypatch.setattr(executor, "watch_approvals", no_approvals)
    monkeypatch.setattr(executor, "save_stage_record", lambda run_id, record: None)
    monkeypatch.setattr(
        executor, "update_run_status",
        lambda run_id, status, **kwargs: recorded.append((status, kwargs)),
    )
    return recorded


def job(stages):
    return {
        "run_id": "run-1",
        "config": {"name": "demo", "stages": stages},
        "trigger": {"branch": "main", "changed_paths": ["src/app.py"]},
    }


def test_successful_run(statuses):
    ok = asyncio.run(executor.execute_pipeline(job([
        {"name": "Build", "image": "alpine", "commands": ["make"]},
    ])))

    assert ok
    assert [s for s, _ in statuses] == [RunStatus.RUNNING, RunStatus.SUCCEEDED]
    report = statuses[-1][1]["report"]
    assert report["outcome"] == "success"
    assert report["records"][0]["path"] == "Build"


def test_failed_run(statuses):
    ok = asyncio.run(executor.execute_pipeline(job([
        {"name": "Build", "image": "alpine", "commands": ["fail"]},
    ])))

    assert not ok
    assert statuses[-1][0] == RunStatus.FAILED
    assert statuses[-1][1]["error"] == "Build: exit 1"


def test_invalid_pipeline_never_runs(statuses):
    ok = asyncio.run(executor.execute_pipeline(job([
        {"name": "Build", "image": "alpine", "commands": ["make"]},
        {"name": "Build", "image": "alpine", "commands": ["make"]},
    ])))

    assert not ok
    assert [s for s, _ in statuses] == [RunStatus.INVALID]
    assert "duplicate stage name" in statuses[0][1]["error"]


def test_database_writes_run_off_the_event_loop(statuses, monkeypatch):
    loop_thread = threading.get_ident()
    write_threads = []

    def save_stage_record(run_id, record):
        write_threads.append(threading.get_ident())

    def update_run_status(run_id, status, **kwargs):
        write_threads.append(threading.get_ident())

    monkeypatch.setattr(executor, "save_stage_record", save_stage_record)
    monkeypatch.setattr(executor, "update_run_status", update_run_status)
    monkeypatch.setattr(executor, "finish_run", lambda report: write_threads.append(threading.get_ident()))

    asyncio.run(executor.execute_pipeline(job([
        {"name": "Tests", "parallel": [
            {"name": "Unit", "image": "alpine", "commands": ["make"]},
            {"name": "Lint", "image": "alpine", "commands": ["make"]},
        ]},
    ])))

    # RUNNING, three stage records, final status
    assert len(write_threads) == 5
    assert loop_thread not in write_threads
