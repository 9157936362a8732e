"""Tests for the execution context frames."""

import pytest

from controller.src.engine.context import new_context


def test_scope_copies_on_enter():
    root = new_context("run-1", env={"A": "1"})

    with root.scope({"B": "2"}) as frame:
        frame.set_variable("C", "3")
        assert dict(frame.variables) == {"A": "1", "B": "2", "C": "3"}
        assert dict(root.variables) == {"A": "1"}

    assert "B" not in root.variables
    assert "C" not in root.variables


def test_scope_overrides_parent_value():
    root = new_context("run-1", env={"DB_HOST": "prod"})

    with root.scope({"DB_HOST": "test"}) as frame:
        assert frame.variables["DB_HOST"] == "test"

    assert root.variables["DB_HOST"] == "prod"


def test_exited_frame_is_unusable():
    root = new_context("run-1")

    with root.scope() as frame:
        pass

    with pytest.raises(RuntimeError):
        frame.set_variable("X", "1")
    assert dict(frame.variables) == {}


def test_variables_are_read_only():
    root = new_context("run-1", env={"A": "1"})
    with pytest.raises(TypeError):
        root.variables["A"] = "2"


def test_workdir_nests():
    root = new_context("run-1")

    with root.scope(workdir="services") as outer:
        with outer.scope(workdir="api") as inner:
            assert inner.workdir == "services/api"
        assert outer.workdir == "services"


def test_cancellation_is_shared():
    root = new_context("run-1")

    with root.scope() as frame:
        frame.cancel("stop")

    assert root.cancelled
    assert root.cancel_reason == "stop"
    assert root.cancel_event.is_set()

    # First reason wins
    root.cancel("again")
    assert root.cancel_reason == "stop"


def test_snapshot_is_a_copy():
    root = new_context("run-1", branch="main", changed_paths=["a.txt"], env={"A": "1"})

    with root.scope({"B": "2"}) as frame:
        snapshot = frame.snapshot("Build")

    assert snapshot.stage_path == "Build"
    assert snapshot.branch == "main"
    assert snapshot.changed_paths == ("a.txt",)
    assert snapshot.variables == {"A": "1", "B": "2"}
