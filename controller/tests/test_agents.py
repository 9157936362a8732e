"""Tests for host selection and the local artifact store."""

import pytest

from controller.src.engine.errors import AgentUnavailable
from controller.src.services.agents import LabelAgentSelector
from controller.src.services.artifacts import LocalArtifactStore

HOSTS = {
    "linux-small": ["linux", "docker"],
    "mac-mini": ["macos", "xcode"],
}


def test_parse_requirement():
    assert LabelAgentSelector.parse_requirement("linux && docker") == ["linux", "docker"]
    assert LabelAgentSelector.parse_requirement("any") == []
    assert LabelAgentSelector.parse_requirement(None) == []


def test_selects_first_matching_host():
    selector = LabelAgentSelector(HOSTS)
    assert selector.can_run("macos && xcode") == "mac-mini"
    assert selector.can_run("docker") == "linux-small"
    assert selector.can_run("any") == "linux-small"


def test_no_matching_host():
    selector = LabelAgentSelector(HOSTS)
    with pytest.raises(AgentUnavailable) as exc_info:
        selector.can_run("windows")
    assert exc_info.value.reason == "no-eligible-agent"


def test_no_hosts_configured():
    with pytest.raises(AgentUnavailable):
        LabelAgentSelector({}).can_run(None)


def test_publish_copies_matching_files(tmp_path):
    workspace = tmp_path / "workspace"
    (workspace / "dist" / "sub").mkdir(parents=True)
    (workspace / "dist" / "app.tar.gz").write_text("app")
    (workspace / "dist" / "sub" / "notes.txt").write_text("notes")

    store = LocalArtifactStore("run-1", str(workspace), str(tmp_path / "artifacts"))
    ref = store.publish("dist/**")

    assert ref.endswith(":dist/**")
    assert (tmp_path / "artifacts" / "run-1" / "dist" / "app.tar.gz").read_text() == "app"
    assert (tmp_path / "artifacts" / "run-1" / "dist" / "sub" / "notes.txt").exists()


def test_publish_without_matches(tmp_path):
    store = LocalArtifactStore("run-1", str(tmp_path), str(tmp_path / "artifacts"))
    with pytest.raises(FileNotFoundError):
        store.publish("missing/*.zip")
