"""Tests for the stage condition evaluator."""

import pytest

from controller.src.engine.conditions import evaluate, path_matches
from controller.src.engine.context import new_context


@pytest.fixture
def context():
    return new_context(
        "run-1",
        branch="release/1.2",
        changed_paths=["backend/Foo.java", "docs/index.md"],
        params={"deploy": "true", "nightly": False},
        env={"TARGET": "prod"},
    )


@pytest.mark.parametrize("path,pattern,expected", [
    ("frontend/app.js", "frontend/**", True),
    ("frontend/src/deep/app.js", "frontend/**", True),
    ("frontend", "frontend/**", True),
    ("frontend-old/app.js", "frontend/**", False),
    ("backend/Foo.java", "*.java", True),
    ("README.md", "docs/*", False),
    ("Foo.java", "**/*.java", True),
    ("src/main/Foo.java", "**/*.java", True),
    ("src/a.py", "src/**/*.py", True),
    ("src/x/y/a.py", "src/**/*.py", True),
    ("lib/a.py", "src/**/*.py", False),
    ("a/b.md", "**/a/**", True),
    ("docs/a/b.md", "**/a/**", True),
])
def test_path_matches(path, pattern, expected):
    assert path_matches(path, pattern) is expected


def test_no_condition_runs(context):
    assert evaluate(None, context) is True


def test_branch_glob(context):
    assert evaluate({"branch": "release/*"}, context)
    assert not evaluate({"branch": "main"}, context)


def test_changeset(context):
    assert evaluate({"changeset": "backend/**"}, context)
    assert not evaluate({"changeset": "frontend/**"}, context)
    assert evaluate({"anyChangeset": ["frontend/**", "docs/**"]}, context)


def test_combinators(context):
    condition = {
        "and": [
            {"branch": "release/*"},
            {"or": [{"changeset": "frontend/**"}, {"flag": "deploy"}]},
            {"not": {"flag": "nightly"}},
        ]
    }
    assert evaluate(condition, context)
    assert not evaluate({"not": {"branch": "release/*"}}, context)


def test_env_reads_variables(context):
    assert evaluate({"env": {"name": "TARGET", "value": "prod"}}, context)
    assert not evaluate({"env": {"name": "TARGET", "value": "staging"}}, context)
    assert not evaluate({"env": {"name": "MISSING", "value": "x"}}, context)


@pytest.mark.parametrize("condition", [
    {"unknown": "x"},
    {"branch": "main", "flag": "deploy"},
    {"and": []},
    {"anyChangeset": "frontend/**"},
    {"not": "branch"},
    {"malformed": ["not", "a", "mapping"]},
    "main",
])
def test_malformed_condition_is_false(context, condition):
    assert evaluate(condition, context) is False


def test_malformed_inner_condition_is_false(context):
    # The whole condition is false, not just the broken branch
    assert evaluate({"or": [{"bogus": 1}, {"branch": "release/*"}]}, context) is False


def test_globstar_matches_root_files():
    context = new_context("run-1", changed_paths=["Foo.java"])
    assert evaluate({"changeset": "**/*.java"}, context)
    assert evaluate({"anyChangeset": ["web/**", "**/*.java"]}, context)
    assert not evaluate({"changeset": "src/**/*.java"}, context)
