"""Tests for webhook handling."""

from api.src.services.github import (
    collect_changed_paths,
    parse_webhook_payload,
    verify_signature,
)

def test_parse_push_payload():
    payload = {
        "ref": "refs/heads/main",
        "repository": {
            "name": "test-repo",
            "full_name": "user/test-repo",
            "clone_url": "https://github.com/user/test-repo.git",
        },
        "head_commit": {
            "id": "abc123def456",
            "message": "Test commit",
        },
        "commits": [
            {"added": ["src/app.py"], "modified": ["README.md"], "removed": []},
        ],
        "pusher": {
            "name": "testuser",
        },
    }

    result = parse_webhook_payload(payload)

    assert result["repo_name"] == "test-repo"
    assert result["repo_full_name"] == "user/test-repo"
    assert result["branch"] == "main"
    assert result["commit_sha"] == "abc123def456"
    assert result["pusher"] == "testuser"
    assert result["changed_paths"] == ["README.md", "src/app.py"]

def test_parse_payload_with_after():
    """Test fallback to 'after' field for commit SHA."""
    payload = {
        "ref": "refs/heads/feature",
        "after": "xyz789",
        "repository": {
            "name": "repo",
            "full_name": "user/repo",
            "clone_url": "https://github.com/user/repo.git",
        },
        "head_commit": {},
        "pusher": {"name": "user"},
    }

    result = parse_webhook_payload(payload)
    assert result["commit_sha"] == "xyz789"
    assert result["branch"] == "feature"
    assert result["changed_paths"] == []

def test_changed_paths_are_deduplicated():
    payload = {
        "commits": [
            {"added": ["a.txt"], "modified": ["b/c.py"]},
            {"modified": ["a.txt"], "removed": ["old.cfg"]},
            {"added": None},
        ]
    }
    assert collect_changed_paths(payload) == ["a.txt", "b/c.py", "old.cfg"]

def test_verify_signature_without_secret():
    """When no secret is configured, verification should pass."""
    # This test assumes GITHUB_WEBHOOK_SECRET is not set
    result = verify_signature(b"payload", "sha256=anything")
    assert result is True
