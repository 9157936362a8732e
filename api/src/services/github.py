"""
GitHub service for webhook validation and repo operations.
"""

import asyncio
import hmac
import hashlib
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Optional, Dict, Any, List

import yaml

from api.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

CONFIG_FILENAMES = (".pipeline.yml", ".pipeline.yaml", "pipeline.yml", "pipeline.yaml")

class RepositoryError(Exception):
    """Raised when a repository cannot be fetched."""
    pass

def verify_signature(payload: bytes, signature: Optional[str]) -> bool:
    """Verify GitHub webhook signature."""
    if not settings.github_webhook_secret:
        # Skip verification if no secret configured (development)
        return True

    if not signature:
        return False

    expected = "sha256=" + hmac.new(
        settings.github_webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)

def _git(args: List[str], cwd: Optional[str] = None, timeout: int = 60, check: bool = True):
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=check,
        capture_output=True,
        timeout=timeout,
    )

def _clone(clone_url: str, commit_sha: str, repo_path: str):
    _git(["clone", "--depth", "1", clone_url, repo_path], timeout=120)

    if commit_sha:
        # Shallow clones may not contain the pushed commit yet
        _git(["fetch", "--depth", "1", "origin", commit_sha], cwd=repo_path, check=False)
        _git(["checkout", commit_sha], cwd=repo_path, timeout=30)

async def clone_repository(clone_url: str, commit_sha: str) -> str:
    """
    Clone repository to temporary directory.
    Returns path to cloned repo.
    """
    temp_dir = tempfile.mkdtemp(prefix="pipelinex_")
    repo_path = os.path.join(temp_dir, "repo")

    try:
        await asyncio.to_thread(_clone, clone_url, commit_sha, repo_path)
    except subprocess.TimeoutExpired:
        cleanup_repo(repo_path)
        raise RepositoryError("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        cleanup_repo(repo_path)
        raise RepositoryError(f"Failed to clone repository: {e.stderr.decode()}")

    return repo_path

async def fetch_pipeline_config(repo_path: str) -> Optional[Dict[str, Any]]:
    """
    Read the pipeline definition from a repository.
    Returns parsed YAML or None if not found.
    """
    for filename in CONFIG_FILENAMES:
        config_path = os.path.join(repo_path, filename)
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f)

    return None

def collect_changed_paths(payload: Dict[str, Any]) -> List[str]:
    """Files added, modified or removed by the pushed commits."""
    paths = set()
    for commit in payload.get("commits", []) or []:
        for key in ("added", "modified", "removed"):
            paths.update(commit.get(key, []) or [])
    return sorted(paths)

def parse_webhook_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract relevant info from GitHub webhook payload."""
    repo = payload.get("repository", {})
    head_commit = payload.get("head_commit") or {}

    # refs/heads/main -> main
    ref = payload.get("ref", "")
    branch = ref.replace("refs/heads/", "") if ref.startswith("refs/heads/") else ref

    return {
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        "clone_url": repo.get("clone_url", ""),
        "commit_sha": head_commit.get("id", payload.get("after", "")),
        "branch": branch,
        "commit_message": head_commit.get("message", ""),
        "pusher": payload.get("pusher", {}).get("name", ""),
        "changed_paths": collect_changed_paths(payload),
    }

def cleanup_repo(repo_path: str):
    """Remove a cloned repository and its temp directory."""
    if not repo_path:
        return

    parent = os.path.dirname(repo_path)
    try:
        shutil.rmtree(parent)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up {parent}: {e}")
