"""
Filesystem artifact store used by `publish` hooks.
"""

import glob
import logging
import os
import shutil

from controller.src.config import get_settings

logger = logging.getLogger(__name__)

class LocalArtifactStore:
    """Copies files matching a path or glob from the workspace into run storage."""

    def __init__(self, run_id: str, workspace_dir: str = None, artifact_dir: str = None):
        settings = get_settings()
        self.run_id = run_id
        self.workspace_dir = workspace_dir or settings.workspace_dir
        self.root = os.path.join(artifact_dir or settings.artifact_dir, run_id)

    def publish(self, pattern: str) -> str:
        """Publish matching files. Returns the artifact directory for the run."""
        matches = [
            path for path in glob.glob(os.path.join(self.workspace_dir, pattern), recursive=True)
            if os.path.isfile(path)
        ]
        if not matches:
            raise FileNotFoundError(f"No files match '{pattern}'")

        for path in matches:
            relative = os.path.relpath(path, self.workspace_dir)
            target = os.path.join(self.root, relative)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.copy2(path, target)

        logger.info(f"Published {len(matches)} file(s) for '{pattern}' to {self.root}")
        return f"{self.root}:{pattern}"
