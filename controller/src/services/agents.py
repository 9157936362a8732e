"""
Label-based host selection for stage agent requirements.
"""

import logging
from typing import Dict, List, Optional

from controller.src.config import get_settings
from controller.src.engine.errors import AgentUnavailable

logger = logging.getLogger(__name__)

class LabelAgentSelector:
    """
    Matches requirements like `linux && docker` against host labels.
    `any` (or no requirement) matches the first configured host.
    """

    def __init__(self, hosts: Optional[Dict[str, List[str]]] = None):
        self.hosts = get_settings().agent_hosts if hosts is None else hosts

    @staticmethod
    def parse_requirement(requirement: Optional[str]) -> List[str]:
        if not requirement or requirement.strip() == "any":
            return []
        return [label.strip() for label in requirement.split("&&") if label.strip()]

    def can_run(self, requirement: Optional[str]) -> str:
        labels = set(self.parse_requirement(requirement))

        for host_id, host_labels in self.hosts.items():
            if labels.issubset(host_labels):
                logger.debug(f"Requirement '{requirement}' matched host {host_id}")
                return host_id

        raise AgentUnavailable(requirement)
