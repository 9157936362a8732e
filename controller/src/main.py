"""
PipelineX Controller - Main entry point.
"""

import logging
import sys

from kubernetes.client.rest import ApiException

from controller.src.config import get_settings
from controller.src.k8s.client import init_k8s_client, ensure_namespace
from controller.src.worker import run_worker

logger = logging.getLogger(__name__)

def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    # The kubernetes client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)

def main():
    """Check the cluster, then start pulling runs."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting PipelineX Controller")
    logger.info(f"Kubernetes namespace: {settings.k8s_namespace}")
    for host_id, labels in settings.agent_hosts.items():
        logger.info(f"Agent host {host_id}: {', '.join(labels)}")
    if not settings.notify_webhook_url:
        logger.warning("No notification webhook configured, notify hooks only log")
    logger.info(f"Artifacts stored under {settings.artifact_dir}")

    if not init_k8s_client():
        logger.error("Failed to initialize Kubernetes client")
        sys.exit(1)

    try:
        ensure_namespace()
    except ApiException as e:
        logger.error(f"Failed to ensure namespace: {e.reason}")
        sys.exit(1)

    run_worker()

if __name__ == "__main__":
    main()
