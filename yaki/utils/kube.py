import logging
import time
from pathlib import Path
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)


def load_kubeconfig(path: str) -> client.CoreV1Api:
    """Load a kubeconfig file and return a CoreV1 API client."""
    resolved = Path(path)
    if not resolved.exists():
        raise FileNotFoundError(f"❌ Kubeconfig not found: {resolved}")
    api_client = config.new_client_from_config(config_file=str(resolved))
    return client.CoreV1Api(api_client)


def ready_nodes(api: client.CoreV1Api) -> List[str]:
    """Names of nodes whose Ready condition is True."""
    names = []
    for node in api.list_node().items:
        conditions = node.status.conditions or []
        if any(c.type == "Ready" and c.status == "True" for c in conditions):
            names.append(node.metadata.name)
    return names


def wait_for_control_plane(
    kubeconfig: str,
    timeout: int = 300,
    interval: float = 5.0,
    api: Optional[client.CoreV1Api] = None,
) -> bool:
    """Poll the API server until at least one node is Ready.

    Returns:
        bool: True if a Ready node was seen before the timeout
    """
    logger.info(f"⏳ Waiting for the control plane to be ready (timeout: {timeout}s)")
    deadline = time.monotonic() + timeout
    last_error = ""
    while True:
        try:
            if api is None:
                api = load_kubeconfig(kubeconfig)
            ready = ready_nodes(api)
            if ready:
                logger.info(f"✅ Ready nodes: {', '.join(ready)}")
                return True
            last_error = "no Ready nodes yet"
        except (ApiException, HTTPError, FileNotFoundError, config.ConfigException) as e:
            last_error = str(e)
            logger.debug(f"Control plane not ready: {e}")
        if time.monotonic() >= deadline:
            break
        time.sleep(interval)

    logger.warning(f"⚠️  Control plane not ready after {timeout}s: {last_error}")
    return False
